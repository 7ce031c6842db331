"""FastAPI router exposing the solvency ledger.

The ledger is constructed once per app by :func:`create_app` and kept on
``app.state``; request handlers reach it through the ``get_ledger`` dependency.
All routes authenticate with a bearer token whose ``sub`` is the caller
principal checked by the ledger's access guard.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from common.audit import log_event
from common.auth import current_principal
from common.datetime import to_epoch_seconds

from .alerts import classify
from .config import LedgerSettings, load_settings
from .db import SqlHistorySink, init_db, load_history, make_engine
from .errors import InvalidSnapshot, LedgerClosed, SolvencyError, Unauthorized
from .ledger import Side, SolvencyLedger, UpdateResult

logger = logging.getLogger(__name__)

SERVICE_NAME = "solvency_ledger"
_MAX_TS = 2**63 - 1

# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def get_ledger(request: Request) -> SolvencyLedger:
    return request.app.state.ledger


def get_session(request: Request) -> Iterator[Session]:
    with Session(request.app.state.engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class SnapshotRequest(BaseModel):
    tokens: List[str] = Field(default_factory=list)
    amounts: List[int] = Field(default_factory=list)
    values: List[int] = Field(default_factory=list)


class SnapshotResponse(BaseModel):
    tokens: List[str]
    amounts: List[int]
    values: List[int]
    timestamp: int


class AlertModel(BaseModel):
    kind: str
    current_value: int
    threshold: int
    timestamp: int
    level: str
    previous_level: str


class UpdateResponse(BaseModel):
    side: str
    timestamp: int
    ratio_bps: int
    recorded: bool
    alert: Optional[AlertModel] = None


class VerifyResponse(BaseModel):
    is_solvent: bool
    ratio_bps: int


class StatusResponse(BaseModel):
    ledger_id: str
    is_solvent: bool
    ratio_bps: int
    total_assets: int
    total_liabilities: int
    risk_level: str
    updated_at: int


class HistoryResponse(BaseModel):
    timestamps: List[int]
    ratios: List[int]
    statuses: List[str]
    assets: List[SnapshotResponse]
    liabilities: List[SnapshotResponse]


class HistoryInfoResponse(BaseModel):
    total_entries: int
    max_entries: int
    oldest_timestamp: int
    newest_timestamp: int
    min_interval: int


class OracleRequest(BaseModel):
    authorized: bool


class OracleResponse(BaseModel):
    principal: str
    authorized: bool


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _http_error(exc: SolvencyError) -> HTTPException:
    if isinstance(exc, Unauthorized):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="unauthorized")
    if isinstance(exc, InvalidSnapshot):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"invalid_snapshot: {exc}"
        )
    if isinstance(exc, LedgerClosed):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="ledger_closed"
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _audit(session: Session, action: str, actor: str, details: Dict[str, object]) -> None:
    # best-effort; the ledger change is already applied
    try:
        log_event(
            session=session, service=SERVICE_NAME, action=action, actor=actor, details=details
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception("audit_write_failed", extra={"action": action, "actor": actor})


def _apply_update(
    side: Side,
    req: SnapshotRequest,
    principal: str,
    ledger: SolvencyLedger,
    session: Session,
) -> UpdateResult:
    try:
        if side is Side.ASSETS:
            result = ledger.update_assets(principal, req.tokens, req.amounts, req.values)
        else:
            result = ledger.update_liabilities(principal, req.tokens, req.amounts, req.values)
    except SolvencyError as exc:
        _audit(
            session,
            "UPDATE_REJECTED",
            principal,
            {"side": side.value, "error": type(exc).__name__, "reason": str(exc)},
        )
        raise _http_error(exc) from exc

    _audit(
        session,
        f"{side.value.upper()}_UPDATED",
        principal,
        {
            "ledger_id": ledger.ledger_id,
            "timestamp": result.timestamp,
            "ratio_bps": str(result.ratio),
            "recorded": result.recorded,
            "tokens": list(req.tokens),
        },
    )
    if result.alert is not None:
        _audit(
            session,
            "RISK_ALERT",
            principal,
            {**result.alert.to_dict(), "current_value": str(result.alert.current_value)},
        )
    return result


def _update_response(result: UpdateResult) -> UpdateResponse:
    return UpdateResponse(
        side=result.side.value,
        timestamp=result.timestamp,
        ratio_bps=result.ratio,
        recorded=result.recorded,
        alert=AlertModel(**result.alert.to_dict()) if result.alert else None,
    )


def _parse_bound(raw: Optional[str], default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return to_epoch_seconds(raw)
    except (TypeError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"invalid_time: {raw}"
        ) from exc


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/solvency/v1", tags=["solvency"])


@router.post("/assets", response_model=UpdateResponse)
def update_assets(
    req: SnapshotRequest,
    principal: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
    session: Session = Depends(get_session),
):
    return _update_response(_apply_update(Side.ASSETS, req, principal, ledger, session))


@router.post("/liabilities", response_model=UpdateResponse)
def update_liabilities(
    req: SnapshotRequest,
    principal: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
    session: Session = Depends(get_session),
):
    return _update_response(_apply_update(Side.LIABILITIES, req, principal, ledger, session))


@router.get("/assets", response_model=SnapshotResponse)
def get_protocol_assets(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return ledger.get_protocol_assets().to_dict()


@router.get("/liabilities", response_model=SnapshotResponse)
def get_protocol_liabilities(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return ledger.get_protocol_liabilities().to_dict()


@router.get("/verify", response_model=VerifyResponse)
def verify_solvency(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    is_solvent, ratio = ledger.verify_solvency()
    return VerifyResponse(is_solvent=is_solvent, ratio_bps=ratio)


@router.get("/ratio", response_model=Dict[str, int])
def get_solvency_ratio(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return {"ratio_bps": ledger.get_solvency_ratio()}


@router.get("/status", response_model=StatusResponse)
def get_status(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return StatusResponse(ledger_id=ledger.ledger_id, **ledger.get_status().to_dict())


@router.get("/history", response_model=HistoryResponse)
def get_history(
    start: Optional[str] = Query(None, description="Epoch seconds or ISO-8601; default 0"),
    end: Optional[str] = Query(None, description="Epoch seconds or ISO-8601; default open"),
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    entries = ledger.get_history(_parse_bound(start, 0), _parse_bound(end, _MAX_TS))
    thresholds = ledger.thresholds
    return HistoryResponse(
        timestamps=[e.timestamp for e in entries],
        ratios=[e.ratio for e in entries],
        statuses=[classify(e.ratio, thresholds).value for e in entries],
        assets=[SnapshotResponse(**e.assets.to_dict()) for e in entries],
        liabilities=[SnapshotResponse(**e.liabilities.to_dict()) for e in entries],
    )


@router.get("/history/info", response_model=HistoryInfoResponse)
def get_history_info(
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return ledger.get_history_info().to_dict()


@router.get("/oracles/{principal}", response_model=OracleResponse)
def get_oracle(
    principal: str,
    _: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    return OracleResponse(principal=principal, authorized=ledger.is_oracle(principal))


@router.put("/oracles/{principal}", response_model=OracleResponse)
def set_oracle(
    principal: str,
    req: OracleRequest,
    caller: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
    session: Session = Depends(get_session),
):
    try:
        ledger.set_oracle(caller, principal, req.authorized)
    except SolvencyError as exc:
        raise _http_error(exc) from exc
    _audit(
        session,
        "ORACLE_AUTHORIZED" if req.authorized else "ORACLE_REVOKED",
        caller,
        {"ledger_id": ledger.ledger_id, "principal": principal},
    )
    return OracleResponse(principal=principal, authorized=req.authorized)


@router.post("/admin/flush", response_model=Dict[str, int])
def flush_history(
    caller: str = Depends(current_principal),
    ledger: SolvencyLedger = Depends(get_ledger),
):
    if caller != ledger.owner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="unauthorized")
    return {"written": ledger.flush()}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    written = app.state.ledger.close()
    logger.info(
        "solvency_ledger_shutdown",
        extra={"ledger_id": app.state.ledger.ledger_id, "written": written},
    )


def create_app(
    settings: LedgerSettings | None = None,
    *,
    ledger: SolvencyLedger | None = None,
    engine: Engine | None = None,
) -> FastAPI:
    """Factory used by tests and the uvicorn entrypoint.

    Builds the engine and the ledger from *settings* unless they are passed in.
    A ledger built here resumes from the history stored under its id. The
    ledger is flushed and closed when the app shuts down.
    """
    settings = settings or load_settings()
    engine = engine or make_engine(settings.db_url)
    init_db(engine)
    if ledger is None:
        ledger = SolvencyLedger.from_settings(
            settings, history_sink=SqlHistorySink(engine, settings.ledger_id)
        )
        with Session(engine) as session:
            ledger.restore_history(load_history(session, settings.ledger_id))

    app = FastAPI(title="Solvency Ledger", lifespan=_lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.ledger = ledger

    @app.get("/healthz", response_model=dict)
    def healthz():
        return {"ok": not ledger.closed, "ledger_id": ledger.ledger_id}

    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


__all__ = [
    "router",
    "create_app",
    "get_ledger",
    "get_session",
]
