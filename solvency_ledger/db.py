"""SQL persistence for retained solvency history.

The ledger itself is storage-agnostic; this adapter is wired in as its history
sink, and :func:`load_history` seeds a fresh ledger on startup so retained
points survive a restart of the service. uint256 quantities do not fit SQL
integer types and are stored as decimal text.
"""
from __future__ import annotations

import json
from typing import Dict, Iterable, List, Optional

from sqlalchemy import Column, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from common.audit import AuditJournal  # noqa: F401  (registers the audit table)

from .history import HistoryEntry
from .snapshot import ValuationSnapshot, build_snapshot

__all__ = [
    "SolvencyHistoryRow",
    "make_engine",
    "init_db",
    "persist_history",
    "load_history",
    "SqlHistorySink",
]


class SolvencyHistoryRow(SQLModel, table=True):
    """One recorded history point keyed by (ledger_id, ts)."""

    __tablename__ = "solvency_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    ledger_id: str = Field(sa_column=Column("ledger_id", String, nullable=False))
    ts: int = Field(sa_column=Column("ts", Integer, nullable=False))
    ratio_bps: str = Field(sa_column=Column("ratio_bps", String, nullable=False))
    assets_json: str = Field(sa_column=Column("assets_json", Text, nullable=False))
    liabilities_json: str = Field(
        sa_column=Column("liabilities_json", Text, nullable=False)
    )

    __table_args__ = (
        UniqueConstraint("ledger_id", "ts", name="solvency_history_uniq"),
        Index("ix_solvency_history_ledger_ts", "ledger_id", "ts"),
    )


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: Dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False)


def init_db(engine: Engine) -> None:
    """Initialise tables (idempotent)."""
    SQLModel.metadata.create_all(engine)


def _snapshot_json(snapshot: ValuationSnapshot) -> str:
    return json.dumps(
        {
            "tokens": list(snapshot.tokens),
            "amounts": [str(a) for a in snapshot.amounts],
            "values": [str(v) for v in snapshot.values],
            "timestamp": snapshot.captured_at,
        },
        separators=(",", ":"),
    )


def _snapshot_from_json(raw: str) -> ValuationSnapshot:
    data = json.loads(raw)
    return build_snapshot(
        data["tokens"],
        [int(a) for a in data["amounts"]],
        [int(v) for v in data["values"]],
        captured_at=int(data["timestamp"]),
    )


def persist_history(session: Session, ledger_id: str, entries: Iterable[HistoryEntry]) -> int:
    """Insert *entries* not yet stored for *ledger_id*; returns rows inserted."""
    entries = list(entries)
    if not entries:
        return 0
    existing = set(
        session.exec(
            select(SolvencyHistoryRow.ts).where(SolvencyHistoryRow.ledger_id == ledger_id)
        ).all()
    )
    inserted = 0
    for entry in entries:
        if entry.timestamp in existing:
            continue
        session.add(
            SolvencyHistoryRow(
                ledger_id=ledger_id,
                ts=entry.timestamp,
                ratio_bps=str(entry.ratio),
                assets_json=_snapshot_json(entry.assets),
                liabilities_json=_snapshot_json(entry.liabilities),
            )
        )
        inserted += 1
    session.commit()
    return inserted


def load_history(session: Session, ledger_id: str) -> List[HistoryEntry]:
    """Stored points for *ledger_id* ascending by timestamp."""
    rows = session.exec(
        select(SolvencyHistoryRow)
        .where(SolvencyHistoryRow.ledger_id == ledger_id)
        .order_by(SolvencyHistoryRow.ts)
    ).all()
    return [
        HistoryEntry(
            timestamp=row.ts,
            ratio=int(row.ratio_bps),
            assets=_snapshot_from_json(row.assets_json),
            liabilities=_snapshot_from_json(row.liabilities_json),
        )
        for row in rows
    ]


class SqlHistorySink:
    """Callable history sink writing through :func:`persist_history`."""

    def __init__(self, engine: Engine, ledger_id: str) -> None:
        self.engine = engine
        self.ledger_id = ledger_id

    def __call__(self, entries) -> int:
        with Session(self.engine) as session:
            return persist_history(session, self.ledger_id, entries)
