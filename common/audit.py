"""Shared audit logging utilities.

Services append immutable rows to the ``audit_journal`` table so that oracle
grants, revocations and valuation submissions can be reconstructed later.
The caller supplies the session; this module never opens an engine itself.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, String
from sqlmodel import Field, Session, SQLModel, select

__all__ = [
    "AuditJournal",
    "log_event",
    "recent_events",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditJournal(SQLModel, table=True):
    """Immutable audit log row."""

    __tablename__ = "audit_journal"

    id: Optional[int] = Field(default=None, primary_key=True)

    # When the action occurred (UTC)
    ts: datetime = Field(default_factory=_utcnow, index=True)

    # Emitting component, e.g. "solvency_ledger"
    service: str = Field(sa_column=Column(String, nullable=False, index=True))

    # Authenticated principal that performed the action
    actor: Optional[str] = None

    # Action verb e.g. "ORACLE_AUTHORIZED", "ASSETS_UPDATED"
    action: str = Field(sa_column=Column(String, nullable=False))

    # JSON payload with additional structured context (schema per action)
    details: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default={})
    )


def log_event(
    *,
    session: Session,
    service: str,
    action: str,
    actor: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditJournal:
    """Insert a new audit record and commit immediately.

    Parameters
    ----------
    session: SQLModel Session bound to the service database.
    service: Name of the emitting component.
    action: Action verb.
    actor: Who performed the action.
    details: JSON-serialisable dictionary with extra context. Large integers
        (uint256 quantities) should be passed as strings.
    """

    entry = AuditJournal(
        service=service,
        action=action,
        actor=actor,
        details=details or {},
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def recent_events(session: Session, *, service: str, limit: int = 50) -> List[AuditJournal]:
    """Newest-first audit rows for *service*."""

    stmt = (
        select(AuditJournal)
        .where(AuditJournal.service == service)
        .order_by(AuditJournal.id.desc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())
