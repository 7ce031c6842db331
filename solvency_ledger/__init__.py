"""Solvency ledger: asset/liability books, health ratio, risk bands and history."""

from .access import AccessGuard
from .alerts import AlertPolicy, AlertThresholds, RiskAlert, RiskLevel, classify
from .config import LedgerSettings, load_settings
from .errors import InvalidSnapshot, LedgerClosed, SolvencyError, Unauthorized
from .history import NO_TIMESTAMP, HistoryEntry, HistoryInfo, HistoryStore
from .ledger import Side, SolvencyLedger, SolvencyStatus, UpdateResult
from .snapshot import (UINT256_MAX, TokenEntry, ValuationSnapshot,
                       build_snapshot, compute_ratio)

__all__ = [
    "AccessGuard",
    "AlertPolicy",
    "AlertThresholds",
    "RiskAlert",
    "RiskLevel",
    "classify",
    "LedgerSettings",
    "load_settings",
    "SolvencyError",
    "Unauthorized",
    "InvalidSnapshot",
    "LedgerClosed",
    "NO_TIMESTAMP",
    "HistoryEntry",
    "HistoryInfo",
    "HistoryStore",
    "Side",
    "SolvencyLedger",
    "SolvencyStatus",
    "UpdateResult",
    "UINT256_MAX",
    "TokenEntry",
    "ValuationSnapshot",
    "build_snapshot",
    "compute_ratio",
]
