"""Prometheus metrics for the solvency ledger."""

from .metrics import (solvency_history_entries, solvency_ratio_bps,
                      solvency_risk_alerts_total, solvency_updates_total)

__all__ = [
    "solvency_ratio_bps",
    "solvency_history_entries",
    "solvency_risk_alerts_total",
    "solvency_updates_total",
]
