"""Exception hierarchy for the solvency ledger.

Every failure raised by the core is recoverable and is raised before any ledger
state is touched.
"""
from __future__ import annotations

__all__ = [
    "SolvencyError",
    "Unauthorized",
    "InvalidSnapshot",
    "LedgerClosed",
]


class SolvencyError(Exception):
    """Base class for ledger failures."""


class Unauthorized(SolvencyError):
    """Caller lacks the capability required for the operation."""

    def __init__(self, principal: str, action: str) -> None:
        super().__init__(f"{principal!r} is not authorized to {action}")
        self.principal = principal
        self.action = action


class InvalidSnapshot(SolvencyError):
    """Submitted valuation data is malformed or out of uint256 range."""


class LedgerClosed(SolvencyError):
    """The ledger has been shut down and no longer accepts mutations."""
