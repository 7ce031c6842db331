"""Deterministic clock for driving the ledger through simulated time."""
from __future__ import annotations

__all__ = ["ManualClock"]

DEFAULT_START = 1_700_000_000


class ManualClock:
    """Callable returning epoch seconds that only moves when told to."""

    def __init__(self, start: int = DEFAULT_START) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock only moves forward; use set() to rewind")
        self.now += seconds
        return self.now

    def set(self, ts: int) -> None:
        self.now = ts
