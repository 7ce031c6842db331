"""Fixed-capacity, rate-limited history of solvency metrics."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .snapshot import ValuationSnapshot

__all__ = [
    "NO_TIMESTAMP",
    "HistoryEntry",
    "HistoryInfo",
    "HistoryStore",
]

# Reported for oldest/newest when the store is empty. Ledger timestamps come
# from a clock that starts after the epoch, so 0 never collides with an entry.
NO_TIMESTAMP = 0


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    timestamp: int
    ratio: int
    assets: ValuationSnapshot
    liabilities: ValuationSnapshot

    def to_dict(self) -> Dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "ratio": self.ratio,
            "assets": self.assets.to_dict(),
            "liabilities": self.liabilities.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class HistoryInfo:
    total_entries: int
    max_entries: int
    oldest_timestamp: int
    newest_timestamp: int
    min_interval: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_entries": self.total_entries,
            "max_entries": self.max_entries,
            "oldest_timestamp": self.oldest_timestamp,
            "newest_timestamp": self.newest_timestamp,
            "min_interval": self.min_interval,
        }


class HistoryStore:
    """Ring buffer of :class:`HistoryEntry` ordered by ascending timestamp.

    ``_slots`` is a preallocated arena; ``_head`` indexes the oldest entry and
    ``_count`` the number of live entries. When full, an append overwrites the
    oldest slot and advances ``_head``, so eviction is O(1) and the capacity
    bound holds by construction.

    Not thread-safe on its own: the ledger serialises access.
    """

    def __init__(self, max_entries: int, min_interval: int) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self._max_entries = max_entries
        self._min_interval = min_interval
        self._slots: List[Optional[HistoryEntry]] = [None] * max_entries
        self._head = 0
        self._count = 0

    # ------------------------------------------------------------------
    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def min_interval(self) -> int:
        return self._min_interval

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[HistoryEntry]:
        for i in range(self._count):
            yield self._at(i)

    def _at(self, logical: int) -> HistoryEntry:
        entry = self._slots[(self._head + logical) % self._max_entries]
        assert entry is not None
        return entry

    def oldest(self) -> Optional[HistoryEntry]:
        return self._at(0) if self._count else None

    def newest(self) -> Optional[HistoryEntry]:
        return self._at(self._count - 1) if self._count else None

    # ------------------------------------------------------------------
    def accepts(self, timestamp: int) -> bool:
        """True if a point at *timestamp* satisfies the rate limit."""
        last = self.newest()
        if last is None:
            return True
        return timestamp > last.timestamp and timestamp - last.timestamp >= self._min_interval

    def append(self, entry: HistoryEntry) -> Tuple[bool, Optional[HistoryEntry]]:
        """Record *entry* if the rate limit allows it.

        Returns ``(recorded, evicted)`` where *evicted* is the oldest entry
        dropped to make room, if any. A rejected point leaves the store as is.
        """
        if not self.accepts(entry.timestamp):
            return False, None

        evicted: Optional[HistoryEntry] = None
        if self._count == self._max_entries:
            evicted = self._slots[self._head]
            self._slots[self._head] = entry
            self._head = (self._head + 1) % self._max_entries
        else:
            self._slots[(self._head + self._count) % self._max_entries] = entry
            self._count += 1
        return True, evicted

    def restore(self, entries: Iterable[HistoryEntry]) -> int:
        """Replace the contents with *entries*, e.g. reloaded from storage.

        Entries are ordered by timestamp and duplicates dropped; only the newest
        ``max_entries`` are kept. The rate limit is not reapplied to stored
        points. Returns the number of entries retained.
        """
        ordered: List[HistoryEntry] = []
        for entry in sorted(entries, key=lambda e: e.timestamp):
            if not ordered or entry.timestamp > ordered[-1].timestamp:
                ordered.append(entry)
        kept = ordered[-self._max_entries:]

        self._slots = [None] * self._max_entries
        self._slots[: len(kept)] = kept
        self._head = 0
        self._count = len(kept)
        return self._count

    def range(self, start: int, end: int) -> Tuple[HistoryEntry, ...]:
        """Entries with ``start <= timestamp <= end``; empty when ``start > end``."""
        if start > end or self._count == 0:
            return ()
        lo = self._lower_bound(start)
        out: list[HistoryEntry] = []
        for i in range(lo, self._count):
            entry = self._at(i)
            if entry.timestamp > end:
                break
            out.append(entry)
        return tuple(out)

    def _lower_bound(self, ts: int) -> int:
        lo, hi = 0, self._count
        while lo < hi:
            mid = (lo + hi) // 2
            if self._at(mid).timestamp < ts:
                lo = mid + 1
            else:
                hi = mid
        return lo

    def info(self) -> HistoryInfo:
        oldest = self.oldest()
        newest = self.newest()
        return HistoryInfo(
            total_entries=self._count,
            max_entries=self._max_entries,
            oldest_timestamp=oldest.timestamp if oldest else NO_TIMESTAMP,
            newest_timestamp=newest.timestamp if newest else NO_TIMESTAMP,
            min_interval=self._min_interval,
        )
