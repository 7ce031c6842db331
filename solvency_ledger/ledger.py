"""The solvency ledger: current asset/liability books, ratio and history.

A :class:`SolvencyLedger` is constructed explicitly at startup and handed to
whatever serves requests (see ``solvency_ledger.api``). All state lives behind a
single re-entrant lock: every mutation runs to completion before the next one
starts and readers never observe a half-applied update.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from solvency_observability.metrics import (solvency_history_entries,
                                            solvency_history_throttled_total,
                                            solvency_ratio_bps,
                                            solvency_risk_alerts_total,
                                            solvency_total_assets,
                                            solvency_total_liabilities,
                                            solvency_update_latency_seconds,
                                            solvency_updates_total)

from .access import AccessGuard
from .alerts import AlertListener, AlertPolicy, AlertThresholds, RiskAlert, RiskLevel
from .config import LedgerSettings
from .errors import LedgerClosed, SolvencyError
from .history import HistoryEntry, HistoryInfo, HistoryStore
from .snapshot import ValuationSnapshot, build_snapshot, compute_ratio

__all__ = [
    "Side",
    "UpdateResult",
    "SolvencyStatus",
    "HistorySink",
    "SolvencyLedger",
]

logger = logging.getLogger(__name__)

HistorySink = Callable[[Tuple[HistoryEntry, ...]], int]


class Side(str, Enum):
    ASSETS = "assets"
    LIABILITIES = "liabilities"


@dataclass(frozen=True, slots=True)
class UpdateResult:
    """Outcome of an accepted update."""

    side: Side
    timestamp: int
    ratio: int
    recorded: bool
    alert: Optional[RiskAlert] = None


@dataclass(frozen=True, slots=True)
class SolvencyStatus:
    is_solvent: bool
    ratio_bps: int
    total_assets: int
    total_liabilities: int
    risk_level: RiskLevel
    updated_at: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_solvent": self.is_solvent,
            "ratio_bps": self.ratio_bps,
            "total_assets": self.total_assets,
            "total_liabilities": self.total_liabilities,
            "risk_level": self.risk_level.value,
            "updated_at": self.updated_at,
        }


def _wall_clock() -> int:
    return int(time.time())


class SolvencyLedger:
    """Owns the current books, the oracle guard, the alert policy and history."""

    def __init__(
        self,
        owner: str,
        *,
        oracles: Sequence[str] = (),
        max_entries: int = 8760,
        min_interval: int = 3600,
        thresholds: AlertThresholds | None = None,
        clock: Callable[[], int] | None = None,
        ledger_id: str = "protocol",
        history_sink: HistorySink | None = None,
    ) -> None:
        self.ledger_id = ledger_id
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._clock = clock or _wall_clock
        self._guard = AccessGuard(owner, oracles)
        self._history = HistoryStore(max_entries, min_interval)
        self._assets = ValuationSnapshot.empty()
        self._liabilities = ValuationSnapshot.empty()
        self._last_ts = 0
        self._closed = False
        self._history_sink = history_sink
        self._alerts = AlertPolicy(thresholds, initial_ratio=self._ratio())
        self._publish_gauges()

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        clock: Callable[[], int] | None = None,
        history_sink: HistorySink | None = None,
    ) -> "SolvencyLedger":
        return cls(
            settings.owner,
            oracles=settings.oracles,
            max_entries=settings.max_history,
            min_interval=settings.min_interval_sec,
            thresholds=settings.thresholds,
            clock=clock,
            ledger_id=settings.ledger_id,
            history_sink=history_sink,
        )

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------
    def _ratio(self) -> int:
        return compute_ratio(self._assets.total_value, self._liabilities.total_value)

    def _now(self) -> int:
        # never hand out a timestamp earlier than one already assigned
        return max(int(self._clock()), self._last_ts)

    def _ensure_open(self) -> None:
        if self._closed:
            raise LedgerClosed(f"ledger {self.ledger_id!r} is closed")

    def _publish_gauges(self) -> None:
        solvency_ratio_bps.labels(ledger_id=self.ledger_id).set(self._ratio())
        solvency_total_assets.labels(ledger_id=self.ledger_id).set(self._assets.total_value)
        solvency_total_liabilities.labels(ledger_id=self.ledger_id).set(
            self._liabilities.total_value
        )
        solvency_history_entries.labels(ledger_id=self.ledger_id).set(len(self._history))

    def _on_alert(self, alert: RiskAlert) -> None:
        solvency_risk_alerts_total.labels(ledger_id=self.ledger_id, kind=alert.kind).inc()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _update(
        self,
        side: Side,
        caller: str,
        tokens: Sequence[str],
        amounts: Sequence[int],
        values: Sequence[int],
    ) -> UpdateResult:
        t0 = time.perf_counter()
        try:
            with self._lock:
                self._ensure_open()
                try:
                    self._guard.require_source(caller, f"update_{side.value}")
                    now = self._now()
                    snapshot = build_snapshot(tokens, amounts, values, captured_at=now)
                except SolvencyError as exc:
                    solvency_updates_total.labels(
                        ledger_id=self.ledger_id, side=side.value, outcome="rejected"
                    ).inc()
                    logger.warning(
                        "solvency_update_rejected",
                        extra={
                            "ledger_id": self.ledger_id,
                            "principal": caller,
                            "side": side.value,
                            "reason": str(exc),
                        },
                    )
                    raise

                # validation passed: commit the whole side at once
                if side is Side.ASSETS:
                    self._assets = snapshot
                else:
                    self._liabilities = snapshot
                self._last_ts = now

                ratio = self._ratio()
                recorded, evicted = self._history.append(
                    HistoryEntry(
                        timestamp=now,
                        ratio=ratio,
                        assets=self._assets,
                        liabilities=self._liabilities,
                    )
                )
                if not recorded:
                    solvency_history_throttled_total.labels(ledger_id=self.ledger_id).inc()
                alert = self._alerts.evaluate(ratio, now)
                if alert is not None:
                    self._on_alert(alert)

                solvency_updates_total.labels(
                    ledger_id=self.ledger_id, side=side.value, outcome="accepted"
                ).inc()
                self._publish_gauges()
                logger.info(
                    "solvency_update_accepted",
                    extra={
                        "ledger_id": self.ledger_id,
                        "principal": caller,
                        "side": side.value,
                        "ratio_bps": ratio,
                        "recorded": recorded,
                        "evicted_ts": evicted.timestamp if evicted else None,
                    },
                )
                return UpdateResult(
                    side=side, timestamp=now, ratio=ratio, recorded=recorded, alert=alert
                )
        finally:
            solvency_update_latency_seconds.labels(side=side.value).observe(
                time.perf_counter() - t0
            )

    def update_assets(
        self,
        caller: str,
        tokens: Sequence[str],
        amounts: Sequence[int],
        values: Sequence[int],
    ) -> UpdateResult:
        """Replace the asset book wholesale with the submitted positions."""
        return self._update(Side.ASSETS, caller, tokens, amounts, values)

    def update_liabilities(
        self,
        caller: str,
        tokens: Sequence[str],
        amounts: Sequence[int],
        values: Sequence[int],
    ) -> UpdateResult:
        """Replace the liability book wholesale with the submitted positions."""
        return self._update(Side.LIABILITIES, caller, tokens, amounts, values)

    def submit(self, caller: str, side: Side, snapshot: ValuationSnapshot) -> UpdateResult:
        """Apply a prebuilt snapshot; its ``captured_at`` is replaced by the ledger's."""
        return self._update(
            Side(side), caller, snapshot.tokens, snapshot.amounts, snapshot.values
        )

    def set_oracle(self, caller: str, principal: str, authorized: bool) -> None:
        with self._lock:
            self._ensure_open()
            self._guard.authorize(caller, principal, authorized)

    def subscribe(self, listener: AlertListener) -> None:
        with self._lock:
            self._alerts.subscribe(listener)

    def unsubscribe(self, listener: AlertListener) -> None:
        with self._lock:
            self._alerts.unsubscribe(listener)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def owner(self) -> str:
        return self._guard.owner

    @property
    def thresholds(self) -> AlertThresholds:
        return self._alerts.thresholds

    @property
    def closed(self) -> bool:
        return self._closed

    def is_oracle(self, principal: str) -> bool:
        with self._lock:
            return self._guard.is_authorized(principal)

    def verify_solvency(self) -> Tuple[bool, int]:
        with self._lock:
            solvent = self._assets.total_value >= self._liabilities.total_value
            return solvent, self._ratio()

    def get_solvency_ratio(self) -> int:
        with self._lock:
            return self._ratio()

    def get_protocol_assets(self) -> ValuationSnapshot:
        with self._lock:
            return self._assets

    def get_protocol_liabilities(self) -> ValuationSnapshot:
        with self._lock:
            return self._liabilities

    def get_status(self) -> SolvencyStatus:
        with self._lock:
            total_assets = self._assets.total_value
            total_liabilities = self._liabilities.total_value
            return SolvencyStatus(
                is_solvent=total_assets >= total_liabilities,
                ratio_bps=self._ratio(),
                total_assets=total_assets,
                total_liabilities=total_liabilities,
                risk_level=self._alerts.level,
                updated_at=self._last_ts,
            )

    def get_history(self, start: int, end: int) -> Tuple[HistoryEntry, ...]:
        with self._lock:
            return self._history.range(start, end)

    def get_history_info(self) -> HistoryInfo:
        with self._lock:
            return self._history.info()

    def history_entries(self) -> Tuple[HistoryEntry, ...]:
        with self._lock:
            return tuple(self._history)

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------
    def restore_history(self, entries: Iterable[HistoryEntry]) -> int:
        """Seed a fresh ledger from previously persisted history.

        The books resume from the newest restored point. Returns the number of
        entries retained.
        """
        with self._lock:
            self._ensure_open()
            if self._last_ts or len(self._history):
                raise ValueError("history can only be restored into an unused ledger")
            restored = self._history.restore(entries)
            newest = self._history.newest()
            if newest is not None:
                self._assets = newest.assets
                self._liabilities = newest.liabilities
                self._last_ts = newest.timestamp
                self._alerts.reset(self._ratio())
            self._publish_gauges()
            logger.info(
                "solvency_history_restored",
                extra={"ledger_id": self.ledger_id, "entries": restored},
            )
            return restored

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _write_to_sink(self, entries: Tuple[HistoryEntry, ...]) -> int:
        # runs without the ledger lock; _flush_lock only orders sink writes
        with self._flush_lock:
            written = self._history_sink(entries)
        logger.info(
            "solvency_history_flushed",
            extra={"ledger_id": self.ledger_id, "entries": len(entries), "written": written},
        )
        return written

    def flush(self) -> int:
        """Hand the retained history to the sink; returns the sink's count."""
        if self._history_sink is None:
            return 0
        with self._lock:
            entries = tuple(self._history)
        return self._write_to_sink(entries)

    def close(self) -> int:
        """Stop accepting mutations, then flush history. Idempotent."""
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            entries = tuple(self._history)
        if self._history_sink is None:
            return 0
        return self._write_to_sink(entries)
