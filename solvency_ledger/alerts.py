"""Risk classification of the solvency ratio and band-crossing alerts.

Classification is pure; :class:`AlertPolicy` only remembers the last band so
that an alert is raised when, and only when, the band changes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

__all__ = [
    "RiskLevel",
    "AlertThresholds",
    "RiskAlert",
    "AlertListener",
    "AlertPolicy",
    "classify",
    "ALERT_KINDS",
]

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    HIGH_RISK = "HIGH_RISK"
    CRITICAL = "CRITICAL"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    RiskLevel.HEALTHY: 0,
    RiskLevel.WARNING: 1,
    RiskLevel.HIGH_RISK: 2,
    RiskLevel.CRITICAL: 3,
}

# Alert kind emitted when the ratio enters a band
ALERT_KINDS: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "CRITICAL_SOLVENCY",
    RiskLevel.HIGH_RISK: "LOW_SOLVENCY",
    RiskLevel.WARNING: "WARNING",
    RiskLevel.HEALTHY: "SOLVENCY_RESTORED",
}


@dataclass(frozen=True, slots=True)
class AlertThresholds:
    """Lower bounds (basis points) of each band; below ``high_risk_bps`` is CRITICAL."""

    healthy_bps: int = 15_000
    warning_bps: int = 12_000
    high_risk_bps: int = 10_500

    def __post_init__(self) -> None:
        if self.high_risk_bps < 0:
            raise ValueError("thresholds must be non-negative")
        if not (self.healthy_bps >= self.warning_bps >= self.high_risk_bps):
            raise ValueError(
                "thresholds must satisfy healthy_bps >= warning_bps >= high_risk_bps"
            )

    def lower_bound(self, level: RiskLevel) -> int:
        """Ratio at which *level* begins (CRITICAL starts at 0)."""
        return {
            RiskLevel.HEALTHY: self.healthy_bps,
            RiskLevel.WARNING: self.warning_bps,
            RiskLevel.HIGH_RISK: self.high_risk_bps,
            RiskLevel.CRITICAL: 0,
        }[level]

    def to_dict(self) -> Dict[str, int]:
        return {
            "healthy_bps": self.healthy_bps,
            "warning_bps": self.warning_bps,
            "high_risk_bps": self.high_risk_bps,
        }


def classify(ratio: int, thresholds: AlertThresholds = AlertThresholds()) -> RiskLevel:
    if ratio >= thresholds.healthy_bps:
        return RiskLevel.HEALTHY
    if ratio >= thresholds.warning_bps:
        return RiskLevel.WARNING
    if ratio >= thresholds.high_risk_bps:
        return RiskLevel.HIGH_RISK
    return RiskLevel.CRITICAL


@dataclass(frozen=True, slots=True)
class RiskAlert:
    kind: str
    current_value: int
    threshold: int
    timestamp: int
    level: RiskLevel
    previous_level: RiskLevel

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "previous_level": self.previous_level.value,
        }


AlertListener = Callable[[RiskAlert], None]


class AlertPolicy:
    """Tracks the current band and notifies listeners on every crossing."""

    def __init__(
        self,
        thresholds: AlertThresholds | None = None,
        *,
        initial_ratio: int,
    ) -> None:
        self.thresholds = thresholds or AlertThresholds()
        self._level = classify(initial_ratio, self.thresholds)
        self._listeners: List[AlertListener] = []

    @property
    def level(self) -> RiskLevel:
        return self._level

    def classify(self, ratio: int) -> RiskLevel:
        return classify(ratio, self.thresholds)

    def reset(self, ratio: int) -> None:
        """Set the current band from *ratio* without alerting."""
        self._level = self.classify(ratio)

    def subscribe(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: AlertListener) -> None:
        self._listeners.remove(listener)

    def _crossed_threshold(self, previous: RiskLevel, current: RiskLevel) -> int:
        if current.severity > previous.severity:
            # fell below the floor of the band just above the new one
            better = {
                RiskLevel.WARNING: RiskLevel.HEALTHY,
                RiskLevel.HIGH_RISK: RiskLevel.WARNING,
                RiskLevel.CRITICAL: RiskLevel.HIGH_RISK,
            }[current]
            return self.thresholds.lower_bound(better)
        return self.thresholds.lower_bound(current)

    def evaluate(self, ratio: int, timestamp: int) -> Optional[RiskAlert]:
        """Reclassify *ratio*; return and dispatch an alert if the band changed."""
        current = self.classify(ratio)
        previous = self._level
        if current is previous:
            return None

        self._level = current
        alert = RiskAlert(
            kind=ALERT_KINDS[current],
            current_value=ratio,
            threshold=self._crossed_threshold(previous, current),
            timestamp=timestamp,
            level=current,
            previous_level=previous,
        )
        logger.warning(
            "risk_alert",
            extra={
                "kind": alert.kind,
                "ratio_bps": ratio,
                "threshold": alert.threshold,
                "previous_level": previous.value,
            },
        )
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                logger.exception("risk_alert_listener_failed", extra={"kind": alert.kind})
        return alert
