"""Runtime settings for the solvency ledger.

Values come from environment variables; alert thresholds may additionally be
overridden by a JSON policy file (``SOLVENCY_POLICY_PATH``, default
``policy.json`` next to this module)::

    {"thresholds": {"healthy_bps": 15000, "warning_bps": 12000, "high_risk_bps": 10500}}
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from .alerts import AlertThresholds

__all__ = ["LedgerSettings", "load_settings", "load_policy"]

_DEFAULT_POLICY: Dict[str, Any] = {
    "thresholds": AlertThresholds().to_dict(),
}

_POLICY_PATH = Path(__file__).with_name("policy.json")


@dataclass(slots=True)
class LedgerSettings:
    """Configuration for one ledger instance.

    Attributes
    ----------
    ledger_id
        Label attached to metrics, log lines and persisted history rows.
    owner
        Principal allowed to grant and revoke the oracle capability.
    oracles
        Principals authorised as valuation sources at startup.
    max_history
        Capacity of the history ring buffer.
    min_interval_sec
        Minimum seconds between two recorded history points.
    thresholds
        Risk band boundaries in basis points.
    db_url
        SQLAlchemy URL used for history flushes and the audit journal.
    """

    ledger_id: str = "protocol"
    owner: str = "owner"
    oracles: Tuple[str, ...] = ()
    max_history: int = 8760  # one year of hourly points
    min_interval_sec: int = 3600
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    db_url: str = "sqlite:///./solvency_ledger.db"

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValueError("owner must be non-empty")
        if self.max_history < 1:
            raise ValueError("max_history must be >= 1")
        if self.min_interval_sec < 0:
            raise ValueError("min_interval_sec must be >= 0")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def load_policy(path: str | Path | None = None) -> Dict[str, Any]:
    """Return the policy document merged over the defaults."""
    policy_path = Path(path) if path else _POLICY_PATH
    try:
        with policy_path.open() as fp:
            data = json.load(fp)
    except FileNotFoundError:
        return dict(_DEFAULT_POLICY)
    if not isinstance(data, dict):
        raise ValueError(f"{policy_path}: policy must be a JSON object")
    overrides = data.get("thresholds", {})
    if not isinstance(overrides, dict):
        raise ValueError(f"{policy_path}: thresholds must be a JSON object")
    unknown = sorted(set(overrides) - set(_DEFAULT_POLICY["thresholds"]))
    if unknown:
        raise ValueError(f"{policy_path}: unknown threshold keys {unknown}")
    thresholds = {**_DEFAULT_POLICY["thresholds"], **overrides}
    return {**_DEFAULT_POLICY, **data, "thresholds": thresholds}


def load_settings(env: Mapping[str, str] | None = None) -> LedgerSettings:
    """Build :class:`LedgerSettings` from *env* (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    policy = load_policy(env.get("SOLVENCY_POLICY_PATH"))
    oracles = tuple(
        p.strip() for p in env.get("SOLVENCY_ORACLES", "").split(",") if p.strip()
    )
    try:
        thresholds = AlertThresholds(**{k: int(v) for k, v in policy["thresholds"].items()})
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid alert thresholds: {exc}") from exc
    return LedgerSettings(
        ledger_id=env.get("SOLVENCY_LEDGER_ID", "protocol"),
        owner=env.get("SOLVENCY_OWNER", "owner"),
        oracles=oracles,
        max_history=_env_int(env, "SOLVENCY_MAX_HISTORY", 8760),
        min_interval_sec=_env_int(env, "SOLVENCY_MIN_INTERVAL_SEC", 3600),
        thresholds=thresholds,
        db_url=env.get("SOLVENCY_DB_URL", "sqlite:///./solvency_ledger.db"),
    )
