# solvency_observability/metrics.py
"""
Prometheus metrics for the solvency ledger.

This module does NOT start a standalone HTTP server.
The FastAPI app exposes metrics by mounting the ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())

For a CLI or simulation run that should be scraped, set METRICS_HTTP_SERVER=1
and call maybe_start_http_server().
"""

import os
import threading
from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ----------------------------
# Optional standalone server
# ----------------------------
_METRICS_PORT = int(os.getenv("METRICS_PORT", "8001"))
_server_started = False
_server_lock = threading.Lock()


def maybe_start_http_server() -> bool:
    """
    Start a sidecar metrics HTTP server exactly once, but only if
    METRICS_HTTP_SERVER=1 is set in the environment. Returns True once started.
    """
    global _server_started
    if _server_started or os.getenv("METRICS_HTTP_SERVER") != "1":
        return _server_started
    with _server_lock:
        if not _server_started:
            start_http_server(_METRICS_PORT)
            _server_started = True
    return _server_started


# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Ledger state
# ----------------------------

solvency_ratio_bps = get_metric(
    Gauge,
    "solvency_ratio_bps",
    "Current assets/liabilities ratio in basis points (10000 = 100%)",
    ["ledger_id"],
)

solvency_total_assets = get_metric(
    Gauge,
    "solvency_total_assets",
    "Total asset value (USD scaled by 1e8)",
    ["ledger_id"],
)

solvency_total_liabilities = get_metric(
    Gauge,
    "solvency_total_liabilities",
    "Total liability value (USD scaled by 1e8)",
    ["ledger_id"],
)

solvency_history_entries = get_metric(
    Gauge,
    "solvency_history_entries",
    "Number of retained history entries",
    ["ledger_id"],
)

# ----------------------------
# Update flow
# ----------------------------

solvency_updates_total = get_metric(
    Counter,
    "solvency_updates_total",
    "Valuation updates by side and outcome (accepted/rejected)",
    ["ledger_id", "side", "outcome"],
)

solvency_history_throttled_total = get_metric(
    Counter,
    "solvency_history_throttled_total",
    "Accepted updates that were too soon to be recorded in history",
    ["ledger_id"],
)

solvency_risk_alerts_total = get_metric(
    Counter,
    "solvency_risk_alerts_total",
    "Risk alerts emitted on band crossings",
    ["ledger_id", "kind"],
)

solvency_update_latency_seconds = get_metric(
    Histogram,
    "solvency_update_latency_seconds",
    "Latency of a valuation update in seconds",
    ["side"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
)
