"""Run a simulation scenario against a fresh in-memory ledger.

Usage:
    python -m solvency_sim.cli crash
    python -m solvency_sim.cli volatility --steps 5 --spacing 3600
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import List, Optional

from common.logging import configure_logging
from solvency_ledger import SolvencyLedger
from solvency_observability.metrics import maybe_start_http_server

from .clock import ManualClock
from .price_feed import MockPriceFeed
from .scenarios import run_market_crash, run_volatility_walk

OWNER = "owner"
ORACLE = "oracle"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Drive the solvency ledger through a market scenario")
    ap.add_argument("scenario", choices=("crash", "volatility"))
    ap.add_argument("--steps", type=int, default=5, help="volatility points to record")
    ap.add_argument("--spacing", type=int, default=3600, help="seconds between points")
    ap.add_argument("--min-interval", type=int, default=3600, help="ledger history rate limit")
    ap.add_argument("--max-history", type=int, default=8760, help="ledger history capacity")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(
        os.getenv("LOG_FORMAT", "text"), service_name="solvency_sim", stream=sys.stderr
    )
    maybe_start_http_server()

    clock = ManualClock()
    ledger = SolvencyLedger(
        OWNER,
        oracles=(ORACLE,),
        max_entries=args.max_history,
        min_interval=args.min_interval,
        clock=clock,
        ledger_id="simulation",
    )
    feed = MockPriceFeed()

    if args.scenario == "crash":
        summary = run_market_crash(ledger, ORACLE, feed)
    else:
        summary = run_volatility_walk(
            ledger, ORACLE, feed, clock, steps=args.steps, spacing=args.spacing
        )
    summary["history_info"] = ledger.get_history_info().to_dict()
    ledger.close()

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
