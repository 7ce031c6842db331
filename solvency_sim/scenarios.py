"""Market scenarios that drive a :class:`SolvencyLedger` through its public API.

These are callers of the ledger, not part of it: every step goes through
``update_assets`` / ``update_liabilities`` with an oracle principal, exactly as
a live valuation feed would. Assets and liabilities are submitted as two calls,
so intermediate ratios between the calls are expected.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List

from solvency_ledger import RiskAlert, SolvencyLedger, UpdateResult

from .clock import ManualClock
from .price_feed import PRICE_DECIMALS, MockPriceFeed

__all__ = [
    "INITIAL_ASSETS",
    "seed_protocol",
    "apply_market_crash",
    "apply_volatility",
    "update_protocol_metrics",
    "run_market_crash",
    "run_volatility_walk",
]

# (symbol, whole tokens)
INITIAL_ASSETS = (("WETH", 1_000), ("WBTC", 100), ("USDC", 1_000_000))


def seed_protocol(ledger: SolvencyLedger, oracle: str, feed: MockPriceFeed) -> UpdateResult:
    """Submit the initial book: assets at current prices, liabilities at 50 %."""
    tokens, amounts, values = feed.book(INITIAL_ASSETS)
    ledger.update_assets(oracle, tokens, amounts, values)
    return ledger.update_liabilities(
        oracle,
        tokens,
        [a // 2 for a in amounts],
        [v // 2 for v in values],
    )


def apply_market_crash(feed: MockPriceFeed) -> None:
    """ETH halves, BTC drops 40 %, the ETH LP halves and PROT falls to $1."""
    scale = 10**PRICE_DECIMALS
    feed.set_price("WETH", feed.spec("WETH").initial_price // 2)
    feed.set_price("WBTC", feed.spec("WBTC").initial_price * 60 // 100)
    feed.set_price("LP1", feed.spec("WETH").initial_price // 4)
    feed.set_price("PROT", 1 * scale)


def apply_volatility(feed: MockPriceFeed, step: int) -> float:
    """Move ETH and BTC by ``sin(step) * 10 %``; USDC is pinned to $1."""
    volatility = math.sin(step) * 0.1
    pct = math.floor((1 + volatility) * 100)
    feed.set_price("WETH", feed.spec("WETH").initial_price * pct // 100)
    feed.set_price("WBTC", feed.spec("WBTC").initial_price * pct // 100)
    feed.set_price("USDC", 1 * 10**PRICE_DECIMALS)
    return volatility


def update_protocol_metrics(
    ledger: SolvencyLedger, oracle: str, feed: MockPriceFeed
) -> UpdateResult:
    """Re-submit a one-WETH asset book valued at the current ETH price."""
    tokens, amounts, values = feed.book((("WETH", 1),))
    return ledger.update_assets(oracle, tokens, amounts, values)


def run_market_crash(
    ledger: SolvencyLedger, oracle: str, feed: MockPriceFeed
) -> Dict[str, Any]:
    """Seed a healthy book, crash prices, re-value; report ratios and alerts."""
    alerts: List[RiskAlert] = []
    ledger.subscribe(alerts.append)
    try:
        seed_protocol(ledger, oracle, feed)
        solvent_before, ratio_before = ledger.verify_solvency()
        apply_market_crash(feed)
        result = update_protocol_metrics(ledger, oracle, feed)
        solvent_after, ratio_after = ledger.verify_solvency()
    finally:
        ledger.unsubscribe(alerts.append)
    return {
        "before": {"is_solvent": solvent_before, "ratio_bps": ratio_before},
        "after": {"is_solvent": solvent_after, "ratio_bps": ratio_after},
        "crash_alert": result.alert.to_dict() if result.alert else None,
        "alerts": [a.to_dict() for a in alerts],
    }


def run_volatility_walk(
    ledger: SolvencyLedger,
    oracle: str,
    feed: MockPriceFeed,
    clock: ManualClock,
    *,
    steps: int = 5,
    spacing: int = 3600,
) -> Dict[str, Any]:
    """Record *steps* price points *spacing* seconds apart and read them back."""
    seed_protocol(ledger, oracle, feed)

    # a half-ETH liability keeps ratios in a readable range
    tokens, amounts, values = feed.book((("WETH", 1),))
    ledger.update_liabilities(oracle, tokens, [amounts[0] // 2], [values[0] // 2])

    clock.advance(spacing)
    start = clock()
    clock.advance(1)

    points: List[Dict[str, Any]] = []
    for step in range(steps):
        volatility = apply_volatility(feed, step)
        result = update_protocol_metrics(ledger, oracle, feed)
        points.append(
            {
                "step": step,
                "volatility": round(volatility, 6),
                "eth_price": feed.get_price("WETH"),
                "btc_price": feed.get_price("WBTC"),
                "timestamp": result.timestamp,
                "ratio_bps": result.ratio,
                "recorded": result.recorded,
            }
        )
        if step < steps - 1:
            clock.advance(spacing)

    end = clock()
    history = ledger.get_history(start, end)
    return {
        "start": start,
        "end": end,
        "record_count": len(history),
        "timestamps": [e.timestamp for e in history],
        "ratios": [e.ratio for e in history],
        "points": points,
    }
