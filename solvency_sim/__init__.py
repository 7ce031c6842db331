"""Simulation harness: mock price feed, manual clock and market scenarios."""

from .clock import ManualClock
from .price_feed import DEFAULT_TOKENS, MockPriceFeed, TokenSpec
from .scenarios import (apply_market_crash, apply_volatility, run_market_crash,
                        run_volatility_walk, seed_protocol,
                        update_protocol_metrics)

__all__ = [
    "ManualClock",
    "MockPriceFeed",
    "TokenSpec",
    "DEFAULT_TOKENS",
    "seed_protocol",
    "apply_market_crash",
    "apply_volatility",
    "update_protocol_metrics",
    "run_market_crash",
    "run_volatility_walk",
]
