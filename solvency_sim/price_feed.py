"""In-memory price feed standing in for the external valuation oracle.

Prices are USD scaled by ``10**PRICE_DECIMALS``. Because the ledger's value
unit uses the same scale, ``value_of`` returns ledger-ready values.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

__all__ = [
    "PRICE_DECIMALS",
    "TokenSpec",
    "DEFAULT_TOKENS",
    "MockPriceFeed",
    "usd",
    "units",
]

PRICE_DECIMALS = 8


def usd(amount: int | float) -> int:
    """Whole dollars to a scaled price."""
    return int(round(amount * 10**PRICE_DECIMALS))


def units(amount: int, decimals: int) -> int:
    """Whole tokens to native units (like ``parseUnits``)."""
    return amount * 10**decimals


@dataclass(frozen=True)
class TokenSpec:
    token: str
    symbol: str
    decimals: int
    initial_price: int


# Mirrors the demo deployment book
DEFAULT_TOKENS: Tuple[TokenSpec, ...] = (
    TokenSpec("0x0000000000000000000000000000000000000001", "USDC", 6, usd(1)),
    TokenSpec("0x0000000000000000000000000000000000000002", "USDT", 6, usd(1)),
    TokenSpec("0x0000000000000000000000000000000000000003", "DAI", 18, usd(1)),
    TokenSpec("0x0000000000000000000000000000000000000004", "WETH", 18, usd(2_000)),
    TokenSpec("0x0000000000000000000000000000000000000005", "WBTC", 18, usd(35_000)),
    TokenSpec("0x0000000000000000000000000000000000000006", "LP1", 18, usd(1_000)),
    TokenSpec("0x0000000000000000000000000000000000000007", "LP2", 18, usd(2)),
    TokenSpec("0x0000000000000000000000000000000000000008", "PROT", 18, usd(5)),
)


class MockPriceFeed:
    """Settable per-token prices with symbol lookup."""

    def __init__(self, tokens: Iterable[TokenSpec] = DEFAULT_TOKENS) -> None:
        self._specs: Dict[str, TokenSpec] = {}
        self._prices: Dict[str, int] = {}
        for spec in tokens:
            self._specs[spec.symbol] = spec
            self._prices[spec.symbol] = spec.initial_price

    def spec(self, symbol: str) -> TokenSpec:
        try:
            return self._specs[symbol]
        except KeyError:
            raise KeyError(f"unknown token symbol {symbol!r}") from None

    def address(self, symbol: str) -> str:
        return self.spec(symbol).token

    def get_price(self, symbol: str) -> int:
        self.spec(symbol)
        return self._prices[symbol]

    def set_price(self, symbol: str, price: int) -> None:
        if price < 0:
            raise ValueError("price must be non-negative")
        self.spec(symbol)
        self._prices[symbol] = price

    def reset(self) -> None:
        for symbol, spec in self._specs.items():
            self._prices[symbol] = spec.initial_price

    def value_of(self, symbol: str, amount: int) -> int:
        """USD value (scaled 1e8) of *amount* native units of *symbol*."""
        return amount * self.get_price(symbol) // 10 ** self.spec(symbol).decimals

    def book(
        self, positions: Sequence[Tuple[str, int]]
    ) -> Tuple[List[str], List[int], List[int]]:
        """Turn ``(symbol, whole_tokens)`` pairs into ledger arrays."""
        tokens: List[str] = []
        amounts: List[int] = []
        values: List[int] = []
        for symbol, whole in positions:
            amount = units(whole, self.spec(symbol).decimals)
            tokens.append(self.address(symbol))
            amounts.append(amount)
            values.append(self.value_of(symbol, amount))
        return tokens, amounts, values
