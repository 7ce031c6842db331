"""Immutable valuation snapshots and the solvency ratio math.

Quantities mirror on-chain token economics: amounts are native token units and
values are USD scaled by ``10**VALUE_DECIMALS``. Both are unsigned 256-bit
integers, so every sum goes through a checked accumulator.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Sequence, Tuple

from .errors import InvalidSnapshot

__all__ = [
    "UINT256_MAX",
    "VALUE_DECIMALS",
    "RATIO_SCALE",
    "ZERO_LIABILITY_RATIO",
    "EMPTY_BOOK_RATIO",
    "TokenEntry",
    "ValuationSnapshot",
    "build_snapshot",
    "checked_sum",
    "compute_ratio",
]

UINT256_MAX = 2**256 - 1
VALUE_DECIMALS = 8
RATIO_SCALE = 10_000  # 10_000 bps = 100.00 %

# Sentinels used when there are no liabilities at all
ZERO_LIABILITY_RATIO = 20_000
EMPTY_BOOK_RATIO = 10_000


@dataclass(frozen=True, slots=True)
class TokenEntry:
    """One token position inside a snapshot."""

    token: str
    amount: int
    value: int

    def to_dict(self) -> Dict[str, object]:
        return {"token": self.token, "amount": self.amount, "value": self.value}


@dataclass(frozen=True, slots=True)
class ValuationSnapshot:
    """Complete asset or liability side of the book at ``captured_at``.

    ``captured_at`` is assigned by the ledger (epoch seconds); ``0`` means the
    side has never been written.
    """

    entries: Tuple[TokenEntry, ...] = ()
    captured_at: int = 0

    @classmethod
    def empty(cls) -> "ValuationSnapshot":
        return cls()

    @property
    def tokens(self) -> Tuple[str, ...]:
        return tuple(e.token for e in self.entries)

    @property
    def amounts(self) -> Tuple[int, ...]:
        return tuple(e.amount for e in self.entries)

    @property
    def values(self) -> Tuple[int, ...]:
        return tuple(e.value for e in self.entries)

    @property
    def total_value(self) -> int:
        # validated at construction, cannot overflow
        return sum(e.value for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, object]:
        """Parallel-array form used on the wire."""
        return {
            "tokens": list(self.tokens),
            "amounts": list(self.amounts),
            "values": list(self.values),
            "timestamp": self.captured_at,
        }


def _check_uint256(kind: str, index: int, raw: object) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidSnapshot(f"{kind}[{index}] must be an integer, got {type(raw).__name__}")
    if raw < 0:
        raise InvalidSnapshot(f"{kind}[{index}] must be non-negative")
    if raw > UINT256_MAX:
        raise InvalidSnapshot(f"{kind}[{index}] exceeds uint256")
    return raw


def checked_sum(values: Iterable[int]) -> int:
    """Sum *values*, failing with :class:`InvalidSnapshot` past uint256."""
    total = 0
    for v in values:
        total += v
        if total > UINT256_MAX:
            raise InvalidSnapshot("total value overflows uint256")
    return total


def build_snapshot(
    tokens: Sequence[str],
    amounts: Sequence[int],
    values: Sequence[int],
    *,
    captured_at: int = 0,
) -> ValuationSnapshot:
    """Validate parallel arrays and return an immutable snapshot.

    Raises
    ------
    InvalidSnapshot
        On length mismatch, empty or duplicate token ids, negative or
        non-integer quantities, or a total value that overflows uint256.
    """
    if not (len(tokens) == len(amounts) == len(values)):
        raise InvalidSnapshot(
            f"length mismatch: {len(tokens)} tokens, {len(amounts)} amounts, {len(values)} values"
        )

    seen: set[str] = set()
    entries: list[TokenEntry] = []
    for i, token in enumerate(tokens):
        if not isinstance(token, str) or not token:
            raise InvalidSnapshot(f"tokens[{i}] must be a non-empty string")
        if token in seen:
            raise InvalidSnapshot(f"duplicate token {token!r}")
        seen.add(token)
        entries.append(
            TokenEntry(
                token=token,
                amount=_check_uint256("amounts", i, amounts[i]),
                value=_check_uint256("values", i, values[i]),
            )
        )

    checked_sum(e.value for e in entries)
    return ValuationSnapshot(entries=tuple(entries), captured_at=captured_at)


def compute_ratio(total_assets: int, total_liabilities: int) -> int:
    """Return the health ratio in basis points (10_000 == 100 %).

    Only an exact zero liability total uses the sentinels; tiny nonzero
    liabilities go through ordinary floor division and may produce very large
    ratios.
    """
    if total_liabilities == 0:
        return ZERO_LIABILITY_RATIO if total_assets > 0 else EMPTY_BOOK_RATIO
    return (total_assets * RATIO_SCALE) // total_liabilities


