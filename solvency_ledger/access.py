"""Capability check for valuation sources ("oracles")."""
from __future__ import annotations

import logging
from typing import FrozenSet, Iterable

from .errors import Unauthorized

__all__ = ["AccessGuard"]

logger = logging.getLogger(__name__)


class AccessGuard:
    """Single authorization rule consulted by every ledger mutator.

    The owner grants or revokes the valuation-source capability; only holders
    of that capability may submit snapshots. The owner is *not* implicitly a
    valuation source.

    Not thread-safe on its own: the ledger calls it inside its critical section.
    """

    def __init__(self, owner: str, sources: Iterable[str] = ()) -> None:
        if not owner:
            raise ValueError("owner principal must be non-empty")
        self._owner = owner
        self._sources: set[str] = {s for s in sources if s}

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def sources(self) -> FrozenSet[str]:
        return frozenset(self._sources)

    def is_authorized(self, principal: str) -> bool:
        return principal in self._sources

    def require_source(self, principal: str, action: str) -> None:
        """Raise :class:`Unauthorized` unless *principal* may submit valuations."""
        if not self.is_authorized(principal):
            raise Unauthorized(principal, action)

    def authorize(self, caller: str, target: str, authorized: bool) -> None:
        """Grant (``authorized=True``) or revoke the capability for *target*."""
        if caller != self._owner:
            raise Unauthorized(caller, "set_oracle")
        if not target:
            raise ValueError("target principal must be non-empty")
        if authorized:
            self._sources.add(target)
        else:
            self._sources.discard(target)
        logger.info(
            "oracle_authorization_changed",
            extra={"principal": target, "authorized": authorized},
        )
