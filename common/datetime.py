"""Datetime helpers shared by the HTTP layer and the simulation CLI.

Provides:
    parse_iso8601(s): ISO-8601 parser that always returns an *aware* UTC
    datetime. Accepts trailing "Z", explicit offsets and fractional seconds.
    to_epoch_seconds(v): normalise epoch seconds, numeric strings, ISO-8601
    strings or datetimes to integer epoch seconds, the ledger's time unit.
"""
from __future__ import annotations

import datetime as _dt
from typing import Union

from dateutil.parser import isoparse as _isoparse

__all__ = ["parse_iso8601", "to_epoch_seconds", "from_epoch_seconds"]


def _ensure_utc(dt: _dt.datetime) -> _dt.datetime:
    """Return *dt* converted to UTC and TZ-aware."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        # naive → assume already UTC
        return dt.replace(tzinfo=_dt.timezone.utc)
    return dt.astimezone(_dt.timezone.utc)


def parse_iso8601(value: Union[str, _dt.datetime]) -> _dt.datetime:
    """Parse *value* into a timezone-aware UTC datetime."""
    if isinstance(value, _dt.datetime):
        return _ensure_utc(value)

    if not isinstance(value, str):
        raise TypeError("parse_iso8601 expects str or datetime, got " + type(value).__name__)

    try:
        dt = _isoparse(value)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"invalid ISO-8601 datetime: {value}") from exc

    return _ensure_utc(dt)


def to_epoch_seconds(value: Union[int, str, _dt.datetime]) -> int:
    """Return *value* as integer seconds since the Unix epoch.

    Integers and all-digit strings are taken as epoch seconds already;
    anything else is parsed as ISO-8601. Fractional seconds are truncated.
    """
    if isinstance(value, bool):
        raise TypeError("to_epoch_seconds does not accept bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return int(parse_iso8601(value).timestamp())


def from_epoch_seconds(ts: int) -> _dt.datetime:
    """Inverse of :func:`to_epoch_seconds` (UTC-aware)."""
    return _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc)
