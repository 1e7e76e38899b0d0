"""
core/clock.py -- UTC timestamp helpers shared by the stores and services.

Timestamps are persisted as fixed-width ISO 8601 strings (always with
microseconds and a +00:00 offset) so that lexical comparison in SQL
(expires_at > :now) matches chronological order.

Services accept a `clock` callable defaulting to utcnow(). Tests pass a
lambda returning a fixed datetime to simulate expiry without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize an aware datetime as fixed-width UTC ISO 8601."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
