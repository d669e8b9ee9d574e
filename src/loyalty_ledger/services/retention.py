"""Retention cutoffs shared by statistics, expiration and cleanup.

Every caller that reasons about "the last N days" of ledger activity must go
through these helpers so the statistics shown to a member, the balance the
sweeper leaves behind and the rows the purge removes all agree on a single
instant.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from loyalty_ledger.core.errors import ConfigurationError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite drops tzinfo) and normalise aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RetentionPolicy(Protocol):
    """Anything carrying a retention window and a purge grace period."""

    @property
    def retention_days(self) -> int: ...

    @property
    def cleanup_grace_days(self) -> int: ...


def cutoff(now: datetime, retention_days: int) -> datetime:
    """Start of ``now``'s UTC calendar day minus ``retention_days`` days."""

    if retention_days < 0:
        raise ConfigurationError(f"retention_days must be >= 0, got {retention_days}")
    start_of_day = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day - timedelta(days=retention_days)


def display_cutoff(now: datetime, policy: RetentionPolicy) -> datetime:
    """Lower bound for "last N days" history and statistics."""

    return cutoff(now, policy.retention_days)


def expiration_cutoff(now: datetime, policy: RetentionPolicy) -> datetime:
    """Earn entries created before this instant are expired."""

    return cutoff(now, policy.retention_days)


def cleanup_cutoff(now: datetime, policy: RetentionPolicy) -> datetime:
    """Purge bound; never use for balance math."""

    return cutoff(now, policy.retention_days + policy.cleanup_grace_days)


__all__ = [
    "Clock",
    "RetentionPolicy",
    "cleanup_cutoff",
    "cutoff",
    "display_cutoff",
    "ensure_utc",
    "expiration_cutoff",
    "utcnow",
]
