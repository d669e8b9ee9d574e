"""Loyalty job exports."""

from .cleanup import purge_expired_ledger  # noqa: F401
from .expiration import run_points_expiration  # noqa: F401

__all__ = [
    "purge_expired_ledger",
    "run_points_expiration",
]
