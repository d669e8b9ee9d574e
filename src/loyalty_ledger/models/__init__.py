"""SQLAlchemy models package."""

from .customer import LoyaltyCustomer, Store  # noqa: F401
from .ledger import EXPIRED_MARKER, LedgerEntry, LedgerEntryKind  # noqa: F401
from .pending_discount import PendingDiscount, PendingDiscountStatus  # noqa: F401
from .program import LoyaltyProgramSettings  # noqa: F401

__all__ = [
    "EXPIRED_MARKER",
    "LedgerEntry",
    "LedgerEntryKind",
    "LoyaltyCustomer",
    "LoyaltyProgramSettings",
    "PendingDiscount",
    "PendingDiscountStatus",
    "Store",
]
