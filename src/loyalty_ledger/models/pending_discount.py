"""Discount handoff records polled by point-of-sale agents."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base, enum_values


class PendingDiscountStatus(str, Enum):
    """Lifecycle statuses for a discount awaiting application at the till."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPLIED = "applied"
    FAILED = "failed"
    EXPIRED = "expired"


class PendingDiscount(Base):
    """Discount committed to the ledger that a POS agent must still apply."""

    __tablename__ = "loyalty_pending_discounts"
    __table_args__ = (
        Index("ix_loyalty_pending_discounts_store_status", "store_id", "status"),
        Index("ix_loyalty_pending_discounts_expires_at", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("loyalty_stores.id", ondelete="CASCADE"), nullable=False)
    ledger_entry_id = Column(
        Integer,
        ForeignKey("loyalty_ledger_entries.id", ondelete="CASCADE"),
        nullable=False,
    )
    discount_amount = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SqlEnum(
            PendingDiscountStatus,
            name="loyalty_pending_discount_status",
            values_callable=enum_values,
        ),
        nullable=False,
        default=PendingDiscountStatus.PENDING,
        server_default=PendingDiscountStatus.PENDING.value,
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(String, nullable=True)

    ledger_entry = relationship("LedgerEntry")
