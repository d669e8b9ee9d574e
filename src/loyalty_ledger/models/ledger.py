"""Append-only loyalty ledger."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base, enum_values


EXPIRED_MARKER = "expired"


class LedgerEntryKind(str, Enum):
    """Direction of a ledger entry."""

    EARN = "earn"
    SPEND = "spend"


class LedgerEntry(Base):
    """Point-affecting event; immutable apart from the one-way expiry marker."""

    __tablename__ = "loyalty_ledger_entries"
    __table_args__ = (
        Index("ix_loyalty_ledger_entries_kind_created", "kind", "created_at"),
        Index("ix_loyalty_ledger_entries_customer", "customer_id"),
        Index("ix_loyalty_ledger_entries_store", "store_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(
        Integer,
        ForeignKey("loyalty_customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    store_id = Column(Integer, ForeignKey("loyalty_stores.id", ondelete="SET NULL"), nullable=True)
    kind = Column(
        SqlEnum(LedgerEntryKind, name="loyalty_ledger_entry_kind", values_callable=enum_values),
        nullable=False,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    title = Column(String, nullable=False)
    check_amount = Column(Numeric(14, 2), nullable=True)
    points_redeemed = Column(Numeric(14, 2), nullable=True)
    points_earned = Column(Numeric(14, 2), nullable=True)
    store_name = Column(String, nullable=True)
    expiry_marker = Column(String(16), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    customer = relationship("LoyaltyCustomer", back_populates="ledger_entries")
    store = relationship("Store")

    @property
    def is_expired(self) -> bool:
        return self.expiry_marker == EXPIRED_MARKER
