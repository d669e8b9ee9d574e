"""Loyalty members and the stores they purchase at."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base


class LoyaltyCustomer(Base):
    """Loyalty member with cached balance and lifetime statistics."""

    __tablename__ = "loyalty_customers"
    __table_args__ = (Index("ix_loyalty_customers_registered_at", "registered_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_user_id = Column(Integer, nullable=False, unique=True)
    card_number = Column(String(16), nullable=True, unique=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=True)
    points_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_purchases = Column(Integer, nullable=False, default=0, server_default="0")
    total_saved = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    registered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    ledger_entries = relationship("LedgerEntry", back_populates="customer", passive_deletes=True)

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or "Unnamed member"


class Store(Base):
    """Point of sale a transaction is attributed to."""

    __tablename__ = "loyalty_stores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
