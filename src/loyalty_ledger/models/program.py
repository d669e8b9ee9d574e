"""Operator-editable loyalty program rules."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, Numeric, String, func

from loyalty_ledger.db.base import Base


class LoyaltyProgramSettings(Base):
    """Program rules overriding environment defaults, keyed by program slug."""

    __tablename__ = "loyalty_program_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    program = Column(String(64), nullable=False, unique=True)
    earning_percent = Column(Numeric(5, 2), nullable=True)
    max_discount_percent = Column(Numeric(5, 2), nullable=True)
    retention_days = Column(Integer, nullable=True)
    pending_discount_expiry_seconds = Column(Integer, nullable=True)
    points_name = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
