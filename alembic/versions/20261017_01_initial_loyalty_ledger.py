"""Create loyalty customers, stores, ledger, pending discounts and program settings.

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ledger_entry_kind = sa.Enum("earn", "spend", name="loyalty_ledger_entry_kind")
pending_discount_status = sa.Enum(
    "pending",
    "processing",
    "applied",
    "failed",
    "expired",
    name="loyalty_pending_discount_status",
)


def upgrade() -> None:
    op.create_table(
        "loyalty_customers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("telegram_user_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("card_number", sa.String(length=16), nullable=True, unique=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("points_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_purchases", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_saved", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("registered_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_loyalty_customers_registered_at", "loyalty_customers", ["registered_at"])

    op.create_table(
        "loyalty_stores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "loyalty_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("kind", ledger_entry_kind, nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("check_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("points_redeemed", sa.Numeric(14, 2), nullable=True),
        sa.Column("points_earned", sa.Numeric(14, 2), nullable=True),
        sa.Column("store_name", sa.String(), nullable=True),
        sa.Column("expiry_marker", sa.String(length=16), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["loyalty_customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["store_id"], ["loyalty_stores.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_loyalty_ledger_entries_kind_created", "loyalty_ledger_entries", ["kind", "created_at"])
    op.create_index("ix_loyalty_ledger_entries_customer", "loyalty_ledger_entries", ["customer_id"])
    op.create_index("ix_loyalty_ledger_entries_store", "loyalty_ledger_entries", ["store_id"])

    op.create_table(
        "loyalty_pending_discounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("ledger_entry_id", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", pending_discount_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["store_id"], ["loyalty_stores.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["loyalty_ledger_entries.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_loyalty_pending_discounts_store_status",
        "loyalty_pending_discounts",
        ["store_id", "status"],
    )
    op.create_index("ix_loyalty_pending_discounts_expires_at", "loyalty_pending_discounts", ["expires_at"])

    op.create_table(
        "loyalty_program_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("program", sa.String(length=64), nullable=False, unique=True),
        sa.Column("earning_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("max_discount_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("retention_days", sa.Integer(), nullable=True),
        sa.Column("pending_discount_expiry_seconds", sa.Integer(), nullable=True),
        sa.Column("points_name", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("loyalty_program_settings")
    op.drop_index("ix_loyalty_pending_discounts_expires_at", table_name="loyalty_pending_discounts")
    op.drop_index("ix_loyalty_pending_discounts_store_status", table_name="loyalty_pending_discounts")
    op.drop_table("loyalty_pending_discounts")
    op.drop_index("ix_loyalty_ledger_entries_store", table_name="loyalty_ledger_entries")
    op.drop_index("ix_loyalty_ledger_entries_customer", table_name="loyalty_ledger_entries")
    op.drop_index("ix_loyalty_ledger_entries_kind_created", table_name="loyalty_ledger_entries")
    op.drop_table("loyalty_ledger_entries")
    op.drop_table("loyalty_stores")
    op.drop_index("ix_loyalty_customers_registered_at", table_name="loyalty_customers")
    op.drop_table("loyalty_customers")
    pending_discount_status.drop(op.get_bind(), checkfirst=True)
    ledger_entry_kind.drop(op.get_bind(), checkfirst=True)
