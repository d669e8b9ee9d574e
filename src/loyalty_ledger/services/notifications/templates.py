"""Message templates for purchase notifications."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

NoticeKind = Literal["redeem", "earn"]


@dataclass(slots=True)
class TransactionNotice:
    """Facts about a committed purchase that a member is told about."""

    telegram_user_id: int
    kind: NoticeKind
    purchase_amount: Decimal
    points_earned: Decimal
    points_redeemed: Decimal
    discount_amount: Decimal
    new_balance: Decimal
    store_name: str | None = None


def _format_amount(amount: Decimal) -> str:
    return f"{float(amount):.2f}"


def _format_points(amount: Decimal) -> str:
    normalized = Decimal(amount).normalize()
    return f"{normalized:f}"


def render_transaction_notice(notice: TransactionNotice, *, points_name: str = "points") -> str:
    lines: list[str] = []
    if notice.kind == "redeem":
        lines.append("PURCHASE WITH POINTS REDEEMED")
        lines.append("")
        lines.append(f"Purchase amount: {_format_amount(notice.purchase_amount)}")
        lines.append("")
        lines.append(f"Redeemed: {_format_points(notice.points_redeemed)} {points_name}")
        lines.append(f"Discount: {_format_amount(notice.discount_amount)}")
        lines.append(f"Earned: {_format_points(notice.points_earned)} {points_name}")
    else:
        lines.append("PURCHASE")
        lines.append("")
        lines.append(f"Purchase amount: {_format_amount(notice.purchase_amount)}")
        lines.append("")
        lines.append(f"Earned: {_format_points(notice.points_earned)} {points_name}")
    if notice.store_name:
        lines.append(f"Store: {notice.store_name}")
    lines.append("")
    lines.append(f"New balance: {_format_amount(notice.new_balance)} {points_name}")
    return "\n".join(lines)


__all__ = ["NoticeKind", "TransactionNotice", "render_transaction_notice"]
