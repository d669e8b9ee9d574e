"""Read-side queries over the loyalty ledger."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from loyalty_ledger.core.errors import InvalidArgumentError, NotFoundError
from loyalty_ledger.models.customer import LoyaltyCustomer
from loyalty_ledger.models.ledger import LedgerEntry, LedgerEntryKind
from loyalty_ledger.services.loyalty.program_config import ProgramConfig
from loyalty_ledger.services.retention import Clock, display_cutoff, ensure_utc, expiration_cutoff, utcnow

_ZERO = Decimal("0")
_CENT = Decimal("0.01")

RECENT_DEFAULT_LIMIT = 10
RECENT_MAX_LIMIT = 50


def to_points(value: Any) -> Decimal:
    """Normalise a stored numeric (SQLite hands back floats) to two decimals."""

    if value is None:
        return _ZERO.quantize(_CENT)
    return Decimal(str(value)).quantize(_CENT)


def unswept_earn_before(cutoff: datetime) -> list[ColumnElement[bool]]:
    """Filter selecting earn entries past the window that no sweep has marked yet."""

    return [
        LedgerEntry.kind == LedgerEntryKind.EARN,
        LedgerEntry.created_at < cutoff,
        LedgerEntry.expiry_marker.is_(None),
    ]


@dataclass(slots=True)
class ExpiredEarnGroup:
    """Unswept expired earn entries belonging to one customer."""

    customer_id: int
    total: Decimal
    entry_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class AvailableBalance:
    customer_id: int
    available: Decimal
    expired_not_yet_swept: Decimal
    needs_sync: bool


@dataclass(slots=True)
class CustomerHistory:
    """Entries since the display cutoff with period totals."""

    customer_id: int
    since: datetime
    entries: list[LedgerEntry]
    earned_total: Decimal
    spent_total: Decimal


@dataclass(slots=True)
class RecentTransaction:
    id: int
    customer_id: int
    card_number: str | None
    customer_name: str
    kind: LedgerEntryKind
    title: str
    amount: Decimal
    check_amount: Decimal
    points_redeemed: Decimal
    points_earned: Decimal
    final_amount: Decimal
    created_at: datetime
    store_id: int


@dataclass(slots=True)
class ExpiringSummary:
    """Unswept earned points grouped by how soon they leave the window."""

    customer_id: int
    cutoff: datetime
    expired_now: Decimal
    expiring_in_7_days: Decimal
    expiring_in_14_days: Decimal
    expiring_in_30_days: Decimal


async def collect_expired_earn(
    db_session: AsyncSession,
    cutoff: datetime,
    *,
    customer_id: int | None = None,
) -> list[ExpiredEarnGroup]:
    """Group unswept earn entries created before ``cutoff`` by customer."""

    stmt = select(LedgerEntry.id, LedgerEntry.customer_id, LedgerEntry.amount).where(*unswept_earn_before(cutoff))
    if customer_id is not None:
        stmt = stmt.where(LedgerEntry.customer_id == customer_id)
    stmt = stmt.order_by(LedgerEntry.customer_id.asc(), LedgerEntry.created_at.asc(), LedgerEntry.id.asc())

    result = await db_session.execute(stmt)
    groups: dict[int, ExpiredEarnGroup] = {}
    for entry_id, owner_id, amount in result.all():
        group = groups.get(owner_id)
        if group is None:
            group = groups[owner_id] = ExpiredEarnGroup(customer_id=owner_id, total=to_points(0))
        group.total += to_points(amount)
        group.entry_ids.append(entry_id)
    return list(groups.values())


class LedgerQueries:
    """Balance, history and reporting reads that never mutate the ledger."""

    def __init__(self, db_session: AsyncSession, config: ProgramConfig, *, clock: Clock = utcnow) -> None:
        self._db = db_session
        self._config = config
        self._clock = clock

    async def available_balance(
        self,
        customer_id: int,
        cached_balance: Decimal | None = None,
    ) -> AvailableBalance:
        """Balance net of expired points the sweeper has not processed yet."""

        if cached_balance is None:
            customer = await self._db.get(LoyaltyCustomer, customer_id, populate_existing=True)
            if customer is None:
                raise NotFoundError("Customer not found", customer_id=customer_id)
            cached_balance = customer.points_balance
        balance = to_points(cached_balance)

        cutoff = expiration_cutoff(self._clock(), self._config)
        groups = await collect_expired_earn(self._db, cutoff, customer_id=customer_id)
        pending_expiry = groups[0].total if groups else to_points(0)
        available = max(balance - pending_expiry, to_points(0))

        if pending_expiry > _ZERO:
            logger.info(
                "Customer balance awaits expiration sweep",
                customer_id=customer_id,
                cached_balance=str(balance),
                expired_points=str(pending_expiry),
                available=str(available),
            )
        return AvailableBalance(
            customer_id=customer_id,
            available=available,
            expired_not_yet_swept=pending_expiry,
            needs_sync=pending_expiry > _ZERO,
        )

    async def customer_history(self, customer_id: int, *, limit: int = 100) -> CustomerHistory:
        if limit < 1:
            raise InvalidArgumentError("limit must be positive", limit=limit)
        if await self._db.get(LoyaltyCustomer, customer_id) is None:
            raise NotFoundError("Customer not found", customer_id=customer_id)

        since = display_cutoff(self._clock(), self._config)
        window = (LedgerEntry.customer_id == customer_id, LedgerEntry.created_at >= since)

        entries_result = await self._db.execute(
            select(LedgerEntry)
            .where(*window)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
        )
        totals_result = await self._db.execute(
            select(LedgerEntry.kind, func.coalesce(func.sum(LedgerEntry.amount), 0))
            .where(*window)
            .group_by(LedgerEntry.kind)
        )
        totals = {kind: to_points(total) for kind, total in totals_result.all()}

        return CustomerHistory(
            customer_id=customer_id,
            since=since,
            entries=list(entries_result.scalars().all()),
            earned_total=totals.get(LedgerEntryKind.EARN, to_points(0)),
            spent_total=totals.get(LedgerEntryKind.SPEND, to_points(0)),
        )

    async def recent_for_store(self, store_id: int, *, limit: int = RECENT_DEFAULT_LIMIT) -> list[RecentTransaction]:
        """Latest entries at a store for the cashier screen."""

        bounded_limit = max(1, min(limit, RECENT_MAX_LIMIT))
        stmt = (
            select(LedgerEntry, LoyaltyCustomer)
            .join(LoyaltyCustomer, LedgerEntry.customer_id == LoyaltyCustomer.id)
            .where(LedgerEntry.store_id == store_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(bounded_limit)
        )
        result = await self._db.execute(stmt)
        recent: list[RecentTransaction] = []
        for entry, customer in result.all():
            check_amount = to_points(entry.check_amount) if entry.check_amount is not None else to_points(entry.amount)
            redeemed = to_points(entry.points_redeemed)
            recent.append(
                RecentTransaction(
                    id=entry.id,
                    customer_id=customer.id,
                    card_number=customer.card_number,
                    customer_name=customer.display_name,
                    kind=entry.kind,
                    title=entry.title,
                    amount=to_points(entry.amount),
                    check_amount=check_amount,
                    points_redeemed=redeemed,
                    points_earned=to_points(entry.points_earned),
                    final_amount=check_amount - redeemed,
                    created_at=ensure_utc(entry.created_at),
                    store_id=store_id,
                )
            )
        return recent

    async def expiring_summary(self, customer_id: int) -> ExpiringSummary:
        if await self._db.get(LoyaltyCustomer, customer_id) is None:
            raise NotFoundError("Customer not found", customer_id=customer_id)

        cutoff = expiration_cutoff(self._clock(), self._config)
        bounds = [
            (None, cutoff),
            (cutoff, cutoff + timedelta(days=7)),
            (cutoff + timedelta(days=7), cutoff + timedelta(days=14)),
            (cutoff + timedelta(days=14), cutoff + timedelta(days=30)),
        ]
        buckets = [await self._sum_unswept_earn(customer_id, lower, upper) for lower, upper in bounds]
        return ExpiringSummary(
            customer_id=customer_id,
            cutoff=cutoff,
            expired_now=buckets[0],
            expiring_in_7_days=buckets[1],
            expiring_in_14_days=buckets[2],
            expiring_in_30_days=buckets[3],
        )

    async def _sum_unswept_earn(self, customer_id: int, lower: datetime | None, upper: datetime) -> Decimal:
        filters: Sequence[ColumnElement[bool]] = [
            LedgerEntry.customer_id == customer_id,
            *unswept_earn_before(upper),
        ]
        if lower is not None:
            filters = [*filters, LedgerEntry.created_at >= lower]
        result = await self._db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(*filters)
        )
        return to_points(result.scalar_one())


__all__ = [
    "AvailableBalance",
    "CustomerHistory",
    "ExpiredEarnGroup",
    "ExpiringSummary",
    "LedgerQueries",
    "RECENT_MAX_LIMIT",
    "RecentTransaction",
    "collect_expired_earn",
    "to_points",
    "unswept_earn_before",
]
