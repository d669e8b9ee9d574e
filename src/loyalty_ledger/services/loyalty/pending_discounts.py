"""Polling surface for point-of-sale agents applying committed discounts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.errors import InvalidArgumentError, InvalidTransitionError, NotFoundError
from loyalty_ledger.models.customer import Store
from loyalty_ledger.models.pending_discount import PendingDiscount, PendingDiscountStatus
from loyalty_ledger.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from loyalty_ledger.services.loyalty.ledger import to_points
from loyalty_ledger.services.retention import Clock, ensure_utc, utcnow


def effective_status(record: PendingDiscount, now: datetime) -> PendingDiscountStatus:
    """Stored status, overridden by ``expired`` once the window has passed."""

    if ensure_utc(now) >= ensure_utc(record.expires_at):
        return PendingDiscountStatus.EXPIRED
    return PendingDiscountStatus(record.status)


@dataclass(slots=True)
class PendingDiscountView:
    """Discount as a reader at ``now`` must see it."""

    id: int
    store_id: int
    ledger_entry_id: int
    discount_amount: Decimal
    status: PendingDiscountStatus
    stored_status: PendingDiscountStatus
    created_at: datetime
    expires_at: datetime
    applied_at: datetime | None
    error_message: str | None

    @classmethod
    def from_record(cls, record: PendingDiscount, now: datetime) -> "PendingDiscountView":
        return cls(
            id=record.id,
            store_id=record.store_id,
            ledger_entry_id=record.ledger_entry_id,
            discount_amount=to_points(record.discount_amount),
            status=effective_status(record, now),
            stored_status=PendingDiscountStatus(record.status),
            created_at=ensure_utc(record.created_at),
            expires_at=ensure_utc(record.expires_at),
            applied_at=ensure_utc(record.applied_at) if record.applied_at else None,
            error_message=record.error_message,
        )


class PendingDiscountQueue:
    """Lists and transitions pending discounts with lazy expiry."""

    _ALLOWED_TRANSITIONS: dict[PendingDiscountStatus, set[PendingDiscountStatus]] = {
        PendingDiscountStatus.PENDING: {PendingDiscountStatus.PROCESSING},
        PendingDiscountStatus.PROCESSING: {
            PendingDiscountStatus.APPLIED,
            PendingDiscountStatus.FAILED,
        },
        PendingDiscountStatus.APPLIED: set(),
        PendingDiscountStatus.FAILED: set(),
        PendingDiscountStatus.EXPIRED: set(),
    }

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: Clock = utcnow,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock
        self._observability = observability or get_loyalty_store()

    async def list_for_store(
        self,
        store_id: int,
        status: PendingDiscountStatus | None = PendingDiscountStatus.PENDING,
        *,
        limit: int = 100,
    ) -> list[PendingDiscountView]:
        """Discounts for a store in creation order; ``status=None`` lists every state."""

        if await self._db.get(Store, store_id) is None:
            raise NotFoundError("Store not found", store_id=store_id)

        now = self._clock()
        stmt = select(PendingDiscount).where(PendingDiscount.store_id == store_id)
        if status == PendingDiscountStatus.EXPIRED:
            stmt = stmt.where(
                or_(
                    PendingDiscount.status == PendingDiscountStatus.EXPIRED,
                    PendingDiscount.expires_at <= now,
                )
            )
        elif status is not None:
            stmt = stmt.where(PendingDiscount.status == status, PendingDiscount.expires_at > now)
        stmt = stmt.order_by(PendingDiscount.created_at.asc(), PendingDiscount.id.asc()).limit(max(1, limit))

        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        return [PendingDiscountView.from_record(record, now) for record in result.scalars().all()]

    async def get(self, discount_id: int) -> PendingDiscountView:
        record = await self._get_record(discount_id)
        return PendingDiscountView.from_record(record, self._clock())

    async def transition(
        self,
        discount_id: int,
        new_status: PendingDiscountStatus,
        error: str | None = None,
    ) -> PendingDiscountView:
        """Move a discount along pending -> processing -> applied | failed, or to expired."""

        record = await self._get_record(discount_id)
        now = self._clock()
        stored = PendingDiscountStatus(record.status)
        current = effective_status(record, now)
        target = PendingDiscountStatus(new_status)

        if target == PendingDiscountStatus.EXPIRED:
            if current != PendingDiscountStatus.EXPIRED or stored == PendingDiscountStatus.EXPIRED:
                raise InvalidTransitionError(current.value, target.value, discount_id=discount_id)
        elif target not in self._ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value, discount_id=discount_id)

        cleaned_error = (error or "").strip() or None
        if target == PendingDiscountStatus.FAILED and cleaned_error is None:
            raise InvalidArgumentError("An error message is required to fail a discount", discount_id=discount_id)

        values: dict[str, object] = {"status": target}
        if target == PendingDiscountStatus.APPLIED:
            values["applied_at"] = now
        if target == PendingDiscountStatus.FAILED:
            values["error_message"] = cleaned_error

        # Compare-and-set on the stored status so two agents cannot claim the same discount.
        stmt = update(PendingDiscount).where(
            PendingDiscount.id == discount_id,
            PendingDiscount.status == stored,
        )
        if target != PendingDiscountStatus.EXPIRED:
            stmt = stmt.where(PendingDiscount.expires_at > now)
        outcome = await self._db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        if outcome.rowcount != 1:
            await self._db.rollback()
            latest = await self._get_record(discount_id)
            raise InvalidTransitionError(
                effective_status(latest, self._clock()).value,
                target.value,
                discount_id=discount_id,
            )
        await self._db.commit()

        updated = await self._get_record(discount_id)
        self._observability.record_discount_transition(target.value)
        logger.info(
            "Pending discount transitioned",
            discount_id=discount_id,
            store_id=updated.store_id,
            from_status=current.value,
            to_status=target.value,
        )
        return PendingDiscountView.from_record(updated, now)

    async def _get_record(self, discount_id: int) -> PendingDiscount:
        record = await self._db.get(PendingDiscount, discount_id, populate_existing=True)
        if record is None:
            raise NotFoundError("Pending discount not found", discount_id=discount_id)
        return record


__all__ = ["PendingDiscountQueue", "PendingDiscountView", "effective_status"]
