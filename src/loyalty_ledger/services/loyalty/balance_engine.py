"""Atomic posting of purchase events against a member's point balance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.errors import (
    InsufficientBalanceError,
    InvalidArgumentError,
    LimitExceededError,
    LoyaltyError,
    NotFoundError,
    TransactionalFailureError,
)
from loyalty_ledger.models.customer import LoyaltyCustomer
from loyalty_ledger.models.ledger import LedgerEntry, LedgerEntryKind
from loyalty_ledger.models.pending_discount import PendingDiscount, PendingDiscountStatus
from loyalty_ledger.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from loyalty_ledger.services.loyalty.directory import CustomerDirectory
from loyalty_ledger.services.loyalty.ledger import to_points
from loyalty_ledger.services.loyalty.program_config import ProgramConfig
from loyalty_ledger.services.notifications import NotificationService, TransactionNotice
from loyalty_ledger.services.retention import Clock, utcnow

_ZERO = Decimal("0")
_CENT = Decimal("0.01")

SPEND_TITLE = "Redemption for purchase"
CASHBACK_TITLE = "Cashback on purchase"
EARN_TITLE = "Points for purchase"


class TransactionMetadata(BaseModel):
    """Optional point-of-sale context stored alongside ledger entries."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    cashier_name: str | None = None
    terminal_id: str | None = None
    payment_method: str | None = None
    receipt_number: str | None = None

    def as_json(self) -> dict[str, Any] | None:
        payload = self.model_dump(exclude_none=True)
        return payload or None


@dataclass
class TransactionResult:
    """Outcome of a committed purchase event."""

    customer_id: int
    store_id: int
    check_amount: Decimal
    points_redeemed: Decimal
    points_earned: Decimal
    new_balance: Decimal
    created_at: datetime
    store_name: str | None = None
    ledger_entry_ids: list[int] = field(default_factory=list)
    pending_discount_id: int | None = None

    @property
    def kind(self) -> str:
        if self.points_redeemed > _ZERO:
            return "redeem"
        return "earn"


def _coerce_amount(name: str, value: Any, *, positive: bool) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"{name} must be a number", field=name, received=repr(value))
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError(f"{name} must be a number", field=name, received=repr(value)) from exc
    if not amount.is_finite():
        raise InvalidArgumentError(f"{name} must be finite", field=name, received=str(value))
    try:
        quantized = amount.quantize(_CENT)
    except InvalidOperation as exc:
        raise InvalidArgumentError(f"{name} is out of range", field=name, received=str(value)) from exc
    if quantized != amount:
        raise InvalidArgumentError(f"{name} allows at most two decimal places", field=name, received=str(value))
    if positive and quantized <= _ZERO:
        raise InvalidArgumentError(f"{name} must be positive", field=name, received=str(value))
    if quantized < _ZERO:
        raise InvalidArgumentError(f"{name} must not be negative", field=name, received=str(value))
    return quantized


def _cents(expression):
    # SQLite keeps NUMERIC as REAL, so running sums drift below whole cents.
    return func.round(expression, 2, type_=LoyaltyCustomer.points_balance.type)


def _coerce_metadata(metadata: TransactionMetadata | Mapping[str, Any] | None) -> dict[str, Any] | None:
    if metadata is None:
        return None
    if isinstance(metadata, TransactionMetadata):
        return metadata.as_json()
    try:
        return TransactionMetadata.model_validate(dict(metadata)).as_json()
    except ValidationError as exc:
        raise InvalidArgumentError("Invalid transaction metadata", errors=exc.errors()) from exc


class BalanceEngine:
    """Applies earn and redeem events to a member in one database transaction."""

    def __init__(
        self,
        db_session: AsyncSession,
        config: ProgramConfig,
        *,
        notifications: NotificationService | None = None,
        clock: Clock = utcnow,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._config = config
        self._directory = CustomerDirectory(db_session)
        self._notifications = notifications
        self._clock = clock
        self._observability = observability or get_loyalty_store()

    async def post_transaction(
        self,
        customer_id: int,
        store_id: int,
        check_amount: Any,
        points_to_redeem: Any = 0,
        points_to_earn: Any = 0,
        *,
        metadata: TransactionMetadata | Mapping[str, Any] | None = None,
    ) -> TransactionResult:
        """Post a purchase: adjust the balance, write ledger rows and queue the discount."""

        try:
            result, telegram_user_id = await self._apply(
                customer_id,
                store_id,
                check_amount,
                points_to_redeem,
                points_to_earn,
                metadata,
            )
        except LoyaltyError as exc:
            self._observability.record_transaction(f"rejected:{exc.kind}")
            raise

        self._observability.record_transaction(result.kind)
        logger.info(
            "Posted loyalty transaction",
            customer_id=result.customer_id,
            store_id=result.store_id,
            kind=result.kind,
            check_amount=str(result.check_amount),
            points_redeemed=str(result.points_redeemed),
            points_earned=str(result.points_earned),
            new_balance=str(result.new_balance),
            ledger_entry_ids=result.ledger_entry_ids,
            pending_discount_id=result.pending_discount_id,
        )
        await self._notify(result, telegram_user_id)
        return result

    async def _apply(
        self,
        customer_id: int,
        store_id: int,
        check_amount: Any,
        points_to_redeem: Any,
        points_to_earn: Any,
        metadata: TransactionMetadata | Mapping[str, Any] | None,
    ) -> tuple[TransactionResult, int]:
        check = _coerce_amount("check_amount", check_amount, positive=True)
        redeem = _coerce_amount("points_to_redeem", points_to_redeem, positive=False)
        earn = _coerce_amount("points_to_earn", points_to_earn, positive=False)
        metadata_json = _coerce_metadata(metadata)

        customer = await self._directory.get(customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", customer_id=customer_id)

        telegram_user_id = customer.telegram_user_id
        cached_balance = to_points(customer.points_balance)
        if redeem > _ZERO and cached_balance < redeem:
            raise InsufficientBalanceError(required=redeem, available=cached_balance)

        cap = self._config.redemption_cap(check)
        if redeem > cap:
            raise LimitExceededError(
                requested=redeem,
                cap=cap,
                max_discount_percent=self._config.max_discount_percent,
            )

        store = await self._directory.get_store(store_id)
        if store is None:
            raise NotFoundError("Store not found", store_id=store_id)
        store_name = store.name

        now = self._clock()
        try:
            outcome = await self._db.execute(
                update(LoyaltyCustomer)
                .where(LoyaltyCustomer.id == customer_id, _cents(LoyaltyCustomer.points_balance) >= redeem)
                .values(
                    points_balance=_cents(LoyaltyCustomer.points_balance + (earn - redeem)),
                    total_purchases=LoyaltyCustomer.total_purchases + 1,
                    total_saved=_cents(LoyaltyCustomer.total_saved + redeem),
                    last_activity_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                available = await self._read_balance(customer_id)
                raise InsufficientBalanceError(required=redeem, available=available)

            entries: list[LedgerEntry] = []
            spend_entry: LedgerEntry | None = None
            if redeem > _ZERO:
                spend_entry = LedgerEntry(
                    customer_id=customer_id,
                    store_id=store_id,
                    kind=LedgerEntryKind.SPEND,
                    amount=redeem,
                    title=SPEND_TITLE,
                    check_amount=check,
                    points_redeemed=redeem,
                    points_earned=earn,
                    store_name=store_name,
                    metadata_json=metadata_json,
                    created_at=now,
                )
                entries.append(spend_entry)
            if spend_entry is None or earn > _ZERO:
                entries.append(
                    LedgerEntry(
                        customer_id=customer_id,
                        store_id=store_id,
                        kind=LedgerEntryKind.EARN,
                        amount=earn,
                        title=CASHBACK_TITLE if spend_entry is not None else EARN_TITLE,
                        check_amount=check,
                        points_redeemed=_ZERO,
                        points_earned=earn,
                        store_name=store_name,
                        metadata_json=metadata_json,
                        created_at=now,
                    )
                )
            self._db.add_all(entries)
            await self._db.flush()

            discount: PendingDiscount | None = None
            if spend_entry is not None:
                discount = PendingDiscount(
                    store_id=store_id,
                    ledger_entry_id=spend_entry.id,
                    discount_amount=redeem,
                    status=PendingDiscountStatus.PENDING,
                    created_at=now,
                    expires_at=now + self._config.pending_discount_window,
                )
                self._db.add(discount)
                await self._db.flush()

            new_balance = await self._read_balance(customer_id)
            await self._db.commit()
        except LoyaltyError:
            await self._db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            logger.exception("Loyalty transaction commit failed", customer_id=customer_id, store_id=store_id)
            raise TransactionalFailureError(
                "Storage failure while posting transaction",
                customer_id=customer_id,
                store_id=store_id,
            ) from exc

        result = TransactionResult(
            customer_id=customer_id,
            store_id=store_id,
            check_amount=check,
            points_redeemed=redeem,
            points_earned=earn,
            new_balance=new_balance,
            created_at=now,
            store_name=store_name,
            ledger_entry_ids=[entry.id for entry in entries],
            pending_discount_id=discount.id if discount is not None else None,
        )
        return result, telegram_user_id

    async def _read_balance(self, customer_id: int) -> Decimal:
        result = await self._db.execute(
            select(LoyaltyCustomer.points_balance).where(LoyaltyCustomer.id == customer_id)
        )
        return to_points(result.scalar_one())

    async def _notify(self, result: TransactionResult, telegram_user_id: int) -> None:
        if self._notifications is None:
            return
        notice = TransactionNotice(
            telegram_user_id=telegram_user_id,
            kind=result.kind,
            purchase_amount=result.check_amount,
            points_earned=result.points_earned,
            points_redeemed=result.points_redeemed,
            discount_amount=result.points_redeemed,
            new_balance=result.new_balance,
            store_name=result.store_name,
        )
        await self._notifications.dispatch_transaction(notice)


__all__ = [
    "BalanceEngine",
    "TransactionMetadata",
    "TransactionResult",
]
