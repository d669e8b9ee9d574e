"""Cashier-facing purchase posting, quotes and the recent activity feed."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.api.dependencies.loyalty import get_clock, get_notification_service, get_program_config
from loyalty_ledger.core.errors import InvalidArgumentError, NotFoundError
from loyalty_ledger.db.session import get_session
from loyalty_ledger.services.loyalty import BalanceEngine, LedgerQueries, ProgramConfig, TransactionMetadata
from loyalty_ledger.services.loyalty.directory import CustomerDirectory
from loyalty_ledger.services.loyalty.ledger import RECENT_MAX_LIMIT, RecentTransaction
from loyalty_ledger.services.notifications import NotificationService
from loyalty_ledger.services.retention import Clock


router = APIRouter(prefix="/transactions", tags=["transactions"])


class TransactionMetadataPayload(BaseModel):
    cashierName: Optional[str] = None
    terminalId: Optional[str] = None
    paymentMethod: Optional[str] = None
    receiptNumber: Optional[str] = None

    def to_metadata(self) -> TransactionMetadata:
        return TransactionMetadata(
            cashier_name=self.cashierName,
            terminal_id=self.terminalId,
            payment_method=self.paymentMethod,
            receipt_number=self.receiptNumber,
        )


class TransactionCreateRequest(BaseModel):
    customerId: int
    storeId: int
    checkAmount: Decimal = Field(..., description="Purchase total before any discount")
    pointsToRedeem: Decimal = Field(Decimal("0"), description="Points applied as a discount")
    pointsToEarn: Optional[Decimal] = Field(
        None,
        description="Points credited; defaults to the program cashback on the paid amount",
    )
    metadata: Optional[TransactionMetadataPayload] = None


class TransactionResponse(BaseModel):
    customerId: int
    storeId: int
    storeName: Optional[str]
    kind: str
    checkAmount: float
    pointsRedeemed: float
    pointsEarned: float
    finalAmount: float
    newBalance: float
    ledgerEntryIds: List[int]
    pendingDiscountId: Optional[int]
    createdAt: datetime


class QuoteRequest(BaseModel):
    checkAmount: Decimal
    pointsToRedeem: Decimal = Decimal("0")
    customerId: Optional[int] = None


class QuoteResponse(BaseModel):
    checkAmount: float
    pointsToRedeem: float
    maxRedeemable: float
    cashback: float
    finalAmount: float
    availableBalance: Optional[float]
    maxDiscountPercent: float
    earningPercent: float


class RecentTransactionResponse(BaseModel):
    id: int
    customerId: int
    cardNumber: Optional[str]
    customerName: str
    kind: str
    title: str
    amount: float
    checkAmount: float
    pointsRedeemed: float
    pointsEarned: float
    finalAmount: float
    createdAt: datetime


def _recent_response(item: RecentTransaction) -> RecentTransactionResponse:
    return RecentTransactionResponse(
        id=item.id,
        customerId=item.customer_id,
        cardNumber=item.card_number,
        customerName=item.customer_name,
        kind=item.kind.value,
        title=item.title,
        amount=float(item.amount),
        checkAmount=float(item.check_amount),
        pointsRedeemed=float(item.points_redeemed),
        pointsEarned=float(item.points_earned),
        finalAmount=float(item.final_amount),
        createdAt=item.created_at,
    )


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreateRequest,
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    notifications: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
) -> TransactionResponse:
    """Post a purchase for a member; the discount is queued for the store's POS agent."""

    points_to_earn = payload.pointsToEarn
    if points_to_earn is None:
        points_to_earn = config.cashback_for(payload.checkAmount, payload.pointsToRedeem)

    engine = BalanceEngine(db, config, notifications=notifications, clock=clock)
    result = await engine.post_transaction(
        payload.customerId,
        payload.storeId,
        payload.checkAmount,
        payload.pointsToRedeem,
        points_to_earn,
        metadata=payload.metadata.to_metadata() if payload.metadata else None,
    )
    return TransactionResponse(
        customerId=result.customer_id,
        storeId=result.store_id,
        storeName=result.store_name,
        kind=result.kind,
        checkAmount=float(result.check_amount),
        pointsRedeemed=float(result.points_redeemed),
        pointsEarned=float(result.points_earned),
        finalAmount=float(result.check_amount - result.points_redeemed),
        newBalance=float(result.new_balance),
        ledgerEntryIds=result.ledger_entry_ids,
        pendingDiscountId=result.pending_discount_id,
        createdAt=result.created_at,
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote_transaction(
    payload: QuoteRequest,
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> QuoteResponse:
    """Preview the cap, cashback and amount due without touching the ledger."""

    if payload.checkAmount <= 0:
        raise InvalidArgumentError("checkAmount must be positive", field="checkAmount")
    if payload.pointsToRedeem < 0:
        raise InvalidArgumentError("pointsToRedeem must not be negative", field="pointsToRedeem")

    max_redeemable = config.redemption_cap(payload.checkAmount)
    available: Decimal | None = None
    if payload.customerId is not None:
        customer = await CustomerDirectory(db).get(payload.customerId)
        if customer is None:
            raise NotFoundError("Customer not found", customer_id=payload.customerId)
        balance = await LedgerQueries(db, config, clock=clock).available_balance(
            customer.id,
            cached_balance=customer.points_balance,
        )
        available = balance.available
        max_redeemable = min(max_redeemable, available)

    redeem = min(payload.pointsToRedeem, max_redeemable)
    return QuoteResponse(
        checkAmount=float(payload.checkAmount),
        pointsToRedeem=float(redeem),
        maxRedeemable=float(max_redeemable),
        cashback=float(config.cashback_for(payload.checkAmount, redeem)),
        finalAmount=float(payload.checkAmount - redeem),
        availableBalance=float(available) if available is not None else None,
        maxDiscountPercent=float(config.max_discount_percent),
        earningPercent=float(config.earning_percent),
    )


@router.get("/recent", response_model=List[RecentTransactionResponse])
async def list_recent_transactions(
    store_id: int = Query(..., alias="storeId"),
    limit: int = Query(10, description=f"Clamped to 1..{RECENT_MAX_LIMIT}"),
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> List[RecentTransactionResponse]:
    recent = await LedgerQueries(db, config, clock=clock).recent_for_store(store_id, limit=limit)
    return [_recent_response(item) for item in recent]
