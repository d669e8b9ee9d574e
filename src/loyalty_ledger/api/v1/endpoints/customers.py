"""Member lookup, balance and statistics endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.api.dependencies.loyalty import get_clock, get_program_config
from loyalty_ledger.core.errors import InvalidArgumentError, NotFoundError
from loyalty_ledger.db.session import get_session
from loyalty_ledger.services.loyalty import LedgerQueries, ProgramConfig
from loyalty_ledger.services.loyalty.directory import CustomerDirectory
from loyalty_ledger.services.retention import Clock, ensure_utc


router = APIRouter(prefix="/customers", tags=["customers"])


class CustomerResponse(BaseModel):
    id: int
    telegramUserId: int
    cardNumber: Optional[str]
    name: str
    balance: float
    cachedBalance: float
    needsSync: bool
    totalPurchases: int
    totalSaved: float
    registeredAt: Optional[datetime]
    lastActivityAt: Optional[datetime]


class BalanceResponse(BaseModel):
    customerId: int
    available: float
    expiredNotYetSwept: float
    needsSync: bool


class HistoryEntryResponse(BaseModel):
    id: int
    kind: str
    title: str
    amount: float
    checkAmount: Optional[float]
    storeName: Optional[str]
    expired: bool
    createdAt: datetime


class HistoryResponse(BaseModel):
    customerId: int
    since: datetime
    retentionDays: int
    earnedTotal: float
    spentTotal: float
    entries: List[HistoryEntryResponse]


class ExpiringResponse(BaseModel):
    customerId: int
    cutoff: datetime
    expiredNow: float
    expiringIn7Days: float
    expiringIn14Days: float
    expiringIn30Days: float


@router.get("/search", response_model=CustomerResponse)
async def search_customer(
    card: str = Query(..., min_length=1, description="Loyalty card number"),
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> CustomerResponse:
    """Resolve a card number to a member with the balance they can spend right now."""

    if not card.strip():
        raise InvalidArgumentError("card must not be blank", field="card")
    customer = await CustomerDirectory(db).find_by_card(card)
    if customer is None:
        raise NotFoundError("Customer not found", card_number=card.strip())

    balance = await LedgerQueries(db, config, clock=clock).available_balance(
        customer.id,
        cached_balance=customer.points_balance,
    )
    return CustomerResponse(
        id=customer.id,
        telegramUserId=customer.telegram_user_id,
        cardNumber=customer.card_number,
        name=customer.display_name,
        balance=float(balance.available),
        cachedBalance=float(customer.points_balance or 0),
        needsSync=balance.needs_sync,
        totalPurchases=customer.total_purchases or 0,
        totalSaved=float(customer.total_saved or 0),
        registeredAt=ensure_utc(customer.registered_at) if customer.registered_at else None,
        lastActivityAt=ensure_utc(customer.last_activity_at) if customer.last_activity_at else None,
    )


@router.get("/{customer_id}/balance", response_model=BalanceResponse)
async def get_balance(
    customer_id: int,
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> BalanceResponse:
    balance = await LedgerQueries(db, config, clock=clock).available_balance(customer_id)
    return BalanceResponse(
        customerId=balance.customer_id,
        available=float(balance.available),
        expiredNotYetSwept=float(balance.expired_not_yet_swept),
        needsSync=balance.needs_sync,
    )


@router.get("/{customer_id}/history", response_model=HistoryResponse)
async def get_history(
    customer_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> HistoryResponse:
    history = await LedgerQueries(db, config, clock=clock).customer_history(customer_id, limit=limit)
    return HistoryResponse(
        customerId=history.customer_id,
        since=history.since,
        retentionDays=config.retention_days,
        earnedTotal=float(history.earned_total),
        spentTotal=float(history.spent_total),
        entries=[
            HistoryEntryResponse(
                id=entry.id,
                kind=entry.kind.value,
                title=entry.title,
                amount=float(entry.amount),
                checkAmount=float(entry.check_amount) if entry.check_amount is not None else None,
                storeName=entry.store_name,
                expired=entry.is_expired,
                createdAt=ensure_utc(entry.created_at),
            )
            for entry in history.entries
        ],
    )


@router.get("/{customer_id}/expiring", response_model=ExpiringResponse)
async def get_expiring(
    customer_id: int,
    db: AsyncSession = Depends(get_session),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> ExpiringResponse:
    summary = await LedgerQueries(db, config, clock=clock).expiring_summary(customer_id)
    return ExpiringResponse(
        customerId=summary.customer_id,
        cutoff=summary.cutoff,
        expiredNow=float(summary.expired_now),
        expiringIn7Days=float(summary.expiring_in_7_days),
        expiringIn14Days=float(summary.expiring_in_14_days),
        expiringIn30Days=float(summary.expiring_in_30_days),
    )
