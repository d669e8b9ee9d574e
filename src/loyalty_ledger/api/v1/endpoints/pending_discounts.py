"""Polling surface for point-of-sale agents."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.api.dependencies.loyalty import get_clock
from loyalty_ledger.db.session import get_session
from loyalty_ledger.models.pending_discount import PendingDiscountStatus
from loyalty_ledger.services.loyalty import PendingDiscountQueue, PendingDiscountView
from loyalty_ledger.services.retention import Clock


router = APIRouter(tags=["pending-discounts"])

StatusFilter = Literal["pending", "processing", "applied", "failed", "expired", "all"]


class PendingDiscountResponse(BaseModel):
    id: int
    storeId: int
    ledgerEntryId: int
    discountAmount: float
    status: str
    createdAt: datetime
    expiresAt: datetime
    appliedAt: Optional[datetime]
    errorMessage: Optional[str]


class TransitionRequest(BaseModel):
    status: PendingDiscountStatus
    error: Optional[str] = Field(None, description="Required when failing a discount")


def _to_response(view: PendingDiscountView) -> PendingDiscountResponse:
    return PendingDiscountResponse(
        id=view.id,
        storeId=view.store_id,
        ledgerEntryId=view.ledger_entry_id,
        discountAmount=float(view.discount_amount),
        status=view.status.value,
        createdAt=view.created_at,
        expiresAt=view.expires_at,
        appliedAt=view.applied_at,
        errorMessage=view.error_message,
    )


@router.get("/stores/{store_id}/pending-discounts", response_model=List[PendingDiscountResponse])
async def list_pending_discounts(
    store_id: int,
    status_filter: StatusFilter = Query("pending", alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> List[PendingDiscountResponse]:
    """Discounts for a store as the POS agent must see them; stale entries read as expired."""

    status_value = None if status_filter == "all" else PendingDiscountStatus(status_filter)
    views = await PendingDiscountQueue(db, clock=clock).list_for_store(store_id, status_value, limit=limit)
    return [_to_response(view) for view in views]


@router.post("/pending-discounts/{discount_id}/transition", response_model=PendingDiscountResponse)
async def transition_pending_discount(
    discount_id: int,
    payload: TransitionRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> PendingDiscountResponse:
    view = await PendingDiscountQueue(db, clock=clock).transition(discount_id, payload.status, payload.error)
    return _to_response(view)
