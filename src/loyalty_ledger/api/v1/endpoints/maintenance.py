"""Operator triggers for the expiration sweep and the retention purge."""

from __future__ import annotations

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from loyalty_ledger.api.dependencies.loyalty import get_clock, get_program_config, get_session_factory
from loyalty_ledger.services.loyalty import ExpirationSweeper, LedgerRetentionPurge, ProgramConfig
from loyalty_ledger.services.loyalty.program_config import SessionFactory
from loyalty_ledger.services.retention import Clock


router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class IntegrityWarningResponse(BaseModel):
    customerId: int
    balance: float
    pointsToExpire: float
    pointsExpired: float


class SweepResponse(BaseModel):
    cutoff: datetime
    dryRun: bool
    skipped: bool
    customersAffected: int
    totalPointsExpired: float
    entriesProcessed: int
    warnings: List[IntegrityWarningResponse]
    missingCustomers: List[int]


class PurgeResponse(BaseModel):
    cutoff: datetime
    dryRun: bool
    deleted: int
    discountsDeleted: int
    retainedUnswept: int


@router.post("/expire-points", response_model=SweepResponse)
async def expire_points(
    dry_run: bool = Query(False, alias="dryRun"),
    session_factory: SessionFactory = Depends(get_session_factory),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> SweepResponse:
    """Run the expiration sweep now; reports ``skipped`` if one is already running."""

    result = await ExpirationSweeper(session_factory, config, clock=clock).sweep(dry_run=dry_run)
    return SweepResponse(
        cutoff=result.cutoff,
        dryRun=result.dry_run,
        skipped=result.skipped,
        customersAffected=result.customers_affected,
        totalPointsExpired=float(result.total_points_expired),
        entriesProcessed=result.entries_processed,
        warnings=[
            IntegrityWarningResponse(
                customerId=warning.customer_id,
                balance=float(warning.balance),
                pointsToExpire=float(warning.points_to_expire),
                pointsExpired=float(warning.points_expired),
            )
            for warning in result.warnings
        ],
        missingCustomers=result.missing_customers,
    )


@router.post("/purge-ledger", response_model=PurgeResponse)
async def purge_ledger(
    dry_run: bool = Query(True, alias="dryRun"),
    session_factory: SessionFactory = Depends(get_session_factory),
    config: ProgramConfig = Depends(get_program_config),
    clock: Clock = Depends(get_clock),
) -> PurgeResponse:
    result = await LedgerRetentionPurge(session_factory, config, clock=clock).purge(dry_run=dry_run)
    return PurgeResponse(
        cutoff=result.cutoff,
        dryRun=result.dry_run,
        deleted=result.deleted,
        discountsDeleted=result.discounts_deleted,
        retainedUnswept=result.retained_unswept,
    )
