"""Expiration sweep over earn entries that have aged out of the retention window."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from loyalty_ledger.core.errors import TransactionalFailureError
from loyalty_ledger.models.customer import LoyaltyCustomer
from loyalty_ledger.models.ledger import EXPIRED_MARKER, LedgerEntry
from loyalty_ledger.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from loyalty_ledger.services.loyalty.ledger import ExpiredEarnGroup, collect_expired_earn, to_points
from loyalty_ledger.services.loyalty.program_config import ProgramConfig, SessionFactory
from loyalty_ledger.services.retention import Clock, expiration_cutoff, utcnow

_ZERO = Decimal("0")

# One sweep at a time per process; the scheduler adds max_instances=1 on top.
_SWEEP_LOCK = asyncio.Lock()


@dataclass
class IntegrityWarning:
    """Aggregate to expire exceeded the balance; the balance was floored at zero."""

    customer_id: int
    balance: Decimal
    points_to_expire: Decimal
    points_expired: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.points_to_expire - self.points_expired

    def as_dict(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "balance": float(self.balance),
            "points_to_expire": float(self.points_to_expire),
            "points_expired": float(self.points_expired),
            "shortfall": float(self.shortfall),
        }


@dataclass
class CustomerExpiration:
    customer_id: int
    balance_before: Decimal
    balance_after: Decimal
    points_to_expire: Decimal
    entry_ids: list[int]

    @property
    def points_expired(self) -> Decimal:
        return self.balance_before - self.balance_after


@dataclass
class SweepResult:
    """Totals reported by one sweep."""

    cutoff: datetime
    dry_run: bool
    customers_affected: int = 0
    total_points_expired: Decimal = _ZERO
    entries_processed: int = 0
    skipped: bool = False
    warnings: list[IntegrityWarning] = field(default_factory=list)
    missing_customers: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "dry_run": self.dry_run,
            "skipped": self.skipped,
            "customers_affected": self.customers_affected,
            "total_points_expired": float(self.total_points_expired),
            "entries_processed": self.entries_processed,
            "warnings": [warning.as_dict() for warning in self.warnings],
            "missing_customers": list(self.missing_customers),
        }


class ExpirationSweeper:
    """Deducts aged-out earn entries from balances and marks them expired."""

    def __init__(
        self,
        session_factory: SessionFactory,
        config: ProgramConfig,
        *,
        clock: Clock = utcnow,
        lock: asyncio.Lock | None = None,
        observability: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._clock = clock
        self._lock = lock or _SWEEP_LOCK
        self._observability = observability or get_loyalty_store()

    async def sweep(self, dry_run: bool = False) -> SweepResult:
        """Run one sweep; returns ``skipped=True`` when another sweep is in flight."""

        if self._lock.locked():
            now = self._clock()
            logger.warning("Points expiration sweep already running; skipping", dry_run=dry_run)
            self._observability.record_sweep(customers_affected=0, points_expired=_ZERO, warnings=0, skipped=True)
            return SweepResult(cutoff=expiration_cutoff(now, self._config), dry_run=dry_run, skipped=True)

        async with self._lock:
            result = await self._run(dry_run)

        if not dry_run:
            self._observability.record_sweep(
                customers_affected=result.customers_affected,
                points_expired=result.total_points_expired,
                warnings=len(result.warnings),
            )
        logger.bind(summary=result.as_dict()).info(
            "Points expiration sweep completed",
            dry_run=dry_run,
            customers_affected=result.customers_affected,
            total_points_expired=str(result.total_points_expired),
            entries_processed=result.entries_processed,
        )
        return result

    async def _run(self, dry_run: bool) -> SweepResult:
        now = self._clock()
        cutoff = expiration_cutoff(now, self._config)
        result = SweepResult(cutoff=cutoff, dry_run=dry_run)

        async with self._session_factory() as session:
            groups = await collect_expired_earn(session, cutoff)

        if not groups:
            logger.info("No earn entries to expire", cutoff=cutoff.isoformat())
            return result

        logger.info(
            "Found expired earn entries",
            cutoff=cutoff.isoformat(),
            customers=len(groups),
            entries=sum(len(group.entry_ids) for group in groups),
        )

        if dry_run:
            for group in groups:
                logger.info(
                    "Dry run: customer would lose points",
                    customer_id=group.customer_id,
                    points=str(group.total),
                    entries=len(group.entry_ids),
                )
                result.customers_affected += 1
                result.total_points_expired += group.total
                result.entries_processed += len(group.entry_ids)
            return result

        for group in groups:
            outcome = await self._expire_customer(group.customer_id, cutoff, now)
            if outcome is None:
                result.missing_customers.append(group.customer_id)
                continue
            if not outcome.entry_ids:
                continue
            result.customers_affected += 1
            result.total_points_expired += outcome.points_expired
            result.entries_processed += len(outcome.entry_ids)
            if outcome.points_to_expire > outcome.balance_before:
                warning = IntegrityWarning(
                    customer_id=outcome.customer_id,
                    balance=outcome.balance_before,
                    points_to_expire=outcome.points_to_expire,
                    points_expired=outcome.points_expired,
                )
                result.warnings.append(warning)
                logger.warning(
                    "Points to expire exceed customer balance; flooring at zero",
                    customer_id=outcome.customer_id,
                    balance=str(outcome.balance_before),
                    points_to_expire=str(outcome.points_to_expire),
                    points_expired=str(outcome.points_expired),
                )
        return result

    async def _expire_customer(self, customer_id: int, cutoff: datetime, now: datetime) -> CustomerExpiration | None:
        """Expire one customer's group in its own transaction; ``None`` when the customer is gone."""

        async with self._session_factory() as session:
            try:
                # Writing first takes the row (or database) write lock before the balance is read.
                touched = await session.execute(
                    update(LoyaltyCustomer)
                    .where(LoyaltyCustomer.id == customer_id)
                    .values(last_activity_at=now)
                    .execution_options(synchronize_session=False)
                )
                if touched.rowcount != 1:
                    await session.rollback()
                    logger.warning("Customer not found during expiration sweep; skipping", customer_id=customer_id)
                    return None

                groups = await collect_expired_earn(session, cutoff, customer_id=customer_id)
                group = groups[0] if groups else ExpiredEarnGroup(customer_id=customer_id, total=to_points(0))
                if not group.entry_ids:
                    await session.rollback()
                    return CustomerExpiration(customer_id, _ZERO, _ZERO, _ZERO, [])

                balance_result = await session.execute(
                    select(LoyaltyCustomer.points_balance).where(LoyaltyCustomer.id == customer_id)
                )
                balance = to_points(balance_result.scalar_one())
                new_balance = max(balance - group.total, to_points(0))

                await session.execute(
                    update(LoyaltyCustomer)
                    .where(LoyaltyCustomer.id == customer_id)
                    .values(points_balance=new_balance)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(LedgerEntry)
                    .where(LedgerEntry.id.in_(group.entry_ids), LedgerEntry.expiry_marker.is_(None))
                    .values(expiry_marker=EXPIRED_MARKER, expired_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Expiration sweep failed for customer", customer_id=customer_id)
                raise TransactionalFailureError(
                    "Storage failure while expiring points",
                    customer_id=customer_id,
                ) from exc

        logger.info(
            "Expired customer points",
            customer_id=customer_id,
            balance_before=str(balance),
            balance_after=str(new_balance),
            points_expired=str(balance - new_balance),
            entries=len(group.entry_ids),
        )
        return CustomerExpiration(
            customer_id=customer_id,
            balance_before=balance,
            balance_after=new_balance,
            points_to_expire=group.total,
            entry_ids=list(group.entry_ids),
        )


__all__ = ["CustomerExpiration", "ExpirationSweeper", "IntegrityWarning", "SweepResult"]
