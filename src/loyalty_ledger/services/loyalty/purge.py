"""Storage reclamation for ledger rows that can no longer affect a balance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from loyalty_ledger.core.errors import TransactionalFailureError
from loyalty_ledger.models.ledger import EXPIRED_MARKER, LedgerEntry, LedgerEntryKind
from loyalty_ledger.models.pending_discount import PendingDiscount
from loyalty_ledger.services.loyalty.ledger import unswept_earn_before
from loyalty_ledger.services.loyalty.program_config import ProgramConfig, SessionFactory
from loyalty_ledger.services.retention import Clock, cleanup_cutoff, utcnow


@dataclass
class PurgeResult:
    cutoff: datetime
    dry_run: bool
    deleted: int = 0
    discounts_deleted: int = 0
    retained_unswept: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "dry_run": self.dry_run,
            "deleted": self.deleted,
            "discounts_deleted": self.discounts_deleted,
            "retained_unswept": self.retained_unswept,
        }


class LedgerRetentionPurge:
    """Deletes spend rows and swept earn rows older than the cleanup cutoff.

    Earn rows the sweeper has not marked yet are never deleted; they are
    counted so operators notice a sweep that has stopped running.
    """

    def __init__(self, session_factory: SessionFactory, config: ProgramConfig, *, clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._config = config
        self._clock = clock

    async def purge(self, dry_run: bool = False) -> PurgeResult:
        cutoff = cleanup_cutoff(self._clock(), self._config)
        result = PurgeResult(cutoff=cutoff, dry_run=dry_run)
        reclaimable = and_(
            LedgerEntry.created_at < cutoff,
            or_(
                LedgerEntry.kind == LedgerEntryKind.SPEND,
                and_(LedgerEntry.kind == LedgerEntryKind.EARN, LedgerEntry.expiry_marker == EXPIRED_MARKER),
            ),
        )

        async with self._session_factory() as session:
            try:
                unswept = await session.execute(select(func.count(LedgerEntry.id)).where(*unswept_earn_before(cutoff)))
                result.retained_unswept = int(unswept.scalar_one())

                ids_result = await session.execute(select(LedgerEntry.id).where(reclaimable))
                entry_ids = list(ids_result.scalars().all())
                if dry_run or not entry_ids:
                    result.deleted = len(entry_ids)
                else:
                    discounts = await session.execute(
                        delete(PendingDiscount).where(PendingDiscount.ledger_entry_id.in_(entry_ids))
                    )
                    entries = await session.execute(delete(LedgerEntry).where(LedgerEntry.id.in_(entry_ids)))
                    await session.commit()
                    result.discounts_deleted = discounts.rowcount or 0
                    result.deleted = entries.rowcount or 0
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Ledger retention purge failed", cutoff=cutoff.isoformat())
                raise TransactionalFailureError("Storage failure while purging ledger") from exc

        if result.retained_unswept:
            logger.warning(
                "Unswept earn entries are older than the cleanup cutoff; retaining them",
                cutoff=cutoff.isoformat(),
                retained=result.retained_unswept,
            )
        logger.bind(summary=result.as_dict()).info(
            "Ledger retention purge completed",
            dry_run=dry_run,
            deleted=result.deleted,
        )
        return result


__all__ = ["LedgerRetentionPurge", "PurgeResult"]
