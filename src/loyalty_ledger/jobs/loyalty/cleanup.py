"""Scheduled reclamation of ledger rows past the cleanup cutoff."""

# meta: job: loyalty-ledger-cleanup

from __future__ import annotations

from typing import Any, Dict

from loyalty_ledger.core.settings import settings
from loyalty_ledger.services.loyalty.program_config import ProgramConfigCache
from loyalty_ledger.services.loyalty.purge import LedgerRetentionPurge

from ._context import SessionFactory, resolve_program_config


async def purge_expired_ledger(
    *,
    session_factory: SessionFactory,
    dry_run: bool | None = None,
    config_cache: ProgramConfigCache | None = None,
    **_: Any,
) -> Dict[str, Any]:
    """Delete reclaimable rows; dry run by default in development."""

    effective_dry_run = settings.cleanup_dry_run if dry_run is None else dry_run
    config = await resolve_program_config(session_factory, config_cache)
    result = await LedgerRetentionPurge(session_factory, config).purge(dry_run=effective_dry_run)
    return result.as_dict()


__all__ = ["purge_expired_ledger"]
