"""Scheduled expiration of points that aged out of the retention window."""

# meta: job: loyalty-points-expiration

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from loyalty_ledger.services.loyalty.expiration import ExpirationSweeper
from loyalty_ledger.services.loyalty.program_config import ProgramConfigCache

from ._context import SessionFactory, resolve_program_config


async def run_points_expiration(
    *,
    session_factory: SessionFactory,
    dry_run: bool = False,
    config_cache: ProgramConfigCache | None = None,
    **_: Any,
) -> Dict[str, Any]:
    """Run one expiration sweep and return its summary for the scheduler."""

    config = await resolve_program_config(session_factory, config_cache)
    sweeper = ExpirationSweeper(session_factory, config)
    result = await sweeper.sweep(dry_run=dry_run)
    summary = result.as_dict()
    if result.skipped:
        logger.warning("Points expiration job skipped; previous sweep still running")
    return summary


__all__ = ["run_points_expiration"]
