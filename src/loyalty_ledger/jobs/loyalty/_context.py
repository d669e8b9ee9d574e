"""Shared plumbing for loyalty job entrypoints."""

from __future__ import annotations

from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.services.loyalty.program_config import ProgramConfig, ProgramConfigCache

SessionFactory = Callable[[], AsyncSession]


async def resolve_program_config(
    session_factory: SessionFactory,
    config_cache: ProgramConfigCache | None,
) -> ProgramConfig:
    """Use the application's cache when the scheduler shares one, else load fresh."""

    cache = config_cache or ProgramConfigCache(session_factory)
    return await cache.get()
