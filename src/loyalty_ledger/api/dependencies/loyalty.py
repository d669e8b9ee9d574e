"""Request-scoped collaborators for the ledger endpoints."""

from __future__ import annotations

from fastapi import Depends, Request

from loyalty_ledger.db.session import async_session
from loyalty_ledger.services.loyalty.program_config import ProgramConfig, ProgramConfigCache, SessionFactory
from loyalty_ledger.services.notifications import NotificationService
from loyalty_ledger.services.retention import Clock, utcnow


def get_session_factory() -> SessionFactory:
    """Factory for handlers that open their own transactions (sweeps, config loads)."""

    return async_session


def get_clock() -> Clock:
    return utcnow


async def get_program_config(
    request: Request,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> ProgramConfig:
    cache: ProgramConfigCache | None = getattr(request.app.state, "program_config_cache", None)
    if cache is None:
        cache = ProgramConfigCache(session_factory)
        request.app.state.program_config_cache = cache
    return await cache.get()


def get_notification_service(request: Request) -> NotificationService:
    service: NotificationService | None = getattr(request.app.state, "notification_service", None)
    if service is None:
        service = NotificationService()
        request.app.state.notification_service = service
    return service


__all__ = ["get_clock", "get_notification_service", "get_program_config", "get_session_factory"]
