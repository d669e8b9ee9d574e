from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import get_session
from loyalty_ledger.observability.loyalty import get_loyalty_store
from loyalty_ledger.observability.scheduler import get_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error: str | None = Field(default=None, description="Most recent error message")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    scheduler: Dict[str, Any] | None = None
    loyalty: Dict[str, Any]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler_health: Dict[str, Any] | None = None
    job_scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    if settings.loyalty_job_scheduler_enabled and job_scheduler is not None:
        scheduler_health = job_scheduler.health()
        running = bool(scheduler_health.get("running"))
        component = ComponentStatus(status="ready" if running else "starting")
        if not running:
            component.detail = "Loyalty job scheduler not running"
            status = "degraded" if status != "error" else status

        failing = [
            job["id"]
            for job in scheduler_health.get("jobs", [])
            if (job.get("metrics") or {}).get("totals", {}).get("consecutive_failures")
        ]
        if failing:
            component.status = "degraded"
            component.detail = f"Failing jobs: {', '.join(failing)}"
            status = "degraded" if status != "error" else status

        for job in scheduler_health.get("jobs", []):
            metrics = job.get("metrics") or {}
            if metrics.get("last_error"):
                component.last_error = metrics["last_error"]
            if metrics.get("last_success_at"):
                component.last_success_at = metrics["last_success_at"]
        components["loyalty_job_scheduler"] = component
    else:
        components["loyalty_job_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Loyalty job scheduler disabled via settings",
        )
        snapshot = get_scheduler_store().snapshot()
        if snapshot.jobs:
            scheduler_health = snapshot.as_dict()

    return ReadinessPayload(
        status=status,
        components=components,
        scheduler=scheduler_health,
        loyalty=get_loyalty_store().snapshot().as_dict(),
    )
