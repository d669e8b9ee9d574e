from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .scheduling import LoyaltyJobScheduler
from .services.loyalty import ProgramConfigCache
from .services.notifications import NotificationService


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_cache = ProgramConfigCache(_session_factory)
    # Fail startup on invalid program rules rather than on the first purchase.
    config = await config_cache.get()
    logger.info(
        "Loyalty program config loaded",
        retention_days=config.retention_days,
        max_discount_percent=str(config.max_discount_percent),
        earning_percent=str(config.earning_percent),
        pending_discount_window_seconds=int(config.pending_discount_window.total_seconds()),
    )

    notification_service = NotificationService()

    schedule_path = Path(settings.loyalty_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    job_scheduler = LoyaltyJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
        job_context={"config_cache": config_cache},
    )

    app.state.program_config_cache = config_cache
    app.state.notification_service = notification_service
    app.state.loyalty_job_scheduler = job_scheduler

    if notification_service.enabled:
        logger.info("Telegram notifications enabled")
    else:
        logger.info("Telegram notifications disabled", reason="loyalty_notifications_enabled is false or no bot token")

    scheduler_enabled = settings.loyalty_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Loyalty job scheduler failed to start", error=str(exc))
        else:
            logger.info(
                "Loyalty job scheduler enabled",
                schedule_path=str(schedule_path),
            )
    else:
        logger.info(
            "Loyalty job scheduler disabled",
            reason="loyalty_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if scheduler_enabled and job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the loyalty ledger service."""
    configure_logging(
        service_name="loyalty-ledger",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Loyalty Ledger API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
