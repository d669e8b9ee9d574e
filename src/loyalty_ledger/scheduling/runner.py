"""APScheduler runtime for loyalty maintenance jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Mapping

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from loyalty_ledger.core.logging import job_log_context
from loyalty_ledger.observability.scheduler import SchedulerObservabilityStore, get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


class LoyaltyJobScheduler:
    """Registers configured jobs; a job never overlaps itself and never crashes the scheduler."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        job_context: Mapping[str, Any] | None = None,
        observability: SchedulerObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._job_context = dict(job_context or {})
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False
        self._observability = observability or get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.enabled_jobs:
            func = self._resolve_callable(job)
            scheduler.add_job(
                self._wrap_callable(func, job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=job.misfire_grace_seconds,
            )
            logger.info("Registered loyalty job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Loyalty job scheduler started", jobs=len(config.enabled_jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Loyalty job scheduler stopped")

    def _resolve_callable(self, job: JobDefinition) -> JobCallable:
        module_name, _, attr = job.task.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {job.task}")
        module: ModuleType = import_module(module_name)
        func = getattr(module, attr, None)
        if func is None:
            raise AttributeError(f"Task {job.task} not found")
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Task {job.task} must be an async function")
        return func

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[None]]:
        async def _runner() -> None:
            with job_log_context(job.id, job.task):
                await _attempts()

        async def _attempts() -> None:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            kwargs = {**self._job_context, **job.kwargs}

            for attempt in range(1, job.max_attempts + 1):
                try:
                    summary = await func(session_factory=self._session_factory, **kwargs)
                except Exception as exc:
                    error_message = str(exc) or exc.__class__.__name__
                    if attempt >= job.max_attempts:
                        self._observability.record_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception("Scheduled loyalty job failed", attempts=attempt)
                        return

                    delay = job.base_backoff_seconds * (job.backoff_multiplier ** (attempt - 1))
                    if job.max_backoff_seconds:
                        delay = min(delay, job.max_backoff_seconds)
                    self._observability.record_retry(job.id, job.task, attempts=attempt + 1, error=error_message)
                    logger.warning(
                        "Scheduled loyalty job retrying",
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=error_message,
                    )
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    summary=summary if isinstance(summary, dict) else None,
                )
                logger.info(
                    "Scheduled loyalty job completed",
                    attempts=attempt,
                    runtime_seconds=round(runtime_seconds, 3),
                )
                return

        return _runner

    def health(self) -> dict[str, object]:
        """Scheduler status plus per-job metrics for ``/readyz``."""

        snapshot = self._observability.snapshot()
        configured = self._config.jobs if self._config else []
        jobs: list[dict[str, object]] = []
        next_runs: dict[str, str | None] = {}
        if self._scheduler is not None:
            for scheduled in self._scheduler.get_jobs():
                next_run = getattr(scheduled, "next_run_time", None)
                next_runs[scheduled.id] = next_run.isoformat() if next_run else None

        for job in configured:
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "max_attempts": job.max_attempts,
                    "next_run_at": next_runs.get(job.id),
                    "metrics": snapshot.jobs.get(job.id),
                }
            )

        return {
            "running": self._is_running,
            "configured_jobs": len(configured),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["LoyaltyJobScheduler"]
