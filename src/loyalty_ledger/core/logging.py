"""Structured JSON logging for the ledger service.

Every line carries the service identity, the active trace ids and a
``context`` object with the ledger identifiers (customer, store, pending
discount, scheduled job) bound on the record. Sweep and purge summaries bound
as ``summary`` are emitted as nested objects with points rendered as strings.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from logging import LogRecord
from typing import Any, Callable, Dict, Iterator

from loguru import logger
from opentelemetry import trace

CONTEXT_KEYS = ("customer_id", "store_id", "pending_discount_id", "job_id", "task")

_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

LineSink = Callable[[str], None]


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, sqlalchemy, apscheduler) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in record.__dict__.items() if key not in _STDLIB_RECORD_ATTRS}
        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=6, exception=record.exc_info).log(level, "{}", record.getMessage())


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


def render_record(record: Dict[str, Any], metadata: Dict[str, str]) -> Dict[str, Any]:
    """Build the JSON payload for one Loguru record."""

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        **metadata,
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    extra = dict(record["extra"])
    context = {key: extra.pop(key) for key in CONTEXT_KEYS if extra.get(key) is not None}
    if context:
        payload["context"] = context
    summary = extra.pop("summary", None)
    if summary is not None:
        payload["summary"] = _jsonable(summary)
    payload.update(_jsonable(extra))

    exception = record["exception"]
    if exception is not None and exception.type is not None:
        payload["error"] = {"type": exception.type.__name__, "message": str(exception.value)}
    return payload


def _stdout_line(line: str) -> None:
    sys.stdout.write(line + "\n")


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    sink: LineSink | None = None,
) -> None:
    """Replace the Loguru sinks with one JSON-lines sink and bridge stdlib logging."""

    metadata = {"service": service_name, "environment": environment, "version": version}
    write = sink or _stdout_line

    def _emit(message: Any) -> None:
        write(json.dumps(render_record(message.record, metadata), default=str))

    logger.remove()
    logger.add(_emit, level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)


@contextmanager
def job_log_context(job_id: str, task: str) -> Iterator[None]:
    """Tag every record emitted while a scheduled job runs, including nested service logs."""

    with logger.contextualize(job_id=job_id, task=task):
        yield


__all__ = ["CONTEXT_KEYS", "InterceptHandler", "configure_logging", "job_log_context", "render_record"]
