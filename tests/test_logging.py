import json
import logging
import sys
from decimal import Decimal

import pytest
from loguru import logger

from loyalty_ledger.core.logging import configure_logging, job_log_context


@pytest.fixture
def log_lines():
    lines: list[str] = []
    configure_logging(service_name="loyalty-ledger", environment="test", version="9.9.9", sink=lines.append)
    yield lambda: [json.loads(line) for line in lines]
    logger.remove()
    logger.add(sys.stderr)


def test_ledger_identifiers_are_grouped_under_context(log_lines) -> None:
    logger.info("Posted loyalty transaction", customer_id=7, store_id=3, new_balance=Decimal("12.50"))

    [payload] = log_lines()
    assert payload["message"] == "Posted loyalty transaction"
    assert payload["level"] == "info"
    assert payload["service"] == "loyalty-ledger"
    assert payload["environment"] == "test"
    assert payload["version"] == "9.9.9"
    assert payload["context"] == {"customer_id": 7, "store_id": 3}
    assert payload["new_balance"] == "12.50"
    assert "trace_id" not in payload


def test_summary_binds_render_as_nested_objects(log_lines) -> None:
    summary = {"customers_affected": 2, "total_points_expired": Decimal("40.10"), "warnings": []}
    logger.bind(summary=summary).info("Points expiration sweep finished")

    [payload] = log_lines()
    assert payload["summary"] == {"customers_affected": 2, "total_points_expired": "40.10", "warnings": []}


def test_job_context_tags_nested_records(log_lines) -> None:
    with job_log_context("points_expiration", "loyalty_ledger.jobs.loyalty.run_points_expiration"):
        logger.info("Expired points for customer", customer_id=11)
    logger.info("Outside any job")

    inside, outside = log_lines()
    assert inside["context"] == {
        "customer_id": 11,
        "job_id": "points_expiration",
        "task": "loyalty_ledger.jobs.loyalty.run_points_expiration",
    }
    assert "context" not in outside


def test_exceptions_are_reported_with_type_and_message(log_lines) -> None:
    try:
        raise ValueError("ledger row missing")
    except ValueError:
        logger.exception("Loyalty transaction commit failed", customer_id=5)

    [payload] = log_lines()
    assert payload["level"] == "error"
    assert payload["error"] == {"type": "ValueError", "message": "ledger row missing"}


def test_stdlib_records_are_bridged(log_lines) -> None:
    logging.getLogger("loyalty_ledger.tests").warning("pool {size} exhausted")

    [payload] = log_lines()
    assert payload["level"] == "warning"
    assert payload["message"] == "pool {size} exhausted"
