import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import EXPIRATION_CUTOFF, NOW, seed_customer, seed_entry, seed_store
from loyalty_ledger.models import EXPIRED_MARKER, LedgerEntry, LedgerEntryKind, LoyaltyCustomer
from loyalty_ledger.observability.loyalty import get_loyalty_store
from loyalty_ledger.services.loyalty import BalanceEngine, ExpirationSweeper, ProgramConfig


async def _balance(session_factory, customer_id: int) -> Decimal:
    async with session_factory() as session:
        value = (
            await session.execute(select(LoyaltyCustomer.points_balance).where(LoyaltyCustomer.id == customer_id))
        ).scalar_one()
    return Decimal(str(value))


async def _entry(session_factory, entry_id: int) -> LedgerEntry:
    async with session_factory() as session:
        return await session.get(LedgerEntry, entry_id)


def _sweeper(session_factory, program_config, clock) -> ExpirationSweeper:
    return ExpirationSweeper(session_factory, program_config, clock=clock, lock=asyncio.Lock())


@pytest.mark.asyncio
async def test_sweep_expires_aged_earn_entry(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="100")
    entry_id = await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))

    result = await _sweeper(session_factory, program_config, clock).sweep(dry_run=False)

    assert result.cutoff == EXPIRATION_CUTOFF
    assert result.customers_affected == 1
    assert result.total_points_expired == Decimal("100")
    assert result.entries_processed == 1
    assert result.warnings == []
    assert await _balance(session_factory, customer_id) == Decimal("0")

    entry = await _entry(session_factory, entry_id)
    assert entry.expiry_marker == EXPIRED_MARKER
    assert entry.expired_at is not None

    sweeps = get_loyalty_store().snapshot().sweeps
    assert sweeps["runs"] == 1
    assert sweeps["points_expired"] == 100.0


@pytest.mark.asyncio
async def test_sweep_floors_balance_and_reports_integrity_warning(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="30")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=50))

    result = await _sweeper(session_factory, program_config, clock).sweep(dry_run=False)

    assert await _balance(session_factory, customer_id) == Decimal("0")
    assert result.total_points_expired == Decimal("30")
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning.customer_id == customer_id
    assert warning.points_to_expire == Decimal("100")
    assert warning.points_expired == Decimal("30")
    assert warning.shortfall == Decimal("70")
    assert result.as_dict()["warnings"][0]["shortfall"] == 70.0


@pytest.mark.asyncio
async def test_second_sweep_expires_nothing(session_factory, program_config, clock) -> None:
    first_id = await seed_customer(session_factory, balance="80", telegram_user_id=1, card_number="1")
    second_id = await seed_customer(session_factory, balance="25", telegram_user_id=2, card_number="2")
    await seed_entry(session_factory, first_id, amount="30", created_at=NOW - timedelta(days=60))
    await seed_entry(session_factory, first_id, amount="20", created_at=NOW - timedelta(days=47))
    await seed_entry(session_factory, second_id, amount="25", created_at=NOW - timedelta(days=90))

    sweeper = _sweeper(session_factory, program_config, clock)
    first = await sweeper.sweep(dry_run=False)
    second = await sweeper.sweep(dry_run=False)

    assert first.customers_affected == 2
    assert first.entries_processed == 3
    assert first.total_points_expired == Decimal("75")
    assert second.customers_affected == 0
    assert second.total_points_expired == Decimal("0")
    assert await _balance(session_factory, first_id) == Decimal("30")
    assert await _balance(session_factory, second_id) == Decimal("0")


@pytest.mark.asyncio
async def test_entries_inside_window_are_untouched(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="60")
    at_cutoff = await seed_entry(session_factory, customer_id, amount="10", created_at=EXPIRATION_CUTOFF)
    recent = await seed_entry(session_factory, customer_id, amount="50", created_at=NOW - timedelta(days=3))
    spend = await seed_entry(
        session_factory,
        customer_id,
        amount="5",
        created_at=NOW - timedelta(days=80),
        kind=LedgerEntryKind.SPEND,
    )

    result = await _sweeper(session_factory, program_config, clock).sweep(dry_run=False)

    assert result.customers_affected == 0
    assert await _balance(session_factory, customer_id) == Decimal("60")
    for entry_id in (at_cutoff, recent, spend):
        assert (await _entry(session_factory, entry_id)).expiry_marker is None


@pytest.mark.asyncio
async def test_dry_run_reports_without_mutating(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="100")
    entry_id = await seed_entry(session_factory, customer_id, amount="40", created_at=NOW - timedelta(days=46))

    result = await _sweeper(session_factory, program_config, clock).sweep(dry_run=True)

    assert result.dry_run is True
    assert result.customers_affected == 1
    assert result.total_points_expired == Decimal("40")
    assert await _balance(session_factory, customer_id) == Decimal("100")
    assert (await _entry(session_factory, entry_id)).expiry_marker is None
    assert get_loyalty_store().snapshot().sweeps["runs"] == 0


@pytest.mark.asyncio
async def test_sweep_is_skipped_while_another_runs(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="100")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))
    lock = asyncio.Lock()
    sweeper = ExpirationSweeper(session_factory, program_config, clock=clock, lock=lock)

    async with lock:
        result = await sweeper.sweep(dry_run=False)

    assert result.skipped is True
    assert result.customers_affected == 0
    assert await _balance(session_factory, customer_id) == Decimal("100")
    assert get_loyalty_store().snapshot().sweeps["skipped"] == 1


@pytest.mark.asyncio
async def test_sweep_after_redemption_respects_current_balance(session_factory, program_config, clock) -> None:
    store_id = await seed_store(session_factory)
    customer_id = await seed_customer(session_factory, balance="100")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))

    async with session_factory() as session:
        await BalanceEngine(session, program_config, clock=clock).post_transaction(customer_id, store_id, 400, 70, 0)

    result = await _sweeper(session_factory, program_config, clock).sweep(dry_run=False)

    assert await _balance(session_factory, customer_id) == Decimal("0")
    assert result.total_points_expired == Decimal("30")
    assert len(result.warnings) == 1


@pytest.mark.asyncio
async def test_sweep_uses_configured_retention(session_factory, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="10")
    await seed_entry(session_factory, customer_id, amount="10", created_at=NOW - timedelta(days=8))

    short = ProgramConfig(retention_days=7)
    result = await _sweeper(session_factory, short, clock).sweep(dry_run=False)

    assert result.customers_affected == 1
    assert await _balance(session_factory, customer_id) == Decimal("0")
