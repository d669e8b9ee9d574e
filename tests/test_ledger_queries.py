from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import EXPIRATION_CUTOFF, NOW, seed_customer, seed_entry, seed_store
from loyalty_ledger.core.errors import InvalidArgumentError, NotFoundError
from loyalty_ledger.models import EXPIRED_MARKER, LedgerEntryKind
from loyalty_ledger.services.loyalty import BalanceEngine, LedgerQueries


@pytest.mark.asyncio
async def test_available_balance_excludes_unswept_expired_points(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="150")
    await seed_entry(session_factory, customer_id, amount="100", created_at=NOW - timedelta(days=46))
    await seed_entry(session_factory, customer_id, amount="50", created_at=NOW - timedelta(days=2))

    async with session_factory() as session:
        balance = await LedgerQueries(session, program_config, clock=clock).available_balance(customer_id)

    assert balance.available == Decimal("50.00")
    assert balance.expired_not_yet_swept == Decimal("100.00")
    assert balance.needs_sync is True


@pytest.mark.asyncio
async def test_available_balance_ignores_swept_entries_and_floors(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="20")
    await seed_entry(
        session_factory,
        customer_id,
        amount="500",
        created_at=NOW - timedelta(days=90),
        expiry_marker=EXPIRED_MARKER,
    )
    await seed_entry(session_factory, customer_id, amount="60", created_at=NOW - timedelta(days=50))

    async with session_factory() as session:
        queries = LedgerQueries(session, program_config, clock=clock)
        balance = await queries.available_balance(customer_id)
        cached = await queries.available_balance(customer_id, cached_balance=Decimal("100"))

    assert balance.available == Decimal("0.00")
    assert balance.expired_not_yet_swept == Decimal("60.00")
    assert cached.available == Decimal("40.00")


@pytest.mark.asyncio
async def test_available_balance_unknown_customer(session_factory, program_config, clock) -> None:
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await LedgerQueries(session, program_config, clock=clock).available_balance(404)


@pytest.mark.asyncio
async def test_history_covers_display_window_with_totals(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="0")
    await seed_entry(session_factory, customer_id, amount="999", created_at=EXPIRATION_CUTOFF - timedelta(seconds=1))
    await seed_entry(session_factory, customer_id, amount="10", created_at=EXPIRATION_CUTOFF)
    await seed_entry(session_factory, customer_id, amount="15", created_at=NOW - timedelta(days=1))
    await seed_entry(
        session_factory,
        customer_id,
        amount="7",
        created_at=NOW - timedelta(hours=1),
        kind=LedgerEntryKind.SPEND,
    )

    async with session_factory() as session:
        queries = LedgerQueries(session, program_config, clock=clock)
        history = await queries.customer_history(customer_id)
        limited = await queries.customer_history(customer_id, limit=1)

    assert history.since == EXPIRATION_CUTOFF
    assert [Decimal(str(entry.amount)) for entry in history.entries] == [Decimal("7"), Decimal("15"), Decimal("10")]
    assert history.earned_total == Decimal("25.00")
    assert history.spent_total == Decimal("7.00")
    assert len(limited.entries) == 1
    assert limited.earned_total == Decimal("25.00")


@pytest.mark.asyncio
async def test_history_rejects_bad_limit_and_unknown_customer(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory)
    async with session_factory() as session:
        queries = LedgerQueries(session, program_config, clock=clock)
        with pytest.raises(InvalidArgumentError):
            await queries.customer_history(customer_id, limit=0)
        with pytest.raises(NotFoundError):
            await queries.customer_history(customer_id + 1)


@pytest.mark.asyncio
async def test_recent_for_store_is_newest_first_and_clamped(session_factory, program_config, clock) -> None:
    store_id = await seed_store(session_factory)
    other_store = await seed_store(session_factory, name="Harbour Kiosk")
    customer_id = await seed_customer(session_factory, balance="1000", first_name="Liga")

    async with session_factory() as session:
        engine = BalanceEngine(session, program_config, clock=clock)
        await engine.post_transaction(customer_id, store_id, 100, 0, 4)
        clock.advance(minutes=1)
        await engine.post_transaction(customer_id, store_id, 200, 40, 6.4)
        clock.advance(minutes=1)
        await engine.post_transaction(customer_id, other_store, 50, 0, 2)

    async with session_factory() as session:
        queries = LedgerQueries(session, program_config, clock=clock)
        recent = await queries.recent_for_store(store_id)
        single = await queries.recent_for_store(store_id, limit=0)

    assert [item.kind for item in recent] == [LedgerEntryKind.EARN, LedgerEntryKind.SPEND, LedgerEntryKind.EARN]
    spend = recent[1]
    assert spend.customer_name == "Liga Member"
    assert spend.check_amount == Decimal("200.00")
    assert spend.points_redeemed == Decimal("40.00")
    assert spend.final_amount == Decimal("160.00")
    assert all(item.store_id == store_id for item in recent)
    assert len(single) == 1


@pytest.mark.asyncio
async def test_expiring_summary_buckets(session_factory, program_config, clock) -> None:
    customer_id = await seed_customer(session_factory, balance="1000")
    await seed_entry(session_factory, customer_id, amount="1", created_at=EXPIRATION_CUTOFF - timedelta(days=1))
    await seed_entry(session_factory, customer_id, amount="2", created_at=EXPIRATION_CUTOFF + timedelta(days=3))
    await seed_entry(session_factory, customer_id, amount="4", created_at=EXPIRATION_CUTOFF + timedelta(days=10))
    await seed_entry(session_factory, customer_id, amount="8", created_at=EXPIRATION_CUTOFF + timedelta(days=20))
    await seed_entry(session_factory, customer_id, amount="16", created_at=EXPIRATION_CUTOFF + timedelta(days=40))
    await seed_entry(
        session_factory,
        customer_id,
        amount="32",
        created_at=EXPIRATION_CUTOFF + timedelta(days=1),
        kind=LedgerEntryKind.SPEND,
    )

    async with session_factory() as session:
        summary = await LedgerQueries(session, program_config, clock=clock).expiring_summary(customer_id)

    assert summary.cutoff == EXPIRATION_CUTOFF
    assert summary.expired_now == Decimal("1.00")
    assert summary.expiring_in_7_days == Decimal("2.00")
    assert summary.expiring_in_14_days == Decimal("4.00")
    assert summary.expiring_in_30_days == Decimal("8.00")
