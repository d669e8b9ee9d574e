from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty_ledger.api.dependencies.loyalty import get_clock, get_session_factory
from loyalty_ledger.app import create_app
from loyalty_ledger.db.base import Base
from loyalty_ledger.db.session import build_engine, get_session
from loyalty_ledger.models import LedgerEntry, LedgerEntryKind, LoyaltyCustomer, Store
from loyalty_ledger.observability.loyalty import get_loyalty_store
from loyalty_ledger.observability.scheduler import get_scheduler_store
from loyalty_ledger.services.loyalty import ProgramConfig
from loyalty_ledger.services.notifications import InMemoryTransactionNotifier, NotificationService


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
# Start of NOW's UTC day minus the default 45 retention days.
EXPIRATION_CUTOFF = datetime(2026, 1, 29, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock pinned to ``now`` until advanced."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def program_config() -> ProgramConfig:
    return ProgramConfig()


@pytest.fixture(autouse=True)
def reset_observability() -> None:
    get_loyalty_store().reset()
    get_scheduler_store().reset()


async def _create_factory(database_url: str):
    engine = build_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _create_factory("sqlite+aiosqlite:///:memory:")

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """File-backed database so concurrent sessions get their own connections."""

    engine, factory = await _create_factory(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory, clock):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.notification_service = NotificationService(InMemoryTransactionNotifier())

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


async def seed_store(session_factory, name: str = "Central Coffee") -> int:
    async with session_factory() as session:
        store = Store(name=name, city="Riga")
        session.add(store)
        await session.commit()
        return store.id


async def seed_customer(
    session_factory,
    *,
    balance: Decimal | str = "0",
    telegram_user_id: int = 1001,
    card_number: str | None = "1000000000000001",
    first_name: str = "Anna",
) -> int:
    async with session_factory() as session:
        customer = LoyaltyCustomer(
            telegram_user_id=telegram_user_id,
            card_number=card_number,
            first_name=first_name,
            last_name="Member",
            points_balance=Decimal(str(balance)),
        )
        session.add(customer)
        await session.commit()
        return customer.id


async def seed_entry(
    session_factory,
    customer_id: int,
    *,
    amount: Decimal | str,
    created_at: datetime,
    kind: LedgerEntryKind = LedgerEntryKind.EARN,
    store_id: int | None = None,
    expiry_marker: str | None = None,
) -> int:
    async with session_factory() as session:
        entry = LedgerEntry(
            customer_id=customer_id,
            store_id=store_id,
            kind=kind,
            amount=Decimal(str(amount)),
            title="Seeded entry",
            check_amount=None,
            points_redeemed=Decimal(str(amount)) if kind == LedgerEntryKind.SPEND else Decimal("0"),
            points_earned=Decimal(str(amount)) if kind == LedgerEntryKind.EARN else Decimal("0"),
            expiry_marker=expiry_marker,
            created_at=created_at,
        )
        session.add(entry)
        await session.commit()
        return entry.id
