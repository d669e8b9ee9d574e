from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FrozenClock
from loyalty_ledger.core.errors import ConfigurationError
from loyalty_ledger.core.settings import Settings
from loyalty_ledger.models import LoyaltyProgramSettings
from loyalty_ledger.services.loyalty import ProgramConfig, ProgramConfigCache


def test_defaults_match_program_rules() -> None:
    config = ProgramConfig()
    assert config.retention_days == 45
    assert config.max_discount_percent == Decimal("20")
    assert config.earning_percent == Decimal("4")
    assert config.pending_discount_window == timedelta(seconds=90)


def test_from_settings_reads_environment_values() -> None:
    source = Settings(
        loyalty_retention_days=30,
        loyalty_max_discount_percent=15,
        loyalty_earning_percent=5,
        loyalty_pending_discount_expiry_seconds=120,
        loyalty_points_name="stars",
    )
    config = ProgramConfig.from_settings(source)
    assert config.retention_days == 30
    assert config.max_discount_percent == Decimal("15")
    assert config.earning_percent == Decimal("5")
    assert config.pending_discount_window == timedelta(seconds=120)
    assert config.points_name == "stars"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"retention_days": -1},
        {"cleanup_grace_days": -1},
        {"max_discount_percent": Decimal("101")},
        {"earning_percent": Decimal("-1")},
        {"pending_discount_window": timedelta(0)},
    ],
)
def test_invalid_values_raise_configuration_error(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        ProgramConfig(**kwargs)


def test_redemption_cap_floors_to_whole_points() -> None:
    config = ProgramConfig()
    assert config.redemption_cap(Decimal("1000")) == Decimal("200")
    assert config.redemption_cap(Decimal("999")) == Decimal("199")
    assert config.redemption_cap(Decimal("4.99")) == Decimal("0")


def test_cashback_is_earned_on_amount_paid() -> None:
    config = ProgramConfig()
    assert config.cashback_for(Decimal("1000")) == Decimal("40.00")
    assert config.cashback_for(Decimal("1000"), Decimal("200")) == Decimal("32.00")
    assert config.cashback_for(Decimal("12.99")) == Decimal("0.51")
    assert config.cashback_for(Decimal("10"), Decimal("50")) == Decimal("0.00")


def test_row_overrides_take_precedence() -> None:
    record = LoyaltyProgramSettings(
        program="default",
        earning_percent=Decimal("6"),
        max_discount_percent=None,
        retention_days=60,
        pending_discount_expiry_seconds=None,
        points_name="",
    )
    config = ProgramConfig().with_overrides(record)
    assert config.earning_percent == Decimal("6")
    assert config.retention_days == 60
    assert config.max_discount_percent == Decimal("20")
    assert config.points_name == "points"


@pytest.mark.asyncio
async def test_cache_loads_row_and_refreshes_after_ttl(session_factory) -> None:
    clock = FrozenClock()
    cache = ProgramConfigCache(session_factory, source=Settings(), ttl=timedelta(seconds=60), clock=clock)

    first = await cache.get()
    assert first.earning_percent == Decimal("4")

    async with session_factory() as session:
        session.add(LoyaltyProgramSettings(program="default", earning_percent=Decimal("7")))
        await session.commit()

    assert (await cache.get()) is first

    clock.advance(seconds=61)
    refreshed = await cache.get()
    assert refreshed.earning_percent == Decimal("7")

    cache.invalidate()
    assert (await cache.get()) == refreshed


@pytest.mark.asyncio
async def test_invalid_row_fails_loudly(session_factory) -> None:
    async with session_factory() as session:
        session.add(LoyaltyProgramSettings(program="default", retention_days=-5))
        await session.commit()

    cache = ProgramConfigCache(session_factory, source=Settings())
    with pytest.raises(ConfigurationError):
        await cache.get()
