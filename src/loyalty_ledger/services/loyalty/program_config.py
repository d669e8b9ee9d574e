"""Loyalty program rules resolved from settings and the operator-editable row."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Callable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.core.errors import ConfigurationError
from loyalty_ledger.core.settings import Settings, settings as default_settings
from loyalty_ledger.models.program import LoyaltyProgramSettings
from loyalty_ledger.services.retention import Clock, utcnow

SessionFactory = Callable[[], AsyncSession]

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class ProgramConfig:
    """Immutable snapshot of the rules every ledger operation runs against."""

    retention_days: int = 45
    cleanup_grace_days: int = 1
    max_discount_percent: Decimal = Decimal("20")
    earning_percent: Decimal = Decimal("4")
    pending_discount_window: timedelta = timedelta(seconds=90)
    points_name: str = "points"

    def __post_init__(self) -> None:
        if self.retention_days < 0:
            raise ConfigurationError(f"retention_days must be >= 0, got {self.retention_days}")
        if self.cleanup_grace_days < 0:
            raise ConfigurationError(f"cleanup_grace_days must be >= 0, got {self.cleanup_grace_days}")
        if not Decimal("0") <= Decimal(self.max_discount_percent) <= _HUNDRED:
            raise ConfigurationError(
                f"max_discount_percent must be within 0..100, got {self.max_discount_percent}"
            )
        if not Decimal("0") <= Decimal(self.earning_percent) <= _HUNDRED:
            raise ConfigurationError(f"earning_percent must be within 0..100, got {self.earning_percent}")
        if self.pending_discount_window <= timedelta(0):
            raise ConfigurationError("pending_discount_window must be positive")

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "ProgramConfig":
        cfg = source or default_settings
        return cls(
            retention_days=cfg.loyalty_retention_days,
            cleanup_grace_days=cfg.loyalty_cleanup_grace_days,
            max_discount_percent=Decimal(str(cfg.loyalty_max_discount_percent)),
            earning_percent=Decimal(str(cfg.loyalty_earning_percent)),
            pending_discount_window=timedelta(seconds=cfg.loyalty_pending_discount_expiry_seconds),
            points_name=cfg.loyalty_points_name,
        )

    def with_overrides(self, record: LoyaltyProgramSettings | None) -> "ProgramConfig":
        """Layer non-null columns from the program settings row over this config."""

        if record is None:
            return self
        changes: dict[str, object] = {}
        if record.earning_percent is not None:
            changes["earning_percent"] = Decimal(record.earning_percent)
        if record.max_discount_percent is not None:
            changes["max_discount_percent"] = Decimal(record.max_discount_percent)
        if record.retention_days is not None:
            changes["retention_days"] = int(record.retention_days)
        if record.pending_discount_expiry_seconds is not None:
            changes["pending_discount_window"] = timedelta(seconds=int(record.pending_discount_expiry_seconds))
        if record.points_name:
            changes["points_name"] = record.points_name
        return replace(self, **changes) if changes else self

    def redemption_cap(self, check_amount: Decimal) -> Decimal:
        """Whole points redeemable against ``check_amount``."""

        raw = Decimal(check_amount) * Decimal(self.max_discount_percent) / _HUNDRED
        return raw.to_integral_value(rounding=ROUND_DOWN)

    def cashback_for(self, check_amount: Decimal, points_to_redeem: Decimal = Decimal("0")) -> Decimal:
        """Points earned on the amount actually paid after redemption."""

        paid = max(Decimal(check_amount) - Decimal(points_to_redeem), Decimal("0"))
        earned = paid * Decimal(self.earning_percent) / _HUNDRED
        return earned.quantize(_CENT, rounding=ROUND_DOWN)


@dataclass(slots=True)
class _CacheEntry:
    config: ProgramConfig
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class ProgramConfigCache:
    """Caches the resolved :class:`ProgramConfig` for a bounded time."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        source: Settings | None = None,
        ttl: timedelta | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = source or default_settings
        self._ttl = ttl if ttl is not None else timedelta(seconds=self._settings.loyalty_program_config_ttl_seconds)
        self._clock = clock
        self._entry: _CacheEntry | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> ProgramConfig:
        cached = self._entry
        if cached and cached.is_valid(self._clock()):
            return cached.config

        async with self._lock:
            cached = self._entry
            if cached and cached.is_valid(self._clock()):
                return cached.config
            config = await self._load()
            self._entry = _CacheEntry(config=config, expires_at=self._clock() + self._ttl)
            return config

    def invalidate(self) -> None:
        self._entry = None

    async def _load(self) -> ProgramConfig:
        base = ProgramConfig.from_settings(self._settings)
        slug = self._settings.loyalty_program_slug
        async with self._session_factory() as session:
            result = await session.execute(
                select(LoyaltyProgramSettings).where(LoyaltyProgramSettings.program == slug)
            )
            record = result.scalar_one_or_none()
        config = base.with_overrides(record)
        logger.debug(
            "Resolved loyalty program config",
            program=slug,
            overridden=record is not None,
            retention_days=config.retention_days,
            max_discount_percent=str(config.max_discount_percent),
        )
        return config


__all__ = ["ProgramConfig", "ProgramConfigCache", "SessionFactory"]
