"""Lookups over loyalty members and stores."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.customer import LoyaltyCustomer, Store


class CustomerDirectory:
    """Read access to customers and the stores they buy from."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get(self, customer_id: int) -> LoyaltyCustomer | None:
        """Fresh read of the member row; balances change outside this session."""

        return await self._db.get(LoyaltyCustomer, customer_id, populate_existing=True)

    async def find_by_card(self, card_number: str) -> LoyaltyCustomer | None:
        """Resolve the member a cashier scanned; surrounding whitespace is ignored."""

        cleaned = (card_number or "").strip()
        if not cleaned:
            return None
        result = await self._db.execute(
            select(LoyaltyCustomer)
            .where(LoyaltyCustomer.card_number == cleaned)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_telegram_id(self, telegram_user_id: int) -> LoyaltyCustomer | None:
        result = await self._db.execute(
            select(LoyaltyCustomer)
            .where(LoyaltyCustomer.telegram_user_id == telegram_user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_store(self, store_id: int) -> Store | None:
        return await self._db.get(Store, store_id)


__all__ = ["CustomerDirectory"]
