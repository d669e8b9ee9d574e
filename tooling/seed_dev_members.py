"""Seed a development store and members into the ledger database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.base import Base
from loyalty_ledger.db.session import build_engine
from loyalty_ledger.models import LoyaltyCustomer, Store


class SeedMember(TypedDict):
    telegram_user_id: int
    card_number: str
    first_name: str
    last_name: str


DEV_STORE_NAME = os.getenv("DEV_STORE_NAME", "Central Coffee")

DEV_MEMBERS: list[SeedMember] = [
    {
        "telegram_user_id": int(os.getenv("DEV_MEMBER_TELEGRAM_ID", "100001")),
        "card_number": "1000000000000001",
        "first_name": "Customer",
        "last_name": "QA",
    },
    {
        "telegram_user_id": 100002,
        "card_number": "1000000000000002",
        "first_name": "Testing",
        "last_name": "QA",
    },
]


async def seed_members(session: AsyncSession) -> None:
    with session.no_autoflush:
        existing_store = await session.execute(select(Store).where(Store.name == DEV_STORE_NAME))
    if existing_store.scalar_one_or_none() is None:
        session.add(Store(name=DEV_STORE_NAME, city="Dev"))

    for member in DEV_MEMBERS:
        with session.no_autoflush:
            existing = await session.execute(
                select(LoyaltyCustomer).where(LoyaltyCustomer.telegram_user_id == member["telegram_user_id"])
            )
        record = existing.scalar_one_or_none()

        if record:
            record.card_number = member["card_number"]
            record.first_name = member["first_name"]
            record.last_name = member["last_name"]
        else:
            session.add(LoyaltyCustomer(**member))
    await session.commit()


async def main() -> None:
    engine = build_engine(settings.database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            await seed_members(session)
        print("Development store and members ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
