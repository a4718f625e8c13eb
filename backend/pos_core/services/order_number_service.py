"""Order number generation: ``ORD-YYYYMMDD-NNNN`` (UTC day)."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from pos_core.core.config import settings
from pos_core.models.order import Order, OrderNumberSequence

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderNumberGenerator:
    """Hands out the next order number inside the caller's transaction.

    ``count`` numbers orders by counting today's existing numbers. Two
    transactions that count before either commits get the same number; the
    unique index on ``orders.order_number`` then rejects the second insert.

    ``counter`` keeps a per-day row in ``order_number_sequences`` and
    increments it under a row lock, so numbers are unique without relying
    on the index. The first use of a day seeds the row from the count with
    an ``ON CONFLICT DO NOTHING`` insert, so two first-of-the-day creators
    both end up incrementing the same row.
    """

    def __init__(
        self,
        prefix: str = settings.order_number_prefix,
        strategy: str = settings.order_number_strategy,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if strategy not in ("count", "counter"):
            raise ValueError(f"Unknown order number strategy: {strategy}")
        self.prefix = prefix
        self.strategy = strategy
        self.clock = clock or _utcnow

    def day_key(self) -> str:
        return self.clock().astimezone(timezone.utc).strftime("%Y%m%d")

    def format(self, day: str, sequence: int) -> str:
        return f"{self.prefix}-{day}-{sequence:04d}"

    async def next_number(self, session: AsyncSession) -> str:
        day = self.day_key()
        if self.strategy == "count":
            sequence = await self._count_for_day(session, day) + 1
        else:
            sequence = await self._reserve(session, day)
        number = self.format(day, sequence)
        logger.debug(f"Allocated order number {number} ({self.strategy})")
        return number

    async def _count_for_day(self, session: AsyncSession, day: str) -> int:
        result = await session.execute(
            select(func.count(Order.id)).where(Order.order_number.like(f"{self.prefix}-{day}-%"))
        )
        return result.scalar_one()

    async def _seed_day(self, session: AsyncSession, day: str) -> None:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql_insert
        elif dialect == "sqlite":
            insert = sqlite_insert
        else:
            raise RuntimeError(f"Order number counter is not supported on {dialect}")

        seed = await self._count_for_day(session, day)
        await session.execute(
            insert(OrderNumberSequence)
            .values(day=day, last_value=seed)
            .on_conflict_do_nothing(index_elements=["day"])
        )

    async def _reserve(self, session: AsyncSession, day: str) -> int:
        await self._seed_day(session, day)
        result = await session.execute(
            select(OrderNumberSequence)
            .where(OrderNumberSequence.day == day)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one()
        row.last_value += 1
        await session.flush()
        return row.last_value
