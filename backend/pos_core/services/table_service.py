"""Table Service - floor tables with status derived from open orders.

A table is ``occupied`` exactly when a pending, non-deleted order points
at it. Otherwise it shows the administrative status an operator set
(available, reserved, maintenance). Occupancy is computed in the query and
never written anywhere.
"""

import logging
from typing import List, Optional

from sqlalchemy import and_, case, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pos_core.core.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from pos_core.db.session import SessionLocal, transaction
from pos_core.models.order import Order, OrderStatus
from pos_core.models.restaurant import ADMIN_TABLE_STATUSES, RestaurantTable, TableStatus
from pos_core.schemas.table import TableCreate, TableResponse, TableUpdate
from pos_core.services.websocket_service import EventBroadcaster
from pos_core.services.websocket_service import broadcaster as default_broadcaster

logger = logging.getLogger(__name__)


def _open_order_clause():
    return and_(
        Order.table_id == RestaurantTable.id,
        Order.status == OrderStatus.PENDING.value,
        Order.is_deleted.is_(False),
    )


def derived_status():
    """SQL expression for a table's visible status."""
    return case(
        (exists().where(_open_order_clause()), TableStatus.OCCUPIED.value),
        else_=RestaurantTable.admin_status,
    )


def _current_order(column):
    return (
        select(column)
        .where(_open_order_clause())
        .order_by(Order.id)
        .limit(1)
        .correlate(RestaurantTable)
        .scalar_subquery()
    )


def _table_query():
    status = derived_status().label("status")
    return select(
        RestaurantTable,
        status,
        _current_order(Order.id).label("current_order_id"),
        _current_order(Order.order_number).label("current_order_number"),
    ).where(RestaurantTable.not_deleted())


def _to_response(row) -> TableResponse:
    table, status, order_id, order_number = row
    return TableResponse(
        id=table.id,
        table_number=table.table_number,
        capacity=table.capacity,
        location=table.location,
        display_order=table.display_order,
        is_active=table.is_active,
        status=status,
        current_order_id=order_id,
        current_order_number=order_number,
        created_at=table.created_at,
    )


class TableService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        self.session_factory = session_factory
        self.broadcaster = broadcaster or default_broadcaster

    async def list_tables(
        self, status: Optional[str] = None, location: Optional[str] = None
    ) -> List[TableResponse]:
        query = _table_query()
        if status:
            query = query.where(derived_status() == status)
        if location:
            query = query.where(RestaurantTable.location == location)
        query = query.order_by(RestaurantTable.display_order, RestaurantTable.table_number)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_response(row) for row in result.all()]

    async def list_available(self) -> List[TableResponse]:
        query = (
            _table_query()
            .where(RestaurantTable.is_active.is_(True))
            .where(derived_status() == TableStatus.AVAILABLE.value)
            .order_by(RestaurantTable.display_order, RestaurantTable.table_number)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_response(row) for row in result.all()]

    async def get_table(self, table_id: int) -> TableResponse:
        async with self.session_factory() as session:
            return await self._fetch(session, table_id)

    async def create_table(self, data: TableCreate) -> TableResponse:
        async with transaction(self.session_factory, "Failed to create table") as session:
            table = RestaurantTable(**data.model_dump())
            session.add(table)
            await session.flush()
            response = await self._fetch(session, table.id)
        logger.info(f"Table {response.table_number} created")
        return response

    async def update_table(self, table_id: int, data: TableUpdate) -> TableResponse:
        async with transaction(self.session_factory, "Failed to update table") as session:
            table = await self._lock(session, table_id)
            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(table, key, value)
            await session.flush()
            response = await self._fetch(session, table_id)
        return response

    async def set_status(self, table_id: int, status: str) -> TableResponse:
        """Set the administrative status. Occupancy cannot be set by hand."""
        if status == TableStatus.OCCUPIED.value:
            raise ValidationFailedError("Table occupancy follows open orders and cannot be set directly")
        if status not in ADMIN_TABLE_STATUSES:
            raise ValidationFailedError(
                f"Invalid table status. Must be one of: {', '.join(ADMIN_TABLE_STATUSES)}"
            )

        async with transaction(self.session_factory, "Failed to update table status") as session:
            table = await self._lock(session, table_id)
            table.admin_status = status
            await session.flush()
            response = await self._fetch(session, table_id)

        logger.info(f"Table {response.table_number} status set to {status} (shown as {response.status})")
        try:
            self.broadcaster.broadcast_table_status_changed(table_id, response.status)
        except Exception as e:
            logger.warning(f"Broadcast after commit failed: {e}")
        return response

    async def delete_table(self, table_id: int) -> None:
        async with transaction(self.session_factory, "Failed to delete table") as session:
            table = await self._lock(session, table_id)
            has_open_order = await session.scalar(
                select(exists().where(
                    Order.table_id == table_id,
                    Order.status == OrderStatus.PENDING.value,
                    Order.is_deleted.is_(False),
                ))
            )
            if has_open_order:
                raise InvalidStateError(f"Table {table.table_number} has an open order")
            table.soft_delete()
        logger.info(f"Table {table_id} deleted")

    async def _lock(self, session: AsyncSession, table_id: int) -> RestaurantTable:
        result = await session.execute(
            select(RestaurantTable)
            .where(RestaurantTable.id == table_id, RestaurantTable.not_deleted())
            .with_for_update()
        )
        table = result.scalar_one_or_none()
        if table is None:
            raise NotFoundError(f"Table {table_id} not found")
        return table

    @staticmethod
    async def _fetch(session: AsyncSession, table_id: int) -> TableResponse:
        result = await session.execute(_table_query().where(RestaurantTable.id == table_id))
        row = result.first()
        if row is None:
            raise NotFoundError(f"Table {table_id} not found")
        return _to_response(row)
