"""Order Service - order lifecycle as atomic units of work.

Each mutating operation runs in one transaction (see db.session.transaction):

1. Lock-read the rows it depends on (order, table, products)
2. Check preconditions, raising NotFound/InvalidState/Conflict before writing
3. Write order, items, payment and stock ledger rows
4. Commit

Only after the commit succeeds does the service count pending orders and
hand a single event to the broadcaster. Broadcast problems are logged and
never change the result returned to the caller.

State machine: pending -> completed, pending -> cancelled. Terminal orders
only accept a soft delete (and a refund, via PaymentService).
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pos_core.core.config import settings
from pos_core.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationFailedError
from pos_core.db.base import utcnow
from pos_core.db.session import SessionLocal, transaction
from pos_core.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from pos_core.models.payment import Payment, PaymentRecordStatus
from pos_core.models.product import Product
from pos_core.models.restaurant import RestaurantTable, TableStatus
from pos_core.models.stock import MovementType
from pos_core.schemas.order import (
    CancelOrderResult,
    CompleteOrderRequest,
    CompleteOrderResult,
    OrderCreate,
    OrderDetail,
    OrderItemInput,
    OrderSummary,
    OrderUpdate,
)
from pos_core.services.order_number_service import OrderNumberGenerator
from pos_core.services.stock_service import StockLedger
from pos_core.services.websocket_service import EventBroadcaster
from pos_core.services.websocket_service import broadcaster as default_broadcaster

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Round to cents, half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        broadcaster: Optional[EventBroadcaster] = None,
        ledger: Optional[StockLedger] = None,
        numbers: Optional[OrderNumberGenerator] = None,
        tax_rate_percent: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.broadcaster = broadcaster or default_broadcaster
        self.ledger = ledger or StockLedger()
        self.numbers = numbers or OrderNumberGenerator()
        if tax_rate_percent is None:
            tax_rate_percent = settings.tax_rate_percent
        self.tax_rate = money(tax_rate_percent)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_order(self, data: OrderCreate, user_id: Optional[int] = None) -> OrderDetail:
        async with transaction(self.session_factory, "Failed to create order") as session:
            if data.table_id is not None:
                await self._lock_table(session, data.table_id)

            order = Order(
                order_number=await self.numbers.next_number(session),
                table_id=data.table_id,
                user_id=user_id,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.UNPAID.value,
                tax_rate=self.tax_rate,
                notes=data.notes,
                items=[],
            )
            session.add(order)
            await session.flush()

            await self._write_items(session, order, data.items)
            self._apply_totals(order, data.discount_amount)
            await session.flush()
            detail = await self._to_detail(session, order)

        logger.info(
            f"Order {detail.order_number} created: {detail.item_count} item(s), "
            f"total={detail.total}, table={detail.table_number}, user={user_id}"
        )
        pending = await self.get_pending_count()
        self._notify(self.broadcaster.broadcast_order_created, detail, pending)
        return detail

    async def update_order(self, order_id: int, data: OrderUpdate) -> OrderDetail:
        """Replace an order's table, notes and full item list."""
        async with transaction(self.session_factory, "Failed to update order") as session:
            order = await self._lock_order(session, order_id)
            self._require_pending(order, "update")

            if data.table_id is not None:
                await self._lock_table(session, data.table_id, exclude_order_id=order.id)

            order.items.clear()
            await session.flush()
            await self._write_items(session, order, data.items)

            order.table_id = data.table_id
            order.notes = data.notes
            self._apply_totals(order, data.discount_amount)
            await session.flush()
            detail = await self._to_detail(session, order)

        logger.info(f"Order {detail.order_number} updated: total={detail.total}")
        pending = await self.get_pending_count()
        self._notify(self.broadcaster.broadcast_order_updated, detail, pending)
        return detail

    async def complete_order(
        self, order_id: int, data: CompleteOrderRequest, user_id: Optional[int] = None
    ) -> CompleteOrderResult:
        """Take payment, close the order and decrement stock for every line."""
        async with transaction(self.session_factory, "Failed to process payment") as session:
            order = await self._lock_order(session, order_id)
            self._require_pending(order, "complete")

            amount_received = money(data.amount_received)
            change = amount_received - order.total
            if change < 0:
                logger.warning(
                    f"Order {order.order_number} completed short: "
                    f"received {amount_received}, total {order.total}"
                )

            order.status = OrderStatus.COMPLETED.value
            order.payment_status = PaymentStatus.PAID.value
            order.payment_method = data.payment_method.value
            order.completed_at = utcnow()
            await self._release_table(session, order)

            session.add(Payment(
                order_id=order.id,
                payment_method=data.payment_method.value,
                amount=order.total,
                amount_received=amount_received,
                change_amount=change,
                status=PaymentRecordStatus.COMPLETED.value,
                processed_by=user_id,
            ))

            for item in order.items:
                await self.ledger.apply_movement(
                    session,
                    product_id=item.product_id,
                    quantity=-item.quantity,
                    movement_type=MovementType.OUT.value,
                    reference_type="order",
                    reference_id=order.id,
                    user_id=user_id,
                    notes=f"Sale: {item.product_name} x{item.quantity}",
                )

            await session.flush()
            detail = await self._to_detail(session, order)

        logger.info(
            f"Order {detail.order_number} completed: paid {amount_received} "
            f"by {data.payment_method.value}, change {change}"
        )
        pending = await self.get_pending_count()
        self._notify(
            self.broadcaster.broadcast_order_status_updated,
            order_id, OrderStatus.COMPLETED.value, detail, pending,
        )
        return CompleteOrderResult(order_id=order_id, change=change, pending_order_count=pending)

    async def cancel_order(
        self, order_id: int, reason: Optional[str] = None, user_id: Optional[int] = None
    ) -> CancelOrderResult:
        """Cancel a pending order. Stock is never touched.

        Cancelling an order that is already cancelled succeeds without
        writing anything or broadcasting.
        """
        async with transaction(self.session_factory, "Failed to cancel order") as session:
            order = await self._lock_order(session, order_id)
            if order.status == OrderStatus.COMPLETED.value:
                raise InvalidStateError("Cannot cancel completed order")

            already_cancelled = order.status == OrderStatus.CANCELLED.value
            if not already_cancelled:
                note = f"[CANCELLED by user_id:{user_id}] {reason or 'No reason provided'}"
                order.status = OrderStatus.CANCELLED.value
                order.cancelled_at = utcnow()
                order.notes = f"{order.notes}\n{note}" if order.notes else note
                await self._release_table(session, order)
                await session.flush()
            detail = await self._to_detail(session, order)

        pending = await self.get_pending_count()
        if already_cancelled:
            logger.info(f"Order {detail.order_number} already cancelled, nothing to do")
        else:
            logger.info(f"Order {detail.order_number} cancelled by user {user_id}")
            self._notify(
                self.broadcaster.broadcast_order_status_updated,
                order_id, OrderStatus.CANCELLED.value, detail, pending,
            )
        return CancelOrderResult(
            order_id=order_id,
            status=OrderStatus.CANCELLED.value,
            pending_order_count=pending,
        )

    async def delete_order(self, order_id: int, user_id: Optional[int] = None) -> int:
        """Soft-delete a completed or cancelled order. Returns the pending count."""
        async with transaction(self.session_factory, "Failed to delete order") as session:
            order = await self._lock_order(session, order_id)
            if not order.is_terminal:
                raise InvalidStateError("Only completed or cancelled orders can be deleted")
            order.soft_delete()
            order_number = order.order_number

        logger.info(f"Order {order_number} deleted by user {user_id}")
        pending = await self.get_pending_count()
        self._notify(self.broadcaster.broadcast_order_deleted, order_id, pending)
        return pending

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int) -> OrderDetail:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Order).where(Order.id == order_id, Order.not_deleted())
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            return await self._to_detail(session, order)

    async def list_orders(
        self,
        status: Optional[str] = None,
        day: Optional[date] = None,
        table_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[OrderSummary]:
        query = (
            select(Order, RestaurantTable.table_number)
            .outerjoin(RestaurantTable, Order.table_id == RestaurantTable.id)
            .where(Order.not_deleted())
        )
        if status:
            query = query.where(Order.status == status)
        if table_id is not None:
            query = query.where(Order.table_id == table_id)
        if day is not None:
            start = datetime.combine(day, time.min, tzinfo=timezone.utc)
            query = query.where(Order.created_at >= start, Order.created_at < start + timedelta(days=1))
        query = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [
                OrderSummary(
                    id=order.id,
                    order_number=order.order_number,
                    table_id=order.table_id,
                    table_number=table_number,
                    status=order.status,
                    payment_status=order.payment_status,
                    payment_method=order.payment_method,
                    total=order.total,
                    item_count=len(order.items),
                    created_at=order.created_at,
                    completed_at=order.completed_at,
                )
                for order, table_number in result.all()
            ]

    async def get_pending_count(self) -> int:
        """Number of pending orders. Errors are logged and reported as 0."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count(Order.id)).where(
                        Order.status == OrderStatus.PENDING.value,
                        Order.not_deleted(),
                    )
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count pending orders: {e}")
            return 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lock_order(self, session: AsyncSession, order_id: int) -> Order:
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id, Order.not_deleted())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def _lock_table(
        self, session: AsyncSession, table_id: int, exclude_order_id: Optional[int] = None
    ) -> RestaurantTable:
        """Lock a table and make sure no other pending order holds it."""
        result = await session.execute(
            select(RestaurantTable)
            .where(RestaurantTable.id == table_id, RestaurantTable.not_deleted())
            .with_for_update()
        )
        table = result.scalar_one_or_none()
        if table is None:
            raise NotFoundError(f"Table {table_id} not found")

        query = select(Order.id).where(
            Order.table_id == table_id,
            Order.status == OrderStatus.PENDING.value,
            Order.not_deleted(),
        )
        if exclude_order_id is not None:
            query = query.where(Order.id != exclude_order_id)
        if (await session.execute(query.limit(1))).first() is not None:
            raise ConflictError(f"Table {table.table_number} already has an open order")
        return table

    @staticmethod
    async def _release_table(session: AsyncSession, order: Order) -> None:
        """Mark the order's table available once the order is closed.

        Occupancy stays derived; this clears an administrative status such
        as a reservation that the seated party has now used.
        """
        if order.table_id is None:
            return
        result = await session.execute(
            select(RestaurantTable).where(RestaurantTable.id == order.table_id).with_for_update()
        )
        table = result.scalar_one_or_none()
        if table is not None and table.admin_status != TableStatus.AVAILABLE.value:
            logger.info(f"Table {table.table_number} released from {table.admin_status}")
            table.admin_status = TableStatus.AVAILABLE.value

    @staticmethod
    def _require_pending(order: Order, action: str) -> None:
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStateError(
                f"Cannot {action} order {order.order_number}: status is {order.status}"
            )

    async def _write_items(
        self, session: AsyncSession, order: Order, items: List[OrderItemInput]
    ) -> None:
        for item in items:
            product = await session.get(Product, item.product_id)
            if product is None or product.is_deleted:
                raise NotFoundError(f"Product {item.product_id} not found")

            unit_price = money(item.unit_price)
            subtotal = money(unit_price * item.quantity)
            discount = money(item.discount_amount)
            order.items.append(OrderItem(
                product_id=product.id,
                product_name=item.product_name or product.name,
                product_image=item.product_image or product.image_url,
                quantity=item.quantity,
                unit_price=unit_price,
                subtotal=subtotal,
                discount_amount=discount,
                total=subtotal - discount,
                notes=item.notes,
            ))
            await session.flush()

    def _apply_totals(self, order: Order, discount_amount: Decimal) -> None:
        """total = subtotal - discount + tax, with tax charged on the subtotal."""
        subtotal = money(sum((item.total for item in order.items), Decimal("0")))
        discount = money(discount_amount)
        if discount > subtotal:
            raise ValidationFailedError("Order discount cannot exceed the subtotal")
        tax_amount = money(subtotal * self.tax_rate / 100)

        order.subtotal = subtotal
        order.tax_rate = self.tax_rate
        order.tax_amount = tax_amount
        order.discount_amount = discount
        order.total = subtotal - discount + tax_amount

    @staticmethod
    async def _to_detail(session: AsyncSession, order: Order) -> OrderDetail:
        table_number = None
        if order.table_id is not None:
            table_number = await session.scalar(
                select(RestaurantTable.table_number).where(RestaurantTable.id == order.table_id)
            )
        detail = OrderDetail.model_validate(order)
        return detail.model_copy(update={"table_number": table_number, "item_count": len(order.items)})

    @staticmethod
    def _notify(send: Callable, *args) -> None:
        try:
            send(*args)
        except Exception as e:
            logger.warning(f"Broadcast after commit failed: {e}")
