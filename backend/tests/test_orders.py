"""Tests for the order lifecycle: create, update, complete, cancel, delete."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from pos_core.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from pos_core.models import (
    Order,
    OrderItem,
    Payment,
    PaymentMethod,
    Product,
    StockMovement,
)
from pos_core.schemas.order import CompleteOrderRequest, OrderCreate, OrderUpdate
from pos_core.services.order_number_service import OrderNumberGenerator
from pos_core.services.order_service import OrderService
from pos_core.services.table_service import TableService


def _assert_totals(order):
    for item in order.items:
        assert item.subtotal == item.unit_price * item.quantity
        assert item.total == item.subtotal - item.discount_amount
    assert order.subtotal == sum(item.total for item in order.items)
    assert order.total == order.subtotal - order.discount_amount + order.tax_amount


async def _table_status(session_factory, table_id):
    table = await TableService(session_factory).get_table(table_id)
    return table.status


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_scenario_totals_and_table_occupied(self, order_service, sample_order, seed, session_factory):
        order = await order_service.create_order(sample_order, user_id=7)

        assert order.status == "pending"
        assert order.payment_status == "unpaid"
        assert order.subtotal == Decimal("13.00")
        assert order.tax_rate == Decimal("10.00")
        assert order.tax_amount == Decimal("1.30")
        assert order.total == Decimal("14.30")
        assert order.table_number == "T1"
        assert order.item_count == 2
        assert order.user_id == 7
        _assert_totals(order)
        assert await _table_status(session_factory, seed["t1"]) == "occupied"

    @pytest.mark.asyncio
    async def test_order_number_format(self, order_service, sample_order):
        order = await order_service.create_order(sample_order)
        prefix, day, seq = order.order_number.split("-")
        assert prefix == "ORD"
        assert len(day) == 8 and day.isdigit()
        assert seq == "0001"

    @pytest.mark.asyncio
    async def test_item_denormalizes_product_fields(self, order_service, seed):
        order = await order_service.create_order(OrderCreate(
            items=[{"product_id": seed["cola"], "quantity": 3, "unit_price": "2.50"}],
        ))
        item = order.items[0]
        assert item.product_name == "Cola"
        assert item.product_image == "/uploads/cola.png"
        assert item.unit_price == Decimal("2.50")
        assert item.subtotal == Decimal("7.50")
        assert order.table_id is None

    @pytest.mark.asyncio
    async def test_discounts_respect_total_invariant(self, order_service, seed):
        order = await order_service.create_order(OrderCreate(
            items=[
                {"product_id": seed["burger"], "quantity": 3, "unit_price": "4.99", "discount_amount": "1.00"},
                {"product_id": seed["cola"], "quantity": 1, "unit_price": "0.33"},
            ],
            discount_amount="2.00",
        ))
        assert order.subtotal == Decimal("14.30")
        assert order.tax_amount == Decimal("1.43")
        assert order.total == Decimal("13.73")
        _assert_totals(order)

    @pytest.mark.asyncio
    async def test_order_discount_above_subtotal_rejected(self, order_service, seed, count_rows):
        with pytest.raises(ValidationFailedError):
            await order_service.create_order(OrderCreate(
                items=[{"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"}],
                discount_amount="5.00",
            ))
        assert await count_rows(Order) == 0

    @pytest.mark.asyncio
    async def test_missing_third_item_leaves_nothing_behind(self, order_service, seed, count_rows, broadcaster):
        items = [
            {"product_id": seed["burger"], "quantity": 1, "unit_price": "5.00"},
            {"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"},
            {"product_id": 9999, "quantity": 1, "unit_price": "1.00"},
            {"product_id": seed["burger"], "quantity": 2, "unit_price": "5.00"},
            {"product_id": seed["cola"], "quantity": 2, "unit_price": "3.00"},
        ]
        with pytest.raises(NotFoundError):
            await order_service.create_order(OrderCreate(table_id=seed["t1"], items=items))

        assert await count_rows(Order) == 0
        assert await count_rows(OrderItem) == 0
        assert broadcaster.calls == []

    @pytest.mark.asyncio
    async def test_unknown_table(self, order_service, seed):
        with pytest.raises(NotFoundError):
            await order_service.create_order(OrderCreate(
                table_id=4242,
                items=[{"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"}],
            ))

    @pytest.mark.asyncio
    async def test_table_with_open_order_conflicts(self, order_service, sample_order, count_rows):
        await order_service.create_order(sample_order)
        with pytest.raises(ConflictError):
            await order_service.create_order(sample_order)
        assert await count_rows(Order) == 1

    @pytest.mark.asyncio
    async def test_broadcasts_after_commit_with_pending_count(self, order_service, sample_order, broadcaster):
        order = await order_service.create_order(sample_order)
        assert broadcaster.names() == ["order-created"]
        _, (sent_order, pending) = broadcaster.calls[0]
        assert sent_order.id == order.id
        assert pending == 1


class TestUpdateOrder:
    @pytest.mark.asyncio
    async def test_replaces_items_and_recomputes(self, order_service, sample_order, seed, count_rows):
        order = await order_service.create_order(sample_order)

        updated = await order_service.update_order(order.id, OrderUpdate(
            table_id=seed["t2"],
            items=[{"product_id": seed["cola"], "quantity": 4, "unit_price": "3.00"}],
            notes="moved to patio",
        ))

        assert [i.product_id for i in updated.items] == [seed["cola"]]
        assert updated.subtotal == Decimal("12.00")
        assert updated.tax_amount == Decimal("1.20")
        assert updated.total == Decimal("13.20")
        assert updated.table_number == "T2"
        assert updated.notes == "moved to patio"
        assert updated.order_number == order.order_number
        assert await count_rows(OrderItem, OrderItem.order_id == order.id) == 1
        _assert_totals(updated)

    @pytest.mark.asyncio
    async def test_moving_order_frees_old_table(self, order_service, sample_order, seed, session_factory):
        order = await order_service.create_order(sample_order)
        await order_service.update_order(order.id, OrderUpdate(
            table_id=seed["t2"],
            items=[{"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"}],
        ))
        assert await _table_status(session_factory, seed["t1"]) == "available"
        assert await _table_status(session_factory, seed["t2"]) == "occupied"

    @pytest.mark.asyncio
    async def test_keeping_same_table_is_not_a_conflict(self, order_service, sample_order, seed):
        order = await order_service.create_order(sample_order)
        updated = await order_service.update_order(order.id, OrderUpdate(
            table_id=seed["t1"],
            items=[{"product_id": seed["burger"], "quantity": 1, "unit_price": "5.00"}],
        ))
        assert updated.table_id == seed["t1"]

    @pytest.mark.asyncio
    async def test_update_completed_order_rejected_and_unchanged(
        self, order_service, sample_order, seed, fetch, count_rows
    ):
        order = await order_service.create_order(sample_order)
        await order_service.complete_order(
            order.id, CompleteOrderRequest(payment_method="cash", amount_received="20.00")
        )
        before = await fetch(Order, order.id)

        with pytest.raises(InvalidStateError):
            await order_service.update_order(order.id, OrderUpdate(
                items=[{"product_id": seed["cola"], "quantity": 9, "unit_price": "1.00"}],
            ))

        after = await fetch(Order, order.id)
        assert after.status == "completed"
        assert after.total == before.total == Decimal("14.30")
        assert after.table_id == seed["t1"]
        assert await count_rows(OrderItem, OrderItem.order_id == order.id) == 2

    @pytest.mark.asyncio
    async def test_update_cancelled_order_rejected(self, order_service, sample_order, seed):
        order = await order_service.create_order(sample_order)
        await order_service.cancel_order(order.id)
        with pytest.raises(InvalidStateError):
            await order_service.update_order(order.id, OrderUpdate(
                items=[{"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"}],
            ))

    @pytest.mark.asyncio
    async def test_update_missing_order(self, order_service, seed):
        with pytest.raises(NotFoundError):
            await order_service.update_order(123, OrderUpdate(
                items=[{"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"}],
            ))

    @pytest.mark.asyncio
    async def test_failed_update_keeps_old_items(self, order_service, sample_order, seed, fetch, count_rows):
        order = await order_service.create_order(sample_order)
        with pytest.raises(NotFoundError):
            await order_service.update_order(order.id, OrderUpdate(
                items=[
                    {"product_id": seed["cola"], "quantity": 1, "unit_price": "3.00"},
                    {"product_id": 9999, "quantity": 1, "unit_price": "3.00"},
                ],
            ))
        assert await count_rows(OrderItem, OrderItem.order_id == order.id) == 2
        assert (await fetch(Order, order.id)).total == Decimal("14.30")


class TestCompleteOrder:
    @pytest.mark.asyncio
    async def test_scenario_payment_stock_and_table(
        self, order_service, sample_order, seed, session_factory, fetch, broadcaster
    ):
        order = await order_service.create_order(sample_order)

        result = await order_service.complete_order(
            order.id,
            CompleteOrderRequest(payment_method=PaymentMethod.CASH, amount_received="20.00"),
            user_id=7,
        )

        assert result.order_id == order.id
        assert result.change == Decimal("5.70")
        assert result.pending_order_count == 0

        stored = await fetch(Order, order.id)
        assert stored.status == "completed"
        assert stored.payment_status == "paid"
        assert stored.payment_method == "cash"
        assert stored.completed_at is not None
        assert await _table_status(session_factory, seed["t1"]) == "available"

        assert (await fetch(Product, seed["burger"])).stock_quantity == 48
        assert (await fetch(Product, seed["cola"])).stock_quantity == 99

        async with session_factory() as session:
            movements = (await session.execute(
                select(StockMovement).order_by(StockMovement.id)
            )).scalars().all()
            payment = (await session.execute(select(Payment))).scalar_one()

        assert [(m.product_id, m.quantity) for m in movements] == [(seed["burger"], -2), (seed["cola"], -1)]
        assert all(m.movement_type == "out" for m in movements)
        assert all(m.reference_type == "order" and m.reference_id == order.id for m in movements)
        assert movements[0].notes == "Sale: Burger x2"
        assert movements[0].created_by == 7

        assert payment.amount == Decimal("14.30")
        assert payment.amount_received == Decimal("20.00")
        assert payment.change_amount == Decimal("5.70")
        assert payment.status == "completed"
        assert payment.processed_by == 7

        assert broadcaster.names() == ["order-created", "order-status-updated"]
        _, (order_id, status, _, pending) = broadcaster.calls[1]
        assert (order_id, status, pending) == (order.id, "completed", 0)

    @pytest.mark.asyncio
    async def test_short_payment_is_recorded(self, order_service, sample_order, session_factory):
        order = await order_service.create_order(sample_order)
        result = await order_service.complete_order(
            order.id, CompleteOrderRequest(payment_method="card", amount_received="10.00")
        )
        assert result.change == Decimal("-4.30")
        async with session_factory() as session:
            payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.change_amount == Decimal("-4.30")

    @pytest.mark.asyncio
    async def test_complete_twice_rejected_without_second_payment(
        self, order_service, sample_order, seed, count_rows, fetch
    ):
        order = await order_service.create_order(sample_order)
        request = CompleteOrderRequest(payment_method="cash", amount_received="20.00")
        await order_service.complete_order(order.id, request)

        with pytest.raises(InvalidStateError):
            await order_service.complete_order(order.id, request)

        assert await count_rows(Payment) == 1
        assert await count_rows(StockMovement) == 2
        assert (await fetch(Product, seed["burger"])).stock_quantity == 48

    @pytest.mark.asyncio
    async def test_complete_cancelled_order_rejected(self, order_service, sample_order, count_rows):
        order = await order_service.create_order(sample_order)
        await order_service.cancel_order(order.id)
        with pytest.raises(InvalidStateError):
            await order_service.complete_order(
                order.id, CompleteOrderRequest(payment_method="cash", amount_received="20.00")
            )
        assert await count_rows(Payment) == 0

    @pytest.mark.asyncio
    async def test_complete_missing_order(self, order_service):
        with pytest.raises(NotFoundError):
            await order_service.complete_order(
                77, CompleteOrderRequest(payment_method="cash", amount_received="1.00")
            )

    @pytest.mark.asyncio
    async def test_stock_may_go_negative(self, order_service, seed, fetch):
        order = await order_service.create_order(OrderCreate(
            items=[{"product_id": seed["burger"], "quantity": 60, "unit_price": "5.00"}],
        ))
        await order_service.complete_order(
            order.id, CompleteOrderRequest(payment_method="card", amount_received="330.00")
        )
        assert (await fetch(Product, seed["burger"])).stock_quantity == -10


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_scenario_cancel_frees_table_without_stock_movements(
        self, order_service, seed, session_factory, fetch, count_rows, broadcaster
    ):
        order = await order_service.create_order(OrderCreate(
            table_id=seed["t2"],
            items=[{"product_id": seed["burger"], "quantity": 1, "unit_price": "5.00"}],
        ))
        assert await _table_status(session_factory, seed["t2"]) == "occupied"

        result = await order_service.cancel_order(order.id, reason="customer left", user_id=7)

        assert result.status == "cancelled"
        assert result.pending_order_count == 0
        stored = await fetch(Order, order.id)
        assert stored.status == "cancelled"
        assert stored.cancelled_at is not None
        assert stored.notes == "[CANCELLED by user_id:7] customer left"
        assert await _table_status(session_factory, seed["t2"]) == "available"
        assert await count_rows(StockMovement) == 0
        assert (await fetch(Product, seed["burger"])).stock_quantity == 50
        assert broadcaster.names()[-1] == "order-status-updated"
        assert broadcaster.calls[-1][1][1] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_appends_to_existing_notes(self, order_service, sample_order, fetch):
        order = await order_service.create_order(sample_order)
        await order_service.cancel_order(order.id, user_id=3)
        stored = await fetch(Order, order.id)
        assert stored.notes == "no onions\n[CANCELLED by user_id:3] No reason provided"

    @pytest.mark.asyncio
    async def test_cancel_completed_order_rejected(self, order_service, sample_order, fetch):
        order = await order_service.create_order(sample_order)
        await order_service.complete_order(
            order.id, CompleteOrderRequest(payment_method="cash", amount_received="20.00")
        )
        with pytest.raises(InvalidStateError):
            await order_service.cancel_order(order.id)
        assert (await fetch(Order, order.id)).status == "completed"

    @pytest.mark.asyncio
    async def test_cancel_twice_is_a_quiet_no_op(self, order_service, sample_order, fetch, broadcaster):
        order = await order_service.create_order(sample_order)
        await order_service.cancel_order(order.id, reason="first", user_id=1)
        first = await fetch(Order, order.id)
        calls_before = len(broadcaster.calls)

        result = await order_service.cancel_order(order.id, reason="second", user_id=2)

        second = await fetch(Order, order.id)
        assert result.status == "cancelled"
        assert second.notes == first.notes
        assert second.cancelled_at == first.cancelled_at
        assert len(broadcaster.calls) == calls_before


class TestDeleteOrder:
    @pytest.mark.asyncio
    async def test_pending_order_cannot_be_deleted(self, order_service, sample_order):
        order = await order_service.create_order(sample_order)
        with pytest.raises(InvalidStateError):
            await order_service.delete_order(order.id)

    @pytest.mark.asyncio
    async def test_soft_delete_hides_order(self, order_service, sample_order, fetch, broadcaster):
        order = await order_service.create_order(sample_order)
        await order_service.cancel_order(order.id)

        pending = await order_service.delete_order(order.id, user_id=2)

        assert pending == 0
        stored = await fetch(Order, order.id)
        assert stored.is_deleted is True
        assert stored.deleted_at is not None
        with pytest.raises(NotFoundError):
            await order_service.get_order(order.id)
        assert await order_service.list_orders() == []
        assert broadcaster.names()[-1] == "order-deleted"


class TestOrderQueries:
    @pytest.mark.asyncio
    async def test_list_filters_and_pending_count(self, order_service, sample_order, seed):
        first = await order_service.create_order(sample_order)
        second = await order_service.create_order(OrderCreate(
            items=[{"product_id": seed["cola"], "quantity": 2, "unit_price": "3.00"}],
        ))
        await order_service.complete_order(
            second.id, CompleteOrderRequest(payment_method="cash", amount_received="6.60")
        )

        assert await order_service.get_pending_count() == 1
        pending = await order_service.list_orders(status="pending")
        assert [o.id for o in pending] == [first.id]
        assert pending[0].table_number == "T1"
        assert pending[0].item_count == 2

        on_t1 = await order_service.list_orders(table_id=seed["t1"])
        assert [o.id for o in on_t1] == [first.id]
        assert len(await order_service.list_orders()) == 2

    @pytest.mark.asyncio
    async def test_get_order_includes_items(self, order_service, sample_order):
        created = await order_service.create_order(sample_order)
        fetched = await order_service.get_order(created.id)
        assert fetched.order_number == created.order_number
        assert [i.quantity for i in fetched.items] == [2, 1]
        _assert_totals(fetched)

    @pytest.mark.asyncio
    async def test_pending_count_reports_zero_on_store_errors(self, order_service, db_engine):
        async with db_engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE order_items")
            await conn.exec_driver_sql("DROP TABLE payments")
            await conn.exec_driver_sql("DROP TABLE orders")
        assert await order_service.get_pending_count() == 0


class TestBroadcastFailures:
    @pytest.mark.asyncio
    async def test_broadcaster_errors_do_not_fail_operation(self, session_factory, sample_order, count_rows):
        class ExplodingBroadcaster:
            def __getattr__(self, name):
                def _boom(*args):
                    raise RuntimeError("socket layer down")
                return _boom

        service = OrderService(
            session_factory,
            broadcaster=ExplodingBroadcaster(),
            numbers=OrderNumberGenerator(strategy="counter"),
            tax_rate_percent=10,
        )
        order = await service.create_order(sample_order)
        result = await service.cancel_order(order.id)

        assert order.total == Decimal("14.30")
        assert result.status == "cancelled"
        assert await count_rows(Order) == 1
