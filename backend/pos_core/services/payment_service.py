"""Payment Service - payment records and refunds.

Payments are created by OrderService.complete_order(); this service lists
them and handles refunds.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pos_core.core.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from pos_core.db.session import SessionLocal, transaction
from pos_core.models.order import Order, PaymentStatus
from pos_core.models.payment import Payment, PaymentRecordStatus
from pos_core.schemas.payment import PaymentResponse, RefundRequest

logger = logging.getLogger(__name__)


def _to_response(payment: Payment, order_number: Optional[str]) -> PaymentResponse:
    return PaymentResponse.model_validate(payment).model_copy(update={"order_number": order_number})


class PaymentService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = SessionLocal):
        self.session_factory = session_factory

    async def list_payments(
        self,
        day: Optional[date] = None,
        payment_method: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PaymentResponse]:
        query = select(Payment, Order.order_number).join(Order, Payment.order_id == Order.id)
        if day is not None:
            start = datetime.combine(day, time.min, tzinfo=timezone.utc)
            query = query.where(Payment.created_at >= start, Payment.created_at < start + timedelta(days=1))
        if payment_method:
            query = query.where(Payment.payment_method == payment_method)
        if status:
            query = query.where(Payment.status == status)
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit).offset(offset)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_response(payment, number) for payment, number in result.all()]

    async def get_payment(self, payment_id: int) -> PaymentResponse:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payment, Order.order_number)
                .join(Order, Payment.order_id == Order.id)
                .where(Payment.id == payment_id)
            )
            row = result.first()
        if row is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return _to_response(*row)

    async def get_order_payments(self, order_id: int) -> List[PaymentResponse]:
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None or order.is_deleted:
                raise NotFoundError(f"Order {order_id} not found")
            result = await session.execute(
                select(Payment).where(Payment.order_id == order_id).order_by(Payment.id)
            )
            return [_to_response(p, order.order_number) for p in result.scalars()]

    async def refund_payment(
        self, payment_id: int, data: RefundRequest, user_id: Optional[int] = None
    ) -> PaymentResponse:
        """Mark a payment refunded and flag its order. Amounts are never edited."""
        async with transaction(self.session_factory, "Failed to process refund") as session:
            result = await session.execute(
                select(Payment).where(Payment.id == payment_id).with_for_update()
            )
            payment = result.scalar_one_or_none()
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found")
            if payment.status == PaymentRecordStatus.REFUNDED.value:
                raise InvalidStateError("Payment already refunded")

            refund_amount: Decimal = data.refund_amount or payment.amount
            if refund_amount > payment.amount:
                raise ValidationFailedError("Refund amount cannot exceed the payment amount")

            note = (
                f"[REFUNDED by user_id:{user_id}] Amount: {refund_amount} "
                f"Reason: {data.reason or 'No reason provided'}"
            )
            payment.status = PaymentRecordStatus.REFUNDED.value
            payment.notes = f"{payment.notes}\n{note}" if payment.notes else note

            order_result = await session.execute(
                select(Order).where(Order.id == payment.order_id).with_for_update()
            )
            order = order_result.scalar_one()
            order.payment_status = PaymentStatus.REFUNDED.value
            await session.flush()
            response = _to_response(payment, order.order_number)

        logger.info(f"Payment {payment_id} for order {response.order_number} refunded {refund_amount} by user {user_id}")
        return response
