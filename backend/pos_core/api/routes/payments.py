"""Payment routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from pos_core.api.deps import PaymentServiceDep
from pos_core.core.rbac import CurrentUser, RequireManager
from pos_core.core.responses import list_response, success_response
from pos_core.models.order import PaymentMethod
from pos_core.models.payment import PaymentRecordStatus
from pos_core.schemas.payment import RefundRequest

router = APIRouter()


@router.get("")
async def list_payments(
    current_user: CurrentUser,
    service: PaymentServiceDep,
    day: Optional[date] = Query(None, alias="date"),
    payment_method: Optional[PaymentMethod] = None,
    status: Optional[PaymentRecordStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    payments = await service.list_payments(
        day=day,
        payment_method=payment_method.value if payment_method else None,
        status=status.value if status else None,
        limit=limit,
        offset=offset,
    )
    return list_response(payments, "Payments retrieved successfully")


@router.get("/order/{order_id}")
async def get_order_payments(order_id: int, current_user: CurrentUser, service: PaymentServiceDep):
    payments = await service.get_order_payments(order_id)
    return list_response(payments, "Payments retrieved successfully")


@router.get("/{payment_id}")
async def get_payment(payment_id: int, current_user: CurrentUser, service: PaymentServiceDep):
    payment = await service.get_payment(payment_id)
    return success_response(payment, "Payment retrieved successfully")


@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    current_user: RequireManager,
    service: PaymentServiceDep,
    data: Optional[RefundRequest] = None,
):
    """Refund a payment (manager or admin)."""
    payment = await service.refund_payment(
        payment_id, data or RefundRequest(), user_id=current_user.user_id
    )
    return success_response(payment, "Payment refunded successfully")
