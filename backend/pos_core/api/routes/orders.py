"""Order routes - thin wrappers around OrderService."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from pos_core.api.deps import OrderServiceDep
from pos_core.core.rbac import CurrentUser, RequireManager
from pos_core.core.responses import list_response, success_response
from pos_core.models.order import OrderStatus
from pos_core.schemas.order import CancelOrderRequest, CompleteOrderRequest, OrderCreate, OrderUpdate

router = APIRouter()


@router.get("")
async def list_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    status: Optional[OrderStatus] = None,
    day: Optional[date] = Query(None, alias="date"),
    table_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List orders, newest first."""
    orders = await service.list_orders(
        status=status.value if status else None,
        day=day,
        table_id=table_id,
        limit=limit,
        offset=offset,
    )
    return list_response(orders, "Orders retrieved successfully")


@router.get("/pending/count")
async def pending_order_count(current_user: CurrentUser, service: OrderServiceDep):
    count = await service.get_pending_count()
    return success_response({"count": count}, "Pending order count retrieved")


@router.get("/{order_id}")
async def get_order(order_id: int, current_user: CurrentUser, service: OrderServiceDep):
    order = await service.get_order(order_id)
    return success_response(order, "Order retrieved successfully")


@router.post("", status_code=201)
async def create_order(data: OrderCreate, current_user: CurrentUser, service: OrderServiceDep):
    order = await service.create_order(data, user_id=current_user.user_id)
    return success_response(order, "Order created successfully")


@router.put("/{order_id}")
async def update_order(
    order_id: int, data: OrderUpdate, current_user: CurrentUser, service: OrderServiceDep
):
    """Replace the order's items; send the complete list."""
    order = await service.update_order(order_id, data)
    return success_response(order, "Order updated successfully")


@router.post("/{order_id}/complete")
async def complete_order(
    order_id: int, data: CompleteOrderRequest, current_user: CurrentUser, service: OrderServiceDep
):
    result = await service.complete_order(order_id, data, user_id=current_user.user_id)
    return success_response(result, "Payment processed successfully")


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    current_user: CurrentUser,
    service: OrderServiceDep,
    data: Optional[CancelOrderRequest] = None,
):
    reason = data.reason if data else None
    result = await service.cancel_order(order_id, reason=reason, user_id=current_user.user_id)
    return success_response(result, "Order cancelled successfully")


@router.delete("/{order_id}")
async def delete_order(order_id: int, current_user: RequireManager, service: OrderServiceDep):
    pending = await service.delete_order(order_id, user_id=current_user.user_id)
    return success_response(
        {"order_id": order_id, "pending_order_count": pending}, "Order deleted successfully"
    )
