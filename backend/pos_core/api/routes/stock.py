"""Stock routes - ledger history, availability and manual adjustments."""

from fastapi import APIRouter, Query

from pos_core.api.deps import StockServiceDep
from pos_core.core.rbac import CurrentUser, RequireManager
from pos_core.core.responses import list_response, success_response
from pos_core.schemas.stock import StockAdjustRequest

router = APIRouter()


@router.get("/products/{product_id}/movements")
async def list_stock_movements(
    product_id: int,
    current_user: CurrentUser,
    service: StockServiceDep,
    limit: int = Query(100, ge=1, le=1000),
):
    movements = await service.list_movements(product_id, limit=limit)
    return list_response(movements, "Stock movements retrieved successfully")


@router.get("/availability/{product_id}")
async def check_stock_availability(
    product_id: int,
    current_user: CurrentUser,
    service: StockServiceDep,
    quantity: int = Query(1, ge=1),
):
    """Advisory check; sales are never blocked on stock."""
    result = await service.check_availability(product_id, quantity)
    return success_response(result, result.message)


@router.get("/low")
async def list_low_stock(current_user: CurrentUser, service: StockServiceDep):
    products = await service.list_low_stock()
    return list_response(products, "Low stock products retrieved successfully")


@router.post("/adjust", status_code=201)
async def adjust_stock(data: StockAdjustRequest, current_user: RequireManager, service: StockServiceDep):
    movement = await service.adjust_stock(
        product_id=data.product_id,
        quantity=data.quantity,
        movement_type=data.movement_type,
        user_id=current_user.user_id,
        notes=data.notes,
    )
    return success_response(movement, "Stock updated successfully")
