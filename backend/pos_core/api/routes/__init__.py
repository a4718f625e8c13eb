"""API routes."""

from fastapi import APIRouter

from pos_core.api.routes import orders, payments, socket, stock, tables

api_router = APIRouter()

api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
api_router.include_router(socket.router, prefix="/socket", tags=["socket"])
