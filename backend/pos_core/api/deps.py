"""Service providers for route handlers.

Tests replace these through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends

from pos_core.services.order_service import OrderService
from pos_core.services.payment_service import PaymentService
from pos_core.services.stock_service import StockService
from pos_core.services.table_service import TableService
from pos_core.services.websocket_service import ConnectionManager, manager

_order_service = OrderService()
_payment_service = PaymentService()
_stock_service = StockService()
_table_service = TableService()


def get_order_service() -> OrderService:
    return _order_service


def get_payment_service() -> PaymentService:
    return _payment_service


def get_stock_service() -> StockService:
    return _stock_service


def get_table_service() -> TableService:
    return _table_service


def get_connection_manager() -> ConnectionManager:
    return manager


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
StockServiceDep = Annotated[StockService, Depends(get_stock_service)]
TableServiceDep = Annotated[TableService, Depends(get_table_service)]
ConnectionManagerDep = Annotated[ConnectionManager, Depends(get_connection_manager)]
