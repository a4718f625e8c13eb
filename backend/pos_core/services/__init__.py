# Services module

from pos_core.services.order_number_service import OrderNumberGenerator
from pos_core.services.order_service import OrderService
from pos_core.services.payment_service import PaymentService
from pos_core.services.stock_service import StockLedger, StockService
from pos_core.services.table_service import TableService
from pos_core.services.websocket_service import (
    ConnectionManager,
    EventBroadcaster,
    EventType,
    broadcaster,
    manager,
)
