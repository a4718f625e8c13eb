"""SQLAlchemy models."""

from pos_core.models.product import Product
from pos_core.models.restaurant import RestaurantTable, TableStatus, ADMIN_TABLE_STATUSES
from pos_core.models.order import (
    Order,
    OrderItem,
    OrderNumberSequence,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from pos_core.models.payment import Payment, PaymentRecordStatus
from pos_core.models.stock import StockMovement, MovementType

__all__ = [
    "Product",
    "RestaurantTable",
    "TableStatus",
    "ADMIN_TABLE_STATUSES",
    "Order",
    "OrderItem",
    "OrderNumberSequence",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Payment",
    "PaymentRecordStatus",
    "StockMovement",
    "MovementType",
]
