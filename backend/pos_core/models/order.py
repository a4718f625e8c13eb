"""Order models: Order, OrderItem and the per-day order number counter."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from pos_core.db.base import Base, SoftDeleteMixin, TimestampMixin
from pos_core.models.validators import non_negative, positive


class OrderStatus(str, Enum):
    """Order lifecycle status. ``completed`` and ``cancelled`` are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"
    OTHER = "other"


class Order(Base, TimestampMixin, SoftDeleteMixin):
    """One customer transaction at a table or takeaway."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    table_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("restaurant_tables.id"), nullable=True, index=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=OrderStatus.PENDING.value, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.UNPAID.value, nullable=False
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    @validates("subtotal", "tax_rate", "tax_amount", "discount_amount", "total")
    def _validate_money(self, key, value):
        return non_negative(key, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class OrderItem(Base):
    """One product line within an order.

    Name and image are copied from the product when the line is written.
    """

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    product_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "subtotal", "discount_amount", "total")
    def _validate_money(self, key, value):
        return non_negative(key, value)


class OrderNumberSequence(Base):
    """Last order number handed out for a calendar day (UTC)."""

    __tablename__ = "order_number_sequences"

    day: Mapped[str] = mapped_column(String(8), primary_key=True)  # YYYYMMDD
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
