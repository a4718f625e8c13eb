"""Order schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from pos_core.models.order import PaymentMethod


class OrderItemInput(BaseModel):
    """One line of an order as sent by the terminal."""

    product_id: int
    product_name: Optional[str] = Field(default=None, max_length=200)
    product_image: Optional[str] = Field(default=None, max_length=500)
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def discount_within_line(self):
        if self.discount_amount > self.unit_price * self.quantity:
            raise ValueError("discount_amount cannot exceed quantity * unit_price")
        return self


class OrderCreate(BaseModel):
    """Order creation schema."""

    table_id: Optional[int] = None
    items: List[OrderItemInput] = Field(min_length=1)
    notes: Optional[str] = None
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)


class OrderUpdate(OrderCreate):
    """Full replacement of an order's table, items and notes.

    Items not present in the list are removed.
    """


class CompleteOrderRequest(BaseModel):
    payment_method: PaymentMethod
    amount_received: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class OrderDetail(BaseModel):
    """Order with its items and table number."""

    id: int
    order_number: str
    table_id: Optional[int] = None
    table_number: Optional[str] = None
    user_id: Optional[int] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    item_count: int = 0

    model_config = {"from_attributes": True}


class OrderSummary(BaseModel):
    """List row without items."""

    id: int
    order_number: str
    table_id: Optional[int] = None
    table_number: Optional[str] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    total: Decimal
    item_count: int = 0
    created_at: datetime
    completed_at: Optional[datetime] = None


class CompleteOrderResult(BaseModel):
    order_id: int
    change: Decimal
    pending_order_count: int


class CancelOrderResult(BaseModel):
    order_id: int
    status: str
    pending_order_count: int
