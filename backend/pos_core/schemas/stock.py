"""Stock schemas."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class StockAdjustRequest(BaseModel):
    """Manual stock change recorded through the ledger."""

    product_id: int
    quantity: int
    movement_type: Literal["in", "out", "adjustment", "return"] = "adjustment"
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("quantity")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity must not be zero")
        return v


class StockMovementResponse(BaseModel):
    id: int
    product_id: int
    movement_type: str
    quantity: int
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    previous_quantity: int
    new_quantity: int
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    product_id: int
    available: bool
    current_stock: int
    required: int
    message: str


class LowStockItem(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None
    stock_quantity: int
    low_stock_threshold: int

    model_config = {"from_attributes": True}
