"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PaymentResponse(BaseModel):
    id: int
    order_id: int
    order_number: Optional[str] = None
    payment_method: str
    amount: Decimal
    amount_received: Decimal
    change_amount: Decimal
    status: str
    processed_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RefundRequest(BaseModel):
    """Refund a payment, fully or partially.

    ``refund_amount`` defaults to the full payment amount.
    """

    reason: Optional[str] = Field(default=None, max_length=500)
    refund_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
