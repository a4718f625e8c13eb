"""Payment model."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from pos_core.db.base import Base, TimestampMixin
from pos_core.models.validators import non_negative


class PaymentRecordStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class Payment(Base, TimestampMixin):
    """Settlement record written when an order is completed.

    Only a refund changes it afterwards, and a refund never edits amounts.
    ``change_amount`` is negative when the customer paid less than the total.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_received: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    change_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentRecordStatus.COMPLETED.value, nullable=False, index=True
    )
    processed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @validates("amount", "amount_received")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)
