"""Product model."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from pos_core.db.base import Base, SoftDeleteMixin, TimestampMixin
from pos_core.models.validators import non_negative


class Product(Base, TimestampMixin, SoftDeleteMixin):
    """Sellable catalog entry.

    ``stock_quantity`` may go negative and is only ever changed through
    the stock ledger.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=10, server_default="10", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)

    @validates("price", "low_stock_threshold")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name!r} stock={self.stock_quantity}>"
