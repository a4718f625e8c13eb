"""Restaurant floor models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from pos_core.db.base import Base, SoftDeleteMixin, TimestampMixin
from pos_core.models.validators import positive


class TableStatus(str, Enum):
    """Table status as seen by clients."""

    AVAILABLE = "available"
    OCCUPIED = "occupied"  # derived from pending orders, never stored
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


# Statuses an operator may set directly on a table.
ADMIN_TABLE_STATUSES = (
    TableStatus.AVAILABLE.value,
    TableStatus.RESERVED.value,
    TableStatus.MAINTENANCE.value,
)


class RestaurantTable(Base, TimestampMixin, SoftDeleteMixin):
    """Physical table on the floor.

    Occupancy is not stored here. ``admin_status`` only carries the states
    an operator sets by hand; services overlay ``occupied`` whenever a
    pending order references the table.
    """

    __tablename__ = "restaurant_tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)
    admin_status: Mapped[str] = mapped_column(
        String(20), default=TableStatus.AVAILABLE.value, nullable=False
    )

    @validates("capacity")
    def _validate_capacity(self, key, value):
        return positive(key, value)

    @validates("admin_status")
    def _validate_admin_status(self, key, value):
        if value not in ADMIN_TABLE_STATUSES:
            raise ValueError(f"{key} must be one of {ADMIN_TABLE_STATUSES}, got {value!r}")
        return value
