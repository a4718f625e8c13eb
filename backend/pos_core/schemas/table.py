"""Restaurant table schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TableCreate(BaseModel):
    table_number: str = Field(min_length=1, max_length=20)
    capacity: int = Field(default=4, ge=1)
    location: Optional[str] = Field(default=None, max_length=100)
    display_order: int = 0


class TableUpdate(BaseModel):
    table_number: Optional[str] = Field(default=None, min_length=1, max_length=20)
    capacity: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = Field(default=None, max_length=100)
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class TableStatusUpdate(BaseModel):
    """Administrative status change. ``occupied`` is rejected by the service."""

    status: str


class TableResponse(BaseModel):
    """Table with its derived status."""

    id: int
    table_number: str
    capacity: int
    location: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    status: str
    current_order_id: Optional[int] = None
    current_order_number: Optional[str] = None
    created_at: datetime
