"""SQLAlchemy declarative base and common mixins."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class SoftDeleteMixin:
    """Soft-delete support via ``is_deleted`` flag and ``deleted_at`` timestamp.

    Rows are never removed. Call ``soft_delete()`` and filter normal
    queries with ``not_deleted()``.
    """

    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False, index=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None,
    )

    def soft_delete(self) -> None:
        """Mark this row as deleted."""
        self.is_deleted = True
        self.deleted_at = utcnow()

    @classmethod
    def not_deleted(cls):
        """SQLAlchemy filter expression: ``WHERE is_deleted = FALSE``."""
        return cls.is_deleted.is_(False)
