"""Attribute validators used with SQLAlchemy ``@validates``.

They run whenever a service assigns a money or quantity column, so a bad
total is rejected before it reaches the database.
"""

from decimal import Decimal


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def non_negative(key: str, value):
    """Reject values below zero. ``None`` passes through."""
    if value is not None and _as_decimal(value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Reject zero and negative values. ``None`` passes through."""
    if value is not None and _as_decimal(value) <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value
