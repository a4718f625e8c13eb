"""Restaurant POS order-processing core."""

__version__ = "1.0.0"
