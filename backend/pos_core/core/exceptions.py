"""Typed service errors mapped to HTTP status codes by the API layer."""

from typing import Optional

from sqlalchemy.exc import IntegrityError

# PostgreSQL SQLSTATE codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class ServiceError(Exception):
    """Base class for errors raised by the service layer.

    Each subclass carries the HTTP status the API layer responds with.
    The message is safe to show to clients.
    """

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(ServiceError):
    """Referenced order, product, table or payment does not exist or is soft-deleted."""

    status_code = 404
    default_message = "Resource not found"


class InvalidStateError(ServiceError):
    """Operation attempted against a record that is not in the required status."""

    status_code = 400
    default_message = "Operation not allowed in the current state"


class ValidationFailedError(ServiceError):
    """Malformed or inconsistent input."""

    status_code = 400
    default_message = "Validation failed"


class ConflictError(ServiceError):
    """Unique constraint violation or competing record."""

    status_code = 409
    default_message = "Duplicate entry. This record already exists."


class InternalError(ServiceError):
    """Store unavailable or unexpected failure."""

    status_code = 500


def translate_integrity_error(exc: IntegrityError) -> ServiceError:
    """Map a driver integrity error to a stable, client-safe error.

    PostgreSQL drivers report a SQLSTATE code; SQLite only has the message.
    """
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate == UNIQUE_VIOLATION:
        return ConflictError()
    if sqlstate == FOREIGN_KEY_VIOLATION:
        return ValidationFailedError("Referenced record does not exist.")
    if sqlstate is not None:
        return ValidationFailedError("Invalid data for this operation.")

    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if "unique" in text or "duplicate" in text:
        return ConflictError()
    if "foreign key" in text:
        return ValidationFailedError("Referenced record does not exist.")
    return ValidationFailedError("Invalid data for this operation.")
