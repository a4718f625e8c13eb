"""Standardized API response helpers.

Every endpoint returns the same envelope:
    {"success": <bool>, "message": <str>, "data": <payload>}

Failures omit ``data``. Use success_response() in route handlers and
error_response() from exception handlers.
"""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(data: Any = None, message: str = "Success") -> dict:
    """Wrap a payload in the success envelope."""
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def list_response(items: list, message: str = "Success", total: Optional[int] = None) -> dict:
    """Wrap a list in the success envelope with a total count."""
    return success_response(
        {"items": items, "total": total if total is not None else len(items)},
        message,
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    """Build a failure envelope response."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "message": message}),
    )
