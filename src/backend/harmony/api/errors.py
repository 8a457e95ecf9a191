"""Translation of service exceptions into HTTP errors."""

from typing import Any

from fastapi import HTTPException


def service_error(error: Exception, data: dict[str, Any] | None = None) -> HTTPException:
    """Build an HTTPException with a ``{code, message, data?}`` detail body.

    Service exceptions carry ``code``, ``message`` and ``status_code``
    attributes; anything else is reported as a 500.
    """
    detail: dict[str, Any] = {
        "code": getattr(error, "code", "INTERNAL_SERVER_ERROR"),
        "message": getattr(error, "message", str(error)),
    }
    data = data if data is not None else getattr(error, "data", None)
    if data is not None:
        detail["data"] = data
    return HTTPException(status_code=getattr(error, "status_code", 500), detail=detail)
