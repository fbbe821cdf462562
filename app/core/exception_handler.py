"""
DRF exception handler producing the application error envelope.

Registered as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Every error response
from the API has the same shape:

    {"error": {"kind": "...", "code": "...", "message": "...", "details": {...}}}

Application errors (core.exceptions) carry their own kind and status.
DRF's built-in exceptions (serializer validation, authentication,
throttling, 404) are folded into the same envelope so clients only
parse one format.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

# DRF exception class -> envelope kind
DRF_KINDS: list[tuple[type[Exception], str]] = [
    (drf_exceptions.ValidationError, "ValidationError"),
    (drf_exceptions.ParseError, "ValidationError"),
    (drf_exceptions.NotAuthenticated, "Unauthenticated"),
    (drf_exceptions.AuthenticationFailed, "Unauthenticated"),
    (drf_exceptions.PermissionDenied, "Forbidden"),
    (drf_exceptions.NotFound, "NotFound"),
    (drf_exceptions.MethodNotAllowed, "MethodNotAllowed"),
    (drf_exceptions.Throttled, "RateLimited"),
]


def _drf_kind(exc: Exception) -> str:
    for exc_class, kind in DRF_KINDS:
        if isinstance(exc, exc_class):
            return kind
    return "ApplicationError"


def api_exception_handler(exc: Exception, context: dict[str, Any]) -> Response | None:
    """Render application and DRF errors as the error envelope."""
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log_level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(
            log_level,
            "API error",
            extra={
                "kind": exc.kind,
                "error_code": exc.error_code,
                "view": view.__class__.__name__ if view else None,
            },
        )
        return Response(exc.to_dict(), status=exc.status_code)

    response = drf_exception_handler(exc, context)
    if response is None:
        # Unhandled: let Django produce its 500 and log the traceback
        return None

    kind = _drf_kind(exc)
    data = response.data
    if isinstance(data, dict) and set(data) == {"detail"}:
        message = str(data["detail"])
        details = None
    else:
        message = "Invalid input." if kind == "ValidationError" else str(exc)
        details = data

    error: dict[str, Any] = {
        "kind": kind,
        "code": getattr(exc, "default_code", "error").upper(),
        "message": message,
    }
    if details:
        error["details"] = details

    response.data = {"error": error}
    if kind == "Unauthenticated" and response.status_code == status.HTTP_403_FORBIDDEN:
        response.status_code = status.HTTP_401_UNAUTHORIZED
    return response
