# backend/lmsdb/errors.py

"""
Domain error taxonomy.

Service functions raise these; routers translate them into HTTP responses
with `to_http_exception`. Nothing here knows about SQL or request objects.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException, status


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request could not be processed."

    def __init__(self, detail: Optional[str] = None, *, extra: Optional[dict] = None) -> None:
        self.detail = detail or self.default_detail
        self.extra = extra or {}
        super().__init__(self.detail)


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict with the current state of the resource."


class PermissionDeniedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Insufficient privileges."


class PaymentRequiredError(DomainError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment was not successful or is still pending."


def to_http_exception(exc: DomainError) -> HTTPException:
    detail: Any = exc.detail
    if exc.extra:
        detail = {"error": exc.detail, **exc.extra}
    return HTTPException(status_code=exc.status_code, detail=detail)


def server_error(message: str) -> HTTPException:
    """Generic 500 that never leaks internals to the caller."""
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message,
    )
