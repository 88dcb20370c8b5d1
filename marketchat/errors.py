"""
Error taxonomy for the messaging service.

Every error carries the HTTP status it is surfaced with, a stable machine
readable code, and a user-facing message. Route handlers let these
propagate; the exception handler registered in main.py renders them.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class MarketchatError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "error"
    default_message: str = "خطای سرور"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(MarketchatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "احراز هویت نشده"


class ValidationError(MarketchatError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "لطفاً تمام فیلدها را پر کنید"


class NotFound(MarketchatError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "آگهی یافت نشد"


class NoCounterpartYet(MarketchatError):
    """The listing owner has nobody to reply to yet."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "no_counterpart_yet"
    default_message = "ابتدا خریدار باید پیامی ارسال کند"


class StorageError(MarketchatError):
    """Underlying read or write failure. Not retried by the service."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "storage_error"
    default_message = "خطای سرور"


class RequestTimedOut(MarketchatError):
    """The request outlived its deadline; nothing was written."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "timeout"
    default_message = "زمان پاسخ‌گویی به پایان رسید"


def error_body(error: MarketchatError) -> dict:
    return {"success": False, "error": error.code, "message": error.message}


async def marketchat_error_handler(request: Request, exc: MarketchatError) -> JSONResponse:
    """Render a MarketchatError as the service's JSON error envelope."""
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))
