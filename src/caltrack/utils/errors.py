"""
Standardized error handling for the calibration record service
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)

ERROR_REGISTRY = {
    400: ("CAL-400", "Bad Request: General validation error", False),
    404: ("CAL-404", "Not Found: Resource does not exist", False),
    405: ("CAL-405", "Method Not Allowed", False),
    413: ("CAL-413", "Payload Too Large: Upload exceeds the size limit", False),
    422: ("CAL-422", "Unprocessable Entity: Semantic validation error", False),
    500: ("CAL-500", "Internal Server Error: Generic server failure", True),
    503: ("CAL-503", "Service Unavailable: Storage is not ready", True),
}


class CaltrackError(Exception):
    """Base class for errors that cross the HTTP boundary."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def error_code(self) -> str:
        return ERROR_REGISTRY.get(self.status_code, ERROR_REGISTRY[500])[0]


class ValidationError(CaltrackError):
    """Caller-supplied input failed a precondition. Nothing was written."""

    status_code = 400


class NotFoundError(CaltrackError):
    """Lookup or delete targeted a record that does not exist."""

    status_code = 404


class StorageWriteError(CaltrackError):
    """Blob or database I/O failed."""

    status_code = 500


class CleanupError(CaltrackError):
    """A blob could not be released after its record was removed.

    Only ever logged; the row removal is the operation's contract.
    """

    status_code = 500


class ConfigurationError(Exception):
    """Invalid startup configuration (registry file, settings)."""


def error_body(status_code: int, message: Optional[str] = None) -> Dict[str, Any]:
    error_code, default_message, retryable = ERROR_REGISTRY.get(
        status_code,
        ("CAL-500", "Internal Server Error", True)
    )
    return {
        "transaction_id": str(uuid.uuid4()),
        "error_code": error_code,
        "message": message or default_message,
        "retryable": retryable
    }


async def caltrack_error_handler(request: Request, exc: CaltrackError):
    """Domain errors raised by the record service"""
    if exc.status_code >= 500:
        # Storage messages can carry paths; keep them server-side.
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.message)
    )


async def error_handler(request: Request, exc: HTTPException):
    """Standardized error handler for all HTTP exceptions"""
    message = exc.detail if isinstance(exc.detail, str) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, message)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed path/query/form parameters are reported as 400"""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        message = f"{field}: {first.get('msg', 'invalid value')}"
    else:
        message = None
    return JSONResponse(status_code=400, content=error_body(400, message))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=error_body(500))
