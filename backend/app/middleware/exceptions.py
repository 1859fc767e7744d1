"""Ledger exceptions and the handlers that turn them into error responses.

Business-rule failures (missing entity, invalid parent, insufficient
stock, conservation breach) are raised by the services and surfaced to
the caller unchanged.  Data-integrity faults (lineage cycles) are logged
for investigation and returned as internal errors.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class KopiTraceException(Exception):
    """Base exception for ledger errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class BusinessLogicError(KopiTraceException):
    """A ledger rule rejected the request; the caller may adjust and resubmit."""

    def __init__(
        self,
        message: str,
        error_code: str = "BUSINESS_LOGIC_ERROR",
        details: dict | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
            details=details,
        )


class NotFoundError(KopiTraceException):
    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class InvalidParentError(BusinessLogicError):
    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_PARENT")


class InsufficientStockError(BusinessLogicError):
    def __init__(self, batch_code: str, available: float, requested: float):
        self.batch_code = batch_code
        self.available = available
        self.requested = requested
        super().__init__(
            f"Batch {batch_code} holds {available:g} but {requested:g} was requested",
            error_code="INSUFFICIENT_STOCK",
            details={
                "batch_code": batch_code,
                "available": available,
                "requested": requested,
            },
        )


class ConservationError(BusinessLogicError):
    """Transformation outputs (plus declared loss) don't match the source outflow."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, error_code="CONSERVATION_VIOLATION", details=details)


class LedgerValidationError(BusinessLogicError):
    def __init__(self, message: str):
        super().__init__(message, error_code="LEDGER_VALIDATION_ERROR")


class DuplicateBatchError(KopiTraceException):
    def __init__(self, code: str):
        super().__init__(
            message=f"Batch code already exists: {code}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="DUPLICATE_BATCH",
        )


class PermissionDeniedError(KopiTraceException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
        )


class LineageCycleError(KopiTraceException):
    """Parent links loop back on themselves — corrupted lineage data."""

    def __init__(self, batch_code: str, path: list[str]):
        self.batch_code = batch_code
        self.path = path
        super().__init__(
            message=f"Lineage cycle or runaway depth detected at batch {batch_code}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="LINEAGE_CYCLE",
            details={"path": path},
        )


# ── Error envelope ───────────────────────────────────────────

def create_error_response(
    status_code: int,
    message: str,
    error_code: str,
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Build the envelope every failed request returns:

        {"error": {"code": "INSUFFICIENT_STOCK",
                   "message": "Batch CHERRY-001 holds 380 but 500 was requested",
                   "details": {"batch_code": "CHERRY-001", ...}}}

    ``details`` is omitted when empty.
    """
    error: dict = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def _request_extra(request: Request, **extra) -> dict:
    return {"path": request.url.path, "method": request.method, **extra}


# ── Handlers ─────────────────────────────────────────────────

async def kopitrace_exception_handler(
    request: Request,
    exc: KopiTraceException,
) -> JSONResponse:
    """Rule rejections log at WARNING; integrity faults (5xx) at ERROR."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra=_request_extra(request, error_code=exc.error_code),
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """401/403 from the auth dependencies, 404 for unknown routes."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_request_extra(request))

    response = create_error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")
    # Keep WWW-Authenticate on 401s
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Malformed payloads, e.g. a DISPATCH tagged with a receipt operation."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning(
        f"Rejected payload on {request.url.path}: {len(errors)} error(s)",
        extra=_request_extra(request),
    )
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Constraint violations the services did not catch first.

    The usual cause is two writers creating the same batch code at once:
    both pass the duplicate check, the unique index rejects the second.
    """
    reason = str(getattr(exc, "orig", exc)).lower()
    logger.error(
        f"Integrity error on {request.url.path}: {reason}",
        extra=_request_extra(request),
    )

    if "unique" in reason:
        return create_error_response(
            status.HTTP_409_CONFLICT,
            "A record with this key already exists",
            "DUPLICATE_RECORD",
        )
    if "foreign key" in reason:
        return create_error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Referenced batch, cooperative, farmer or land does not exist",
            "FOREIGN_KEY_VIOLATION",
        )
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Ledger constraint violation",
        "INTEGRITY_ERROR",
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Storage errors that outlived the retry budget of run_atomic."""
    logger.error(
        f"Storage unavailable on {request.url.path}: {exc.orig}",
        extra=_request_extra(request),
    )
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Ledger storage temporarily unavailable, retry the request",
        "STORAGE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}",
        extra=_request_extra(request, traceback=traceback.format_exc()),
        exc_info=True,
    )
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register the ledger's exception handlers on a FastAPI app."""
    app.add_exception_handler(KopiTraceException, kopitrace_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
