"""Ledger error taxonomy and standardized error responses."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

logger = structlog.get_logger()


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all API error handlers."""
    error: str
    message: str
    detail: Any = None
    request_id: str = "unknown"


# ── Domain errors ─────────────────────────────────────────────────────────────


class LedgerError(Exception):
    """Base class for errors raised by the reward ledger."""

    error = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or None


class NotFoundError(LedgerError):
    error = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    """Already-resolved verification, already-held badge, breaking catalog edit."""

    error = "conflict"
    status_code = 409


class CapacityExceededError(LedgerError):
    """A capped badge has no recipient slots left."""

    error = "capacity_exceeded"
    status_code = 409


class MetricSourceError(LedgerError):
    """The metric adapter could not produce a value for one task."""

    error = "metric_source_error"
    status_code = 502


class TransientError(LedgerError):
    """Storage-layer failure; the whole call is safe to retry."""

    error = "transient_error"
    status_code = 503


@asynccontextmanager
async def translate_storage_errors() -> AsyncIterator[None]:
    """Re-raise connection-level database failures as TransientError.

    Integrity violations are left alone: callers rely on them as the
    serialization point for upserts and claims.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, InterfaceError) as exc:
        logger.warning("storage_unavailable", error=str(exc))
        raise TransientError("Storage temporarily unavailable") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("storage_connection_lost", error=str(exc))
            raise TransientError("Storage connection lost") from exc
        raise


# ── HTTP handlers ─────────────────────────────────────────────────────────────


async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Map domain errors onto the JSON error envelope."""
    request_id = request.headers.get("x-request-id", "unknown")
    logger.info(
        "ledger_error",
        error=exc.error,
        message=exc.message,
        path=request.url.path,
        request_id=request_id,
    )
    headers = {"Retry-After": "5"} if isinstance(exc, TransientError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.error,
            message=exc.message,
            detail=exc.detail,
            request_id=request_id,
        ).model_dump(),
        headers=headers,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a consistent JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )

    sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Our team has been notified.",
            "request_id": request_id,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Standardize HTTPException responses into the same JSON envelope."""
    request_id = request.headers.get("x-request-id", "unknown")

    if isinstance(exc.detail, dict):
        error = exc.detail.get("error", f"http_{exc.status_code}")
        message = exc.detail.get("message", str(exc.detail))
        detail: Any = exc.detail.get("detail")
    else:
        error = f"http_{exc.status_code}"
        message = str(exc.detail)
        detail = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": request_id,
        },
        headers=dict(exc.headers or {}),
    )
