"""
Shared request-scoped helpers for the API: correlation ids and error bodies.
"""
import logging
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from crm_import.core.config import settings
from crm_import.domain.imports.events import LoggingEventEmitter

CORRELATION_HEADER = "X-Correlation-ID"

logger = logging.getLogger(__name__)

event_emitter = LoggingEventEmitter(logging.getLogger("crm_import.events"))


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Return the correlation id for this request, assigning one if the
    middleware has not already done so.
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = new_correlation_id()
        request.state.correlation_id = correlation_id
    return correlation_id


def get_event_emitter() -> LoggingEventEmitter:
    return event_emitter


def get_import_limits() -> dict:
    """Limits applied to every import request, read from settings."""
    return {
        "max_bytes": settings.import_max_file_size_bytes,
        "fetch_timeout": settings.import_fetch_timeout_seconds,
        "processing_timeout": settings.import_processing_timeout_seconds,
        "sample_size": settings.import_sample_rows,
        "issue_limit": settings.import_issue_response_limit,
    }


def api_error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    payload = {
        "ok": False,
        "code": code,
        "message": message,
        "correlationId": correlation_id,
        "details": details,
    }
    return JSONResponse(payload, status_code=status_code, headers={CORRELATION_HEADER: correlation_id})
