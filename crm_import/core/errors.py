"""
Top-level failure type for the import service.

Every failure that aborts a request (bad input, unreachable sheet, store
outage) is raised as an ImportPipelineError so the API can render it with a
stable machine-readable code and the request's correlation id. Row-level
problems are never raised; they become ImportIssue records instead.
"""
from typing import Any, Optional


# Input errors
FILE_MISSING = "FILE_MISSING"
URL_MISSING = "URL_MISSING"
CSV_EMPTY = "CSV_EMPTY"
CSV_INVALID = "CSV_INVALID"
UNSUPPORTED_CONTENT_TYPE = "UNSUPPORTED_CONTENT_TYPE"
PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
VALIDATION_ERROR = "VALIDATION_ERROR"

# Remote fetch errors
URL_FORBIDDEN = "URL_FORBIDDEN"
FETCH_FAILED = "FETCH_FAILED"

# Request routing / identity
UNAUTHORIZED = "UNAUTHORIZED"
NOT_FOUND = "NOT_FOUND"
METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

# Persistence
DB_ERROR = "DB_ERROR"
UNHANDLED = "UNHANDLED"


class ImportPipelineError(Exception):
    """Exception raised when an import request cannot proceed."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Any] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ImportPipelineError(code={self.code!r}, status_code={self.status_code}, message={self.message!r})"
