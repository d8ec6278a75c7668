"""
In-memory records produced by the import pipeline.

ImportAttempt is owned by exactly one pipeline run: it is created when the
run starts, accumulates counters and issues, and is finalized once. After
finalization any further mutation raises AttemptFinalizedError.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

SOURCE_FILE_UPLOAD = "file-upload"
SOURCE_REMOTE_URL = "remote-url"

STATUS_RUNNING = "running"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_PARTIAL = "partial"

# Header-level issue codes
HEADER_UNKNOWN = "HEADER_UNKNOWN"
HEADER_MISSING = "HEADER_MISSING"
HEADER_DUPLICATE = "HEADER_DUPLICATE"
NO_DATA = "NO_DATA"

# Row-level issue codes
UNIQUE_ID_GENERATED = "UNIQUE_ID_GENERATED"
UNIQUE_ID_MISSING = "UNIQUE_ID_MISSING"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
EMAIL_INVALID = "EMAIL_INVALID"
URL_INVALID = "URL_INVALID"
DATE_PARSE = "DATE_PARSE"
PHONE_SHORT = "PHONE_SHORT"
BOOLEAN_INVALID = "BOOLEAN_INVALID"
ROW_PROCESSING_ERROR = "ROW_PROCESSING_ERROR"
PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"

# Reconciliation issue codes (never produced by a dry run)
INSERT_ERROR = "INSERT_ERROR"
UPDATE_ERROR = "UPDATE_ERROR"
UPSERT_ISSUE_CODES = frozenset({INSERT_ERROR, UPDATE_ERROR})

# Maps canonical field name -> cleaned value
CanonicalRow = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttemptFinalizedError(RuntimeError):
    """Raised when a finalized ImportAttempt is mutated."""


@dataclass(frozen=True)
class ImportIssue:
    severity: str
    code: str
    message: str
    row_number: Optional[int] = None
    field: Optional[str] = None
    raw_row: Optional[Dict[str, str]] = None
    attempt_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == SEVERITY_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "rawRowData": self.raw_row,
        }


def error(code: str, message: str, **kwargs) -> ImportIssue:
    return ImportIssue(SEVERITY_ERROR, code, message, **kwargs)


def warning(code: str, message: str, **kwargs) -> ImportIssue:
    return ImportIssue(SEVERITY_WARNING, code, message, **kwargs)


@dataclass
class RowOutcome:
    """Result of validating one data row."""
    row_number: int
    row: Optional[CanonicalRow]
    issues: List[ImportIssue]
    raw: Dict[str, str]

    @property
    def rejected(self) -> bool:
        return self.row is None

    @property
    def valid(self) -> bool:
        return self.row is not None and not any(issue.is_error for issue in self.issues)


@dataclass
class ImportAttempt:
    entity_type: str
    source_kind: str
    source_locator: Optional[str] = None
    file_name: Optional[str] = None
    dry_run: bool = False
    user_id: Optional[str] = None
    correlation_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = STATUS_RUNNING
    total_rows: int = 0
    valid_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    skipped_rows: int = 0
    # Distinct store records written by this attempt
    written_record_ids: Set[str] = field(default_factory=set)
    issues: List[ImportIssue] = field(default_factory=list)
    sample_rows: List[Dict[str, str]] = field(default_factory=list)
    error_summary: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("completed_at") is not None:
            raise AttemptFinalizedError(f"Import attempt {self.__dict__.get('id')} is already finalized")
        super().__setattr__(name, value)

    @property
    def finalized(self) -> bool:
        return self.completed_at is not None

    @property
    def upserted_rows(self) -> int:
        return len(self.written_record_ids)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.is_error)

    @property
    def warnings_count(self) -> int:
        return sum(1 for issue in self.issues if not issue.is_error)

    def add_issue(self, issue: ImportIssue) -> ImportIssue:
        if self.finalized:
            raise AttemptFinalizedError(f"Import attempt {self.id} is already finalized")
        owned = replace(issue, attempt_id=self.id)
        self.issues.append(owned)
        return owned

    def add_issues(self, issues: List[ImportIssue]) -> None:
        for issue in issues:
            self.add_issue(issue)

    def record_write(self, action: str, record_id: str) -> None:
        """Count an insert or update of one store record."""
        if self.finalized:
            raise AttemptFinalizedError(f"Import attempt {self.id} is already finalized")
        if action == "inserted":
            self.inserted_rows += 1
        else:
            self.updated_rows += 1
        self.written_record_ids.add(record_id)

    def resolve_status(self) -> str:
        if self.error_count == 0:
            return STATUS_SUCCEEDED
        if self.upserted_rows == 0:
            return STATUS_FAILED
        return STATUS_PARTIAL

    def finalize(self, error_summary: Optional[str] = None, status: Optional[str] = None) -> str:
        """
        Close the attempt and return its final status.

        Args:
            error_summary: Overrides the default summary (first error message).
            status: Forces a status, used when the run aborted before completion.
        """
        if self.finalized:
            raise AttemptFinalizedError(f"Import attempt {self.id} is already finalized")

        if error_summary is None:
            first_error = next((issue for issue in self.issues if issue.is_error), None)
            error_summary = first_error.message if first_error else None

        self.status = status or self.resolve_status()
        self.error_summary = error_summary
        # completed_at last: it arms the mutation guard
        self.completed_at = _utcnow()
        return self.status
