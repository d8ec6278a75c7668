from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportUrlRequest(CamelModel):
    """JSON body for importing from a spreadsheet-sharing or CSV URL"""
    url: Optional[str] = None
    google_sheets_url: Optional[str] = None
    file_name: Optional[str] = None

    @property
    def effective_url(self) -> Optional[str]:
        return (self.url or self.google_sheets_url or "").strip() or None


class ImportIssueOut(CamelModel):
    row_number: Optional[int] = None
    severity: str
    code: str
    message: str
    field: Optional[str] = None
    raw_row_data: Optional[Dict[str, Any]] = None


class ImportResultResponse(CamelModel):
    """Result of a validate or commit request"""
    ok: bool = True
    correlation_id: str
    action: str
    attempt_id: Optional[str] = None
    status: str
    total_rows: int
    valid_rows: int
    upserted_rows: int
    inserted_rows: int
    updated_rows: int
    skipped_rows: int
    error_count: int
    warnings_count: int
    headers: List[str]
    normalized_headers: List[str]
    issues: List[ImportIssueOut]
    issues_truncated: bool = False
    sample_data: List[Dict[str, Any]] = Field(default_factory=list)


class ImportHealthResponse(CamelModel):
    ok: bool = True
    entity_type: str
    actions: List[str]
    timestamp: datetime
    correlation_id: str


class ImportAttemptOut(CamelModel):
    """Single persisted import attempt"""
    id: str
    user_id: Optional[str] = None
    correlation_id: Optional[str] = None
    table_name: str
    source_type: str
    source_url: Optional[str] = None
    file_name: Optional[str] = None
    dry_run: bool = False
    status: str
    total_rows: int = 0
    valid_rows: int = 0
    upserted_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    skipped_rows: int = 0
    error_count: int = 0
    warnings_count: int = 0
    error_summary: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ImportAttemptIssueOut(CamelModel):
    row_number: Optional[int] = None
    severity: str
    code: str
    message: str
    field: Optional[str] = None
    raw_row_json: Optional[Dict[str, Any]] = None


class ImportAttemptListResponse(CamelModel):
    ok: bool = True
    attempts: List[ImportAttemptOut]
    total_count: int
    limit: int
    offset: int


class ImportAttemptDetailResponse(CamelModel):
    ok: bool = True
    attempt: ImportAttemptOut
    issues: List[ImportAttemptIssueOut]
