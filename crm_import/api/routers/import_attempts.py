"""
Import attempt history endpoints for reviewing committed imports.
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from crm_import.api.schemas.imports import (
    ImportAttemptDetailResponse,
    ImportAttemptIssueOut,
    ImportAttemptListResponse,
    ImportAttemptOut,
)
from crm_import.db.session import get_db
from crm_import.domain.imports.history import (
    attempt_record_to_dict,
    generate_issue_report,
    get_attempt_record,
    issue_record_to_dict,
    list_attempt_records,
)

router = APIRouter(prefix="/import-attempts", tags=["import-attempts"])


@router.get("", response_model=ImportAttemptListResponse)
async def list_import_attempts(
    table_name: Optional[str] = None,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """
    List import attempts, newest first.

    Parameters:
    - table_name: Filter by entity type (contacts, companies, licenses)
    - status: Filter by status ('succeeded', 'failed', 'partial', 'running')
    - user_id: Filter by requesting user
    - limit: Maximum number of records to return (default: 50)
    - offset: Number of records to skip for pagination (default: 0)
    """
    records, total = list_attempt_records(
        db,
        table_name=table_name,
        status=status,
        user_id=user_id,
        limit=limit,
        offset=offset,
    )
    return ImportAttemptListResponse(
        attempts=[ImportAttemptOut(**attempt_record_to_dict(record)) for record in records],
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{attempt_id}", response_model=ImportAttemptDetailResponse)
async def get_import_attempt(attempt_id: str, db: Session = Depends(get_db)):
    """Get one attempt with all of its issues."""
    record = get_attempt_record(db, attempt_id)
    return ImportAttemptDetailResponse(
        attempt=ImportAttemptOut(**attempt_record_to_dict(record)),
        issues=[ImportAttemptIssueOut(**issue_record_to_dict(issue)) for issue in record.issues],
    )


@router.get("/{attempt_id}/issues.csv")
async def download_issue_report(attempt_id: str, db: Session = Depends(get_db)):
    """Download the attempt's issues as a CSV report."""
    record = get_attempt_record(db, attempt_id)
    issues = [issue_record_to_dict(issue) for issue in record.issues]
    filename = f"import-issues-{record.table_name}-{record.id}.csv"
    return StreamingResponse(
        generate_issue_report(issues),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{attempt_id}/sample.json")
async def download_sample(attempt_id: str, db: Session = Depends(get_db)):
    """Download the sampled raw rows recorded for the attempt."""
    record = get_attempt_record(db, attempt_id)
    filename = f"import-sample-{record.table_name}-{record.id}.json"
    return Response(
        content=json.dumps(record.sample_json or [], indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
