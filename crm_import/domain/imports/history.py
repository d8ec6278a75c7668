"""
Import attempt history: persistence of committed attempts and their issues,
plus the issue report and sample exports served to operators.
"""
import csv
import json
import logging
from io import StringIO
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_import.core.errors import DB_ERROR, NOT_FOUND, ImportPipelineError
from crm_import.db.models import ImportAttemptRecord, ImportIssueRecord
from .models import ImportAttempt, ImportIssue

logger = logging.getLogger(__name__)

ISSUE_REPORT_COLUMNS = ["Row", "Severity", "Code", "Message", "Field", "Raw Data"]


def create_attempt_record(db: Session, attempt: ImportAttempt) -> ImportAttemptRecord:
    """
    Persist a running attempt before any row is processed.

    Raises:
        ImportPipelineError: DB_ERROR (500) if the store rejects the insert.
    """
    record = ImportAttemptRecord(
        id=attempt.id,
        user_id=attempt.user_id,
        correlation_id=attempt.correlation_id,
        table_name=attempt.entity_type,
        source_type=attempt.source_kind,
        source_url=attempt.source_locator,
        file_name=attempt.file_name,
        dry_run=attempt.dry_run,
        status=attempt.status,
        created_at=attempt.created_at,
    )
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to create import attempt %s: %s", attempt.id, exc)
        raise ImportPipelineError(DB_ERROR, "Failed to create import attempt", 500, str(exc)) from exc

    logger.info("Created import attempt %s for %s", attempt.id, attempt.entity_type)
    return record


def _issue_record(issue: ImportIssue, attempt_id: str) -> ImportIssueRecord:
    return ImportIssueRecord(
        attempt_id=attempt_id,
        row_number=issue.row_number,
        severity=issue.severity,
        code=issue.code,
        message=issue.message,
        field=issue.field,
        raw_row_json=issue.raw_row,
    )


def save_attempt_outcome(db: Session, attempt: ImportAttempt) -> ImportAttemptRecord:
    """
    Write the final counters, status and issues of a finalized attempt.

    Raises:
        ImportPipelineError: DB_ERROR (500) if the update fails.
    """
    try:
        # Row writes roll back on failure, which can expire loaded instances
        record = db.get(ImportAttemptRecord, attempt.id)
        if record is None:
            raise ImportPipelineError(NOT_FOUND, f"Import attempt {attempt.id} not found", 404)

        record.status = attempt.status
        record.total_rows = attempt.total_rows
        record.valid_rows = attempt.valid_rows
        record.upserted_rows = attempt.upserted_rows
        record.inserted_rows = attempt.inserted_rows
        record.updated_rows = attempt.updated_rows
        record.skipped_rows = attempt.skipped_rows
        record.error_count = attempt.error_count
        record.warnings_count = attempt.warnings_count
        record.error_summary = attempt.error_summary
        record.sample_json = attempt.sample_rows
        record.finished_at = attempt.completed_at

        db.add_all([_issue_record(issue, attempt.id) for issue in attempt.issues])
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to update import attempt %s: %s", attempt.id, exc)
        raise ImportPipelineError(DB_ERROR, "Failed to update import attempt", 500, str(exc)) from exc

    logger.info(
        "Import attempt %s finished: status=%s rows=%d upserted=%d errors=%d warnings=%d",
        attempt.id,
        attempt.status,
        attempt.total_rows,
        attempt.upserted_rows,
        attempt.error_count,
        attempt.warnings_count,
    )
    return record


def get_attempt_record(db: Session, attempt_id: str) -> ImportAttemptRecord:
    record = db.query(ImportAttemptRecord).filter(ImportAttemptRecord.id == attempt_id).first()
    if record is None:
        raise ImportPipelineError(NOT_FOUND, f"Import attempt {attempt_id} not found", 404)
    return record


def list_attempt_records(
    db: Session,
    table_name: Optional[str] = None,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[ImportAttemptRecord], int]:
    """
    List attempts, newest first.

    Args:
        table_name: Filter by entity type
        status: Filter by final status
        user_id: Filter by requesting user
        limit: Maximum number of records to return
        offset: Number of records to skip

    Returns:
        (records, total matching count)
    """
    query = db.query(ImportAttemptRecord)
    if table_name:
        query = query.filter(ImportAttemptRecord.table_name == table_name)
    if status:
        query = query.filter(ImportAttemptRecord.status == status)
    if user_id:
        query = query.filter(ImportAttemptRecord.user_id == user_id)

    total = query.with_entities(func.count(ImportAttemptRecord.id)).scalar() or 0
    records = (
        query.order_by(ImportAttemptRecord.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return records, total


def attempt_record_to_dict(record: ImportAttemptRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "correlation_id": record.correlation_id,
        "table_name": record.table_name,
        "source_type": record.source_type,
        "source_url": record.source_url,
        "file_name": record.file_name,
        "dry_run": record.dry_run,
        "status": record.status,
        "total_rows": record.total_rows,
        "valid_rows": record.valid_rows,
        "upserted_rows": record.upserted_rows,
        "inserted_rows": record.inserted_rows,
        "updated_rows": record.updated_rows,
        "skipped_rows": record.skipped_rows,
        "error_count": record.error_count,
        "warnings_count": record.warnings_count,
        "error_summary": record.error_summary,
        "created_at": record.created_at,
        "finished_at": record.finished_at,
    }


def issue_record_to_dict(record: ImportIssueRecord) -> Dict[str, Any]:
    return {
        "row_number": record.row_number,
        "severity": record.severity,
        "code": record.code,
        "message": record.message,
        "field": record.field,
        "raw_row_json": record.raw_row_json,
    }


def generate_issue_report(issues: Iterable[Dict[str, Any]]) -> Iterator[str]:
    """
    Stream an issue report as CSV, one chunk per row.

    Args:
        issues: Dicts shaped like issue_record_to_dict output

    Yields:
        CSV data chunks as strings
    """
    buffer = StringIO()
    writer = csv.writer(buffer)

    writer.writerow(ISSUE_REPORT_COLUMNS)
    yield buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)

    for issue in issues:
        writer.writerow([
            issue.get("row_number") or "",
            issue.get("severity"),
            issue.get("code"),
            issue.get("message"),
            issue.get("field") or "",
            json.dumps(issue.get("raw_row_json") or {}),
        ])
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
