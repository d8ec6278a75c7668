"""
Import pipeline: acquisition output -> header mapping -> row validation ->
optional reconciliation, sequential over one payload in input order.

The pipeline owns exactly one ImportAttempt per run and finalizes it once,
including when the run aborts with an ImportPipelineError.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from crm_import.core.errors import ImportPipelineError
from .entities import EntitySchema
from .events import (
    HEADERS_MAPPED,
    IMPORT_DIAGNOSTICS,
    IMPORT_FINISHED,
    IMPORT_STARTED,
    IMPORT_TIMEOUT,
    ROW_FAILED,
    ImportEventEmitter,
)
from .headers import HeaderMapping, map_headers
from .models import (
    NO_DATA,
    PROCESSING_TIMEOUT,
    ROW_PROCESSING_ERROR,
    STATUS_FAILED,
    ImportAttempt,
    error,
)
from .processors.csv_processor import parse_csv
from .reconcile import ReconcileError, reconcile
from .rows import build_raw_row, validate_row
from .sources import SourcePayload
from .validators import parse_us_date

logger = logging.getLogger(__name__)

DIAGNOSTIC_LICENSE_SAMPLE = 10


@dataclass
class ImportOutcome:
    attempt: ImportAttempt
    headers: List[str]
    normalized_headers: List[str]
    diagnostics: Dict[str, Any]


def start_attempt(
    payload: SourcePayload,
    schema: EntitySchema,
    dry_run: bool,
    user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> ImportAttempt:
    """Create the running attempt for one pipeline invocation."""
    return ImportAttempt(
        entity_type=schema.entity_type,
        source_kind=payload.source_kind,
        source_locator=payload.locator,
        file_name=payload.file_name,
        dry_run=dry_run,
        user_id=user_id,
        correlation_id=correlation_id,
    )


def build_diagnostics(schema: EntitySchema, mapping: HeaderMapping, rows: List[List[str]]) -> Dict[str, Any]:
    """
    Summarize a parsed file for operators: unique-id coverage, the first
    license numbers seen, and how the first date value parses.
    """
    columns = mapping.mapped_fields
    diagnostics: Dict[str, Any] = {"entityType": schema.entity_type, "totalRows": len(rows)}

    def _column_values(index: int) -> List[str]:
        return [cells[index] for cells in rows if index < len(cells) and cells[index]]

    if schema.unique_field and schema.unique_field in columns:
        with_id = len(_column_values(columns[schema.unique_field]))
        diagnostics["uniqueIdCoverage"] = {"withId": with_id, "total": len(rows)}

    if "license_number" in columns:
        diagnostics["licenseNumbers"] = _column_values(columns["license_number"])[:DIAGNOSTIC_LICENSE_SAMPLE]

    date_fields = [spec.name for spec in schema.fields if spec.kind == "date" and spec.name in columns]
    if date_fields:
        values = _column_values(columns[date_fields[0]])
        if values:
            check = parse_us_date(values[0])
            diagnostics["exampleDate"] = {"field": date_fields[0], "raw": values[0], "parsed": check.value}

    return diagnostics


def run_import(
    payload: SourcePayload,
    schema: EntitySchema,
    attempt: ImportAttempt,
    store=None,
    emitter: Optional[ImportEventEmitter] = None,
    sample_size: int = 20,
    processing_timeout: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ImportOutcome:
    """
    Run the pipeline for one payload and finalize its attempt.

    Args:
        payload: Normalized CSV bytes plus source metadata
        schema: Target entity descriptor
        attempt: Running attempt created by start_attempt
        store: Record store used for reconciliation; unused on dry runs
        emitter: Receives structured pipeline events
        sample_size: Number of leading raw rows kept on the attempt
        processing_timeout: Wall-clock budget in seconds for row processing
        clock: Monotonic clock, replaceable in tests

    Returns:
        ImportOutcome with the finalized attempt and header information

    Raises:
        ImportPipelineError: The payload could not be parsed. The attempt is
            finalized as failed before the error propagates.
    """
    if not attempt.dry_run and store is None:
        raise ValueError("A record store is required for non-dry-run imports")

    emitter = emitter or ImportEventEmitter()
    correlation_id = attempt.correlation_id
    emitter.emit(
        IMPORT_STARTED,
        correlation_id,
        attemptId=attempt.id,
        entityType=schema.entity_type,
        sourceKind=attempt.source_kind,
        dryRun=attempt.dry_run,
        sizeBytes=len(payload.content),
    )

    try:
        parsed = parse_csv(payload.content)
    except ImportPipelineError as exc:
        attempt.finalize(error_summary=exc.message, status=STATUS_FAILED)
        emitter.emit(IMPORT_FINISHED, correlation_id, attemptId=attempt.id, status=attempt.status, code=exc.code)
        raise

    mapping = map_headers(parsed.headers, schema)
    attempt.add_issues(mapping.issues)
    emitter.emit(
        HEADERS_MAPPED,
        correlation_id,
        headers=mapping.headers,
        mappedFields=sorted(mapping.mapped_fields),
        headerIssues=len(mapping.issues),
    )

    rows = parsed.rows
    attempt.total_rows = len(rows)
    attempt.sample_rows = [build_raw_row(parsed.headers, cells) for cells in rows[:sample_size]]
    if not rows:
        attempt.add_issue(error(NO_DATA, "CSV contains a header row but no data rows"))

    started = clock()
    for index, cells in enumerate(rows):
        # +2: header row and 1-based numbering
        row_number = index + 2

        if processing_timeout is not None and clock() - started > processing_timeout:
            remaining = len(rows) - index
            attempt.skipped_rows += remaining
            attempt.add_issue(
                error(
                    PROCESSING_TIMEOUT,
                    f"Processing exceeded {processing_timeout:g}s; {remaining} rows were not processed",
                    row_number=row_number,
                )
            )
            emitter.emit(IMPORT_TIMEOUT, correlation_id, rowNumber=row_number, remainingRows=remaining)
            break

        try:
            outcome = validate_row(schema, mapping, cells, row_number)
        except Exception as exc:
            logger.exception("Row %d failed validation", row_number)
            attempt.add_issue(
                error(
                    ROW_PROCESSING_ERROR,
                    f"Error processing row: {exc}",
                    row_number=row_number,
                    raw_row=build_raw_row(parsed.headers, cells),
                )
            )
            attempt.skipped_rows += 1
            emitter.emit(ROW_FAILED, correlation_id, rowNumber=row_number, code=ROW_PROCESSING_ERROR)
            continue

        attempt.add_issues(outcome.issues)
        if outcome.rejected:
            attempt.skipped_rows += 1
            continue
        if outcome.valid:
            attempt.valid_rows += 1
        if attempt.dry_run:
            continue

        try:
            result = reconcile(schema, outcome.row, store)
        except ReconcileError as exc:
            attempt.add_issue(error(exc.code, exc.message, row_number=row_number, raw_row=outcome.raw))
            attempt.skipped_rows += 1
            emitter.emit(ROW_FAILED, correlation_id, rowNumber=row_number, code=exc.code)
            continue
        attempt.record_write(result.action, result.record_id)

    diagnostics = build_diagnostics(schema, mapping, rows)
    emitter.emit(IMPORT_DIAGNOSTICS, correlation_id, **diagnostics)

    attempt.finalize()
    emitter.emit(
        IMPORT_FINISHED,
        correlation_id,
        attemptId=attempt.id,
        status=attempt.status,
        totalRows=attempt.total_rows,
        validRows=attempt.valid_rows,
        upsertedRows=attempt.upserted_rows,
        skippedRows=attempt.skipped_rows,
        errorCount=attempt.error_count,
        warningsCount=attempt.warnings_count,
    )
    return ImportOutcome(
        attempt=attempt,
        headers=mapping.headers,
        normalized_headers=mapping.normalized_headers,
        diagnostics=diagnostics,
    )
