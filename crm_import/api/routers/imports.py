"""
Import endpoints: validate (dry run) and commit CSV imports for CRM entities.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from crm_import.api.dependencies import get_correlation_id, get_event_emitter, get_import_limits
from crm_import.api.schemas.imports import (
    ImportHealthResponse,
    ImportIssueOut,
    ImportResultResponse,
    ImportUrlRequest,
)
from crm_import.core.errors import (
    FILE_MISSING,
    METHOD_NOT_ALLOWED,
    NOT_FOUND,
    UNSUPPORTED_CONTENT_TYPE,
    URL_MISSING,
    ImportPipelineError,
)
from crm_import.core.security import get_current_user_id, get_optional_user_id, security
from crm_import.db.session import get_db
from crm_import.domain.imports.entities import EntitySchema, get_entity_schema
from crm_import.domain.imports.history import create_attempt_record, save_attempt_outcome
from crm_import.domain.imports.pipeline import ImportOutcome, run_import, start_attempt
from crm_import.domain.imports.reconcile import SqlRecordStore
from crm_import.domain.imports.sources import SourcePayload, acquire_upload, fetch_csv_from_url

router = APIRouter(prefix="/imports", tags=["imports"])

logger = logging.getLogger(__name__)

ACTION_VALIDATE = "validate"
ACTION_COMMIT = "commit"
IMPORT_ACTIONS = (ACTION_VALIDATE, ACTION_COMMIT)


def _resolve_action(action: str) -> str:
    if action not in IMPORT_ACTIONS:
        raise ImportPipelineError(NOT_FOUND, f"Unknown import action: {action}", 404)
    return action


async def read_source_payload(request: Request, limits: dict) -> SourcePayload:
    """
    Turn the request body into a normalized CSV payload.

    Accepts multipart/form-data with a ``file`` part, or a JSON body with
    ``url``/``googleSheetsUrl`` and an optional ``fileName``.
    """
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()

    if media_type == "multipart/form-data":
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise ImportPipelineError(FILE_MISSING, "No CSV file uploaded")
        declared_size = getattr(upload, "size", None)
        if declared_size is not None and declared_size > limits["max_bytes"]:
            # Reject before reading the body into memory
            return acquire_upload(b"", upload.filename, declared_size, upload.content_type, limits["max_bytes"])
        content = await upload.read()
        return acquire_upload(
            content,
            file_name=upload.filename,
            declared_size=declared_size,
            content_type=upload.content_type,
            max_bytes=limits["max_bytes"],
        )

    if media_type == "application/json":
        try:
            body = ImportUrlRequest.model_validate(await request.json())
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ImportPipelineError(URL_MISSING, "Request body must be a JSON object with a url", 400) from exc
        return await run_in_threadpool(
            fetch_csv_from_url,
            body.effective_url,
            body.file_name,
            limits["fetch_timeout"],
            limits["max_bytes"],
        )

    raise ImportPipelineError(
        UNSUPPORTED_CONTENT_TYPE,
        "Use multipart/form-data with a file, or application/json with a url",
        415,
    )


def build_result_response(
    outcome: ImportOutcome,
    action: str,
    correlation_id: str,
    issue_limit: int,
    attempt_id: Optional[str] = None,
) -> ImportResultResponse:
    attempt = outcome.attempt
    issues = attempt.issues[:issue_limit]
    return ImportResultResponse(
        correlation_id=correlation_id,
        action=action,
        attempt_id=attempt_id,
        status=attempt.status,
        total_rows=attempt.total_rows,
        valid_rows=attempt.valid_rows,
        upserted_rows=attempt.upserted_rows,
        inserted_rows=attempt.inserted_rows,
        updated_rows=attempt.updated_rows,
        skipped_rows=attempt.skipped_rows,
        error_count=attempt.error_count,
        warnings_count=attempt.warnings_count,
        headers=outcome.headers,
        normalized_headers=outcome.normalized_headers,
        issues=[ImportIssueOut(**issue.to_dict()) for issue in issues],
        issues_truncated=len(attempt.issues) > issue_limit,
        sample_data=attempt.sample_rows,
    )


def _commit(
    db: Session,
    payload: SourcePayload,
    schema: EntitySchema,
    user_id: str,
    correlation_id: str,
    limits: dict,
) -> ImportOutcome:
    attempt = start_attempt(payload, schema, dry_run=False, user_id=user_id, correlation_id=correlation_id)
    create_attempt_record(db, attempt)
    try:
        outcome = run_import(
            payload,
            schema,
            attempt,
            store=SqlRecordStore(db),
            emitter=get_event_emitter(),
            sample_size=limits["sample_size"],
            processing_timeout=limits["processing_timeout"],
        )
    except ImportPipelineError:
        # run_import finalized the attempt as failed; persist that outcome
        save_attempt_outcome(db, attempt)
        raise
    save_attempt_outcome(db, attempt)
    return outcome


def _validate(
    payload: SourcePayload,
    schema: EntitySchema,
    user_id: Optional[str],
    correlation_id: str,
    limits: dict,
) -> ImportOutcome:
    attempt = start_attempt(payload, schema, dry_run=True, user_id=user_id, correlation_id=correlation_id)
    return run_import(
        payload,
        schema,
        attempt,
        emitter=get_event_emitter(),
        sample_size=limits["sample_size"],
        processing_timeout=limits["processing_timeout"],
    )


@router.get("/{entity}/health", response_model=ImportHealthResponse)
async def import_health(entity: str, request: Request):
    """Liveness check for the import endpoints of one entity type."""
    schema = get_entity_schema(entity)
    return ImportHealthResponse(
        entity_type=schema.entity_type,
        actions=list(IMPORT_ACTIONS),
        timestamp=datetime.now(timezone.utc),
        correlation_id=get_correlation_id(request),
    )


@router.get("/{entity}/{action}")
async def import_action_get(entity: str, action: str):
    get_entity_schema(entity)
    _resolve_action(action)
    raise ImportPipelineError(METHOD_NOT_ALLOWED, f"Use POST for /imports/{entity}/{action}", 405)


@router.post("/{entity}/{action}", response_model=ImportResultResponse)
async def import_action(
    entity: str,
    action: str,
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
):
    """
    Validate or commit a CSV import.

    Parameters:
    - entity: contacts, companies or licenses
    - action: 'validate' runs a dry run; 'commit' upserts rows and records
      the attempt (requires a bearer token)
    - body: multipart/form-data with a ``file`` part, or JSON with
      ``url``/``googleSheetsUrl`` and optional ``fileName``

    Returns:
    - Row counters, issues (capped), headers and a sample of the parsed rows
    """
    correlation_id = get_correlation_id(request)
    schema = get_entity_schema(entity)
    action = _resolve_action(action)
    limits = get_import_limits()

    if action == ACTION_COMMIT:
        user_id = get_current_user_id(credentials)
    else:
        user_id = get_optional_user_id(credentials)

    logger.info(
        "[%s] Received %s request for %s (user=%s)",
        correlation_id,
        action,
        schema.entity_type,
        user_id or "anonymous",
    )

    payload = await read_source_payload(request, limits)

    if action == ACTION_COMMIT:
        outcome = await run_in_threadpool(_commit, db, payload, schema, user_id, correlation_id, limits)
        attempt_id = outcome.attempt.id
    else:
        outcome = await run_in_threadpool(_validate, payload, schema, user_id, correlation_id, limits)
        attempt_id = None

    return build_result_response(outcome, action, correlation_id, limits["issue_limit"], attempt_id)
