"""
End-to-end tests for the import pipeline using the in-memory record store.
"""
import itertools
from unittest.mock import patch

import pytest

from crm_import.core.errors import CSV_EMPTY, ImportPipelineError
from crm_import.domain.imports import pipeline
from crm_import.domain.imports.entities import COMPANIES, CONTACTS, LICENSES
from crm_import.domain.imports.events import (
    IMPORT_DIAGNOSTICS,
    IMPORT_FINISHED,
    IMPORT_STARTED,
    IMPORT_TIMEOUT,
)
from crm_import.domain.imports.models import (
    EMAIL_INVALID,
    HEADER_MISSING,
    INSERT_ERROR,
    NO_DATA,
    PROCESSING_TIMEOUT,
    ROW_PROCESSING_ERROR,
    SOURCE_FILE_UPLOAD,
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCEEDED,
    UNIQUE_ID_MISSING,
    UPSERT_ISSUE_CODES,
    AttemptFinalizedError,
)
from crm_import.domain.imports.pipeline import run_import, start_attempt
from crm_import.domain.imports.reconcile import InMemoryRecordStore, RecordStoreError
from crm_import.domain.imports.sources import SourcePayload, normalize_csv_bytes


def _payload(text):
    return SourcePayload(
        content=normalize_csv_bytes(text.encode("utf-8")),
        source_kind=SOURCE_FILE_UPLOAD,
        locator="test.csv",
        file_name="test.csv",
    )


def _run(text, schema=CONTACTS, dry_run=True, store=None, emitter=None, **kwargs):
    payload = _payload(text)
    attempt = start_attempt(payload, schema, dry_run=dry_run, correlation_id="corr-1")
    return run_import(payload, schema, attempt, store=store, emitter=emitter, **kwargs)


class _FailingInsertStore(InMemoryRecordStore):
    def __init__(self, failing_license):
        super().__init__()
        self.failing_license = failing_license

    def insert(self, table, values):
        if values.get("license_number") == self.failing_license:
            raise RecordStoreError("duplicate key value violates unique constraint")
        return super().insert(table, values)


class TestScenarios:
    """Reference scenarios for the contacts pipeline."""

    def test_clean_single_row(self):
        outcome = _run("Contact Unique ID,Contact First Name,Contact Last Name\nCNT-1,Jane,Doe")
        attempt = outcome.attempt
        assert attempt.total_rows == 1
        assert attempt.valid_rows == 1
        assert attempt.error_count == 0
        assert attempt.warnings_count == 0
        assert attempt.status == STATUS_SUCCEEDED
        assert outcome.normalized_headers == ["contact_unique_id", "first_name", "last_name"]

    def test_name_email_file_reports_missing_id_and_bad_email(self):
        outcome = _run("Name,Email\nJane Doe,not-an-email")
        attempt = outcome.attempt
        row_codes = {issue.code: issue for issue in attempt.issues if issue.row_number == 2}
        assert row_codes[UNIQUE_ID_MISSING].severity == "error"
        assert row_codes[EMAIL_INVALID].severity == "warning"
        assert HEADER_MISSING in [issue.code for issue in attempt.issues]
        assert attempt.valid_rows == 0
        assert attempt.skipped_rows == 1
        assert attempt.status == STATUS_FAILED

    def test_duplicate_unique_id_updates_instead_of_inserting(self, memory_store):
        csv_text = (
            "Contact Unique ID,Contact First Name,Contact Last Name\n"
            "CNT-1,Jane,Doe\n"
            "CNT-1,Janet,Doe\n"
        )
        attempt = _run(csv_text, dry_run=False, store=memory_store).attempt

        assert attempt.inserted_rows == 1
        assert attempt.updated_rows == 1
        assert attempt.upserted_rows == 1
        assert attempt.status == STATUS_SUCCEEDED
        records = list(memory_store.tables["contacts"].values())
        assert len(records) == 1
        assert records[0]["first_name"] == "Janet"

    def test_company_licenses_are_kept_apart(self, memory_store):
        csv_text = "Company Name,License Number\nAcme,L-1\nAcme,L-2\n"
        attempt = _run(csv_text, schema=COMPANIES, dry_run=False, store=memory_store).attempt

        assert attempt.inserted_rows == 2
        assert attempt.updated_rows == 0
        records = sorted(memory_store.tables["companies"].values(), key=lambda record: record["license_number"])
        assert [record["license_number"] for record in records] == ["L-1", "L-2"]


class TestPipelineBehaviour:

    LICENSE_CSV = (
        "License Number,License State,Favorite Color\n"
        "L-1,Colorado,green\n"
        ",Texas,blue\n"
        "L-3,CA,red\n"
    )

    def test_dry_run_matches_commit_except_upsert_codes(self, memory_store):
        dry = _run(self.LICENSE_CSV, schema=LICENSES, dry_run=True).attempt
        committed = _run(self.LICENSE_CSV, schema=LICENSES, dry_run=False, store=memory_store).attempt

        def _codes(attempt):
            return [(i.row_number, i.code) for i in attempt.issues if i.code not in UPSERT_ISSUE_CODES]

        assert _codes(dry) == _codes(committed)
        for counter in ("total_rows", "valid_rows", "skipped_rows", "error_count", "warnings_count"):
            assert getattr(dry, counter) == getattr(committed, counter), counter
        assert dry.upserted_rows == 0
        assert committed.upserted_rows == 2
        assert committed.status == STATUS_PARTIAL
        assert len(memory_store.tables["licenses"]) == 2

    def test_row_numbers_include_header_offset_and_skip_blank_lines(self):
        attempt = _run("License Number\nL-1\n\n \nL-3\n", schema=LICENSES).attempt
        assert attempt.total_rows == 2
        assert attempt.error_count == 0

        attempt = _run("License Number,State\nL-1,CO\n,TX\n", schema=LICENSES).attempt
        [issue] = [issue for issue in attempt.issues if issue.is_error]
        assert issue.row_number == 3
        assert issue.raw_row == {"License Number": "", "State": "TX"}

    def test_header_only_file_reports_no_data(self):
        attempt = _run("License Number,State\n", schema=LICENSES).attempt
        assert attempt.total_rows == 0
        assert [issue.code for issue in attempt.issues] == [NO_DATA]
        assert attempt.status == STATUS_FAILED

    def test_empty_file_finalizes_attempt_as_failed(self):
        payload = _payload("\n\n")
        attempt = start_attempt(payload, LICENSES, dry_run=True)
        with pytest.raises(ImportPipelineError) as exc_info:
            run_import(payload, LICENSES, attempt)
        assert exc_info.value.code == CSV_EMPTY
        assert attempt.finalized
        assert attempt.status == STATUS_FAILED
        assert attempt.error_summary == exc_info.value.message

    def test_unexpected_row_error_is_contained(self):
        real_validate_row = pipeline.validate_row

        def flaky(schema, mapping, cells, row_number):
            if row_number == 3:
                raise RuntimeError("boom")
            return real_validate_row(schema, mapping, cells, row_number)

        with patch("crm_import.domain.imports.pipeline.validate_row", side_effect=flaky):
            attempt = _run("License Number\nL-1\nL-2\nL-3\n", schema=LICENSES).attempt

        [issue] = [issue for issue in attempt.issues if issue.code == ROW_PROCESSING_ERROR]
        assert issue.row_number == 3
        assert "boom" in issue.message
        assert issue.raw_row == {"License Number": "L-2"}
        assert attempt.valid_rows == 2
        assert attempt.skipped_rows == 1

    def test_insert_failure_is_recorded_and_batch_continues(self):
        store = _FailingInsertStore(failing_license="L-2")
        attempt = _run("License Number\nL-1\nL-2\nL-3\n", schema=LICENSES, dry_run=False, store=store).attempt

        [issue] = [issue for issue in attempt.issues if issue.code == INSERT_ERROR]
        assert issue.row_number == 3
        assert "duplicate key" in issue.message
        assert issue.raw_row == {"License Number": "L-2"}
        # valid is assessed before persistence
        assert attempt.valid_rows == 3
        assert attempt.upserted_rows == 2
        assert attempt.skipped_rows == 1
        assert attempt.status == STATUS_PARTIAL
        assert attempt.error_summary == issue.message

    def test_all_writes_failing_is_failed(self):
        store = _FailingInsertStore(failing_license="L-1")
        attempt = _run("License Number\nL-1\n", schema=LICENSES, dry_run=False, store=store).attempt
        assert attempt.upserted_rows == 0
        assert attempt.status == STATUS_FAILED

    def test_processing_timeout_skips_remaining_rows(self, emitter):
        ticks = itertools.chain([0, 0, 0], itertools.repeat(100))
        attempt = _run(
            "License Number\nL-1\nL-2\nL-3\n",
            schema=LICENSES,
            emitter=emitter,
            processing_timeout=10,
            clock=lambda: next(ticks),
        ).attempt

        [issue] = [issue for issue in attempt.issues if issue.code == PROCESSING_TIMEOUT]
        assert issue.row_number == 4
        assert attempt.valid_rows == 2
        assert attempt.skipped_rows == 1
        assert len(emitter.named(IMPORT_TIMEOUT)) == 1

    def test_sample_rows_capped(self):
        attempt = _run("License Number\nL-1\nL-2\nL-3\n", schema=LICENSES, sample_size=2).attempt
        assert attempt.sample_rows == [{"License Number": "L-1"}, {"License Number": "L-2"}]

    def test_commit_requires_store(self):
        payload = _payload("License Number\nL-1\n")
        attempt = start_attempt(payload, LICENSES, dry_run=False)
        with pytest.raises(ValueError):
            run_import(payload, LICENSES, attempt)

    def test_attempt_is_finalized_once(self):
        attempt = _run("License Number\nL-1\n", schema=LICENSES).attempt
        assert attempt.finalized
        with pytest.raises(AttemptFinalizedError):
            attempt.valid_rows = 99
        with pytest.raises(AttemptFinalizedError):
            attempt.finalize()


class TestPipelineEvents:

    def test_events_carry_correlation_id(self, emitter):
        _run("License Number\nL-1\n", schema=LICENSES, emitter=emitter)
        names = [event.event for event in emitter.events]
        assert names[0] == IMPORT_STARTED
        assert names[-1] == IMPORT_FINISHED
        assert all(event.correlation_id == "corr-1" for event in emitter.events)

    def test_diagnostics(self, emitter):
        csv_text = (
            "Contact Unique ID,Contact First Name,Contact Last Name,License Number,Contact Last Updated Date\n"
            "CNT-1,Jane,Doe,LIC-1,01/15/2024\n"
            ",John,Roe,LIC-2,\n"
        )
        _run(csv_text, emitter=emitter)
        [event] = emitter.named(IMPORT_DIAGNOSTICS)
        assert event.fields["uniqueIdCoverage"] == {"withId": 1, "total": 2}
        assert event.fields["licenseNumbers"] == ["LIC-1", "LIC-2"]
        assert event.fields["exampleDate"] == {
            "field": "contact_last_updated",
            "raw": "01/15/2024",
            "parsed": "2024-01-15",
        }

    def test_finished_event_counters(self, emitter):
        outcome = _run("License Number\nL-1\n,\n", schema=LICENSES, emitter=emitter)
        [event] = emitter.named(IMPORT_FINISHED)
        assert event.fields["status"] == outcome.attempt.status
        assert event.fields["totalRows"] == outcome.attempt.total_rows
        assert event.fields["errorCount"] == outcome.attempt.error_count
