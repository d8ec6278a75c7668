"""
Tests for the /imports/{entity}/{action} endpoints.
"""
from unittest.mock import MagicMock, patch

from crm_import.core.config import settings
from crm_import.db.models import Contact, ImportAttemptRecord
from crm_import.main import run

CONTACTS_CSV = (
    b"Contact Unique ID,Contact First Name,Contact Last Name,Contact Email\n"
    b"CNT-1,Jane,Doe,jane@example.com\n"
    b"CNT-1,Janet,Doe,not-an-email\n"
)


def _upload(content, filename="contacts.csv", content_type="text/csv"):
    return {"file": (filename, content, content_type)}


class TestValidateEndpoint:

    def test_validate_upload(self, client):
        response = client.post("/imports/contacts/validate", files=_upload(CONTACTS_CSV))

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["action"] == "validate"
        assert data["attemptId"] is None
        assert data["totalRows"] == 2
        assert data["validRows"] == 2
        assert data["upsertedRows"] == 0
        assert data["errorCount"] == 0
        assert data["warningsCount"] == 1
        assert data["normalizedHeaders"] == ["contact_unique_id", "first_name", "last_name", "email"]
        assert data["issues"][0]["code"] == "EMAIL_INVALID"
        assert data["issues"][0]["rowNumber"] == 3
        assert data["issues"][0]["rawRowData"]["Contact Email"] == "not-an-email"
        assert data["sampleData"][0]["Contact First Name"] == "Jane"
        assert response.headers["X-Correlation-ID"] == data["correlationId"]

    def test_validate_persists_nothing(self, client, db_session):
        client.post("/imports/contacts/validate", files=_upload(CONTACTS_CSV))
        assert db_session.query(Contact).count() == 0
        assert db_session.query(ImportAttemptRecord).count() == 0

    def test_validate_ignores_invalid_token(self, client):
        response = client.post(
            "/imports/contacts/validate",
            files=_upload(CONTACTS_CSV),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 200

    def test_incoming_correlation_id_is_echoed(self, client):
        response = client.post(
            "/imports/contacts/validate",
            files=_upload(CONTACTS_CSV),
            headers={"X-Correlation-ID": "req-42"},
        )
        assert response.headers["X-Correlation-ID"] == "req-42"
        assert response.json()["correlationId"] == "req-42"

    def test_issues_are_capped(self, client, monkeypatch):
        monkeypatch.setattr(settings, "import_issue_response_limit", 2)
        rows = b"".join(b"CNT-%d,First,Last,bad-email\n" % i for i in range(5))
        content = b"Contact Unique ID,Contact First Name,Contact Last Name,Contact Email\n" + rows

        data = client.post("/imports/contacts/validate", files=_upload(content)).json()

        assert data["warningsCount"] == 5
        assert len(data["issues"]) == 2
        assert data["issuesTruncated"] is True

    @patch("crm_import.domain.imports.sources.requests.get")
    def test_validate_google_sheets_url(self, mock_get, client):
        response_mock = MagicMock()
        response_mock.status_code = 200
        response_mock.headers = {"Content-Type": "text/csv"}
        response_mock.iter_content.return_value = [b"License Number,License State\nL-1,Colorado\n"]
        mock_get.return_value = response_mock

        response = client.post(
            "/imports/licenses/validate",
            json={
                "googleSheetsUrl": "https://docs.google.com/spreadsheets/d/sheet123/edit#gid=9",
                "fileName": "licenses",
            },
        )

        assert response.status_code == 200
        assert response.json()["validRows"] == 1
        assert mock_get.call_args[0][0] == "https://docs.google.com/spreadsheets/d/sheet123/export?format=csv&gid=9"


class TestRequestErrors:

    def _assert_error(self, response, status_code, code):
        assert response.status_code == status_code
        body = response.json()
        assert body["ok"] is False
        assert body["code"] == code
        assert body["correlationId"] == response.headers["X-Correlation-ID"]

    def test_oversized_upload_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "import_max_file_size_mb", 1)
        content = b"License Number\n" + b"L-123456789\n" * (200 * 1024)
        response = client.post("/imports/licenses/validate", files=_upload(content))
        self._assert_error(response, 413, "PAYLOAD_TOO_LARGE")

    def test_missing_file_part(self, client):
        response = client.post("/imports/contacts/validate", files={"other": ("x.csv", b"a\n", "text/csv")})
        self._assert_error(response, 400, "FILE_MISSING")

    def test_missing_url(self, client):
        response = client.post("/imports/contacts/validate", json={"fileName": "x.csv"})
        self._assert_error(response, 400, "URL_MISSING")

    def test_unsupported_body_type(self, client):
        response = client.post(
            "/imports/contacts/validate",
            content=b"a,b\n1,2\n",
            headers={"Content-Type": "text/csv"},
        )
        self._assert_error(response, 415, "UNSUPPORTED_CONTENT_TYPE")

    def test_non_csv_upload(self, client):
        response = client.post(
            "/imports/contacts/validate",
            files=_upload(b"%PDF-1.4", filename="x.pdf", content_type="application/pdf"),
        )
        self._assert_error(response, 415, "UNSUPPORTED_CONTENT_TYPE")

    def test_empty_csv(self, client):
        response = client.post("/imports/contacts/validate", files=_upload(b"\n\n"))
        self._assert_error(response, 400, "CSV_EMPTY")

    def test_unknown_entity(self, client):
        response = client.post("/imports/vendors/validate", files=_upload(CONTACTS_CSV))
        self._assert_error(response, 404, "NOT_FOUND")

    def test_unknown_action(self, client):
        response = client.post("/imports/contacts/destroy", files=_upload(CONTACTS_CSV))
        self._assert_error(response, 404, "NOT_FOUND")

    def test_get_on_action_not_allowed(self, client):
        self._assert_error(client.get("/imports/contacts/validate"), 405, "METHOD_NOT_ALLOWED")
        self._assert_error(client.get("/imports/contacts/commit"), 405, "METHOD_NOT_ALLOWED")

    def test_commit_requires_token(self, client):
        response = client.post("/imports/contacts/commit", files=_upload(CONTACTS_CSV))
        self._assert_error(response, 401, "UNAUTHORIZED")

    def test_commit_rejects_invalid_token(self, client):
        response = client.post(
            "/imports/contacts/commit",
            files=_upload(CONTACTS_CSV),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        self._assert_error(response, 401, "UNAUTHORIZED")


class TestHealth:

    def test_entity_health(self, client):
        response = client.get("/imports/contacts/health")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["entityType"] == "contacts"
        assert data["actions"] == ["validate", "commit"]

    def test_service_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Correlation-ID" in response.headers


class TestCommitEndpoint:

    def test_commit_upserts_and_records_attempt(self, client, auth_headers, db_session):
        response = client.post("/imports/contacts/commit", files=_upload(CONTACTS_CSV), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "commit"
        assert data["status"] == "succeeded"
        assert data["insertedRows"] == 1
        assert data["updatedRows"] == 1
        assert data["upsertedRows"] == 1
        assert data["skippedRows"] == 0

        contacts = db_session.query(Contact).all()
        assert len(contacts) == 1
        assert contacts[0].first_name == "Janet"

        record = db_session.query(ImportAttemptRecord).filter_by(id=data["attemptId"]).one()
        assert record.user_id == "user-123"
        assert record.status == "succeeded"
        assert record.correlation_id == data["correlationId"]
        assert record.source_type == "file-upload"
        assert record.file_name == "contacts.csv"
        assert record.warnings_count == 1
        assert record.finished_at is not None
        assert [issue.code for issue in record.issues] == ["EMAIL_INVALID"]

    def test_failed_parse_marks_attempt_failed(self, client, auth_headers, db_session):
        response = client.post("/imports/contacts/commit", files=_upload(b"\n\n"), headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "CSV_EMPTY"
        record = db_session.query(ImportAttemptRecord).one()
        assert record.status == "failed"
        assert record.error_summary == response.json()["message"]

    def test_rejected_rows_make_partial_attempt(self, client, auth_headers):
        content = b"License Number,License State\nL-1,CO\n,TX\n"
        data = client.post("/imports/licenses/commit", files=_upload(content), headers=auth_headers).json()
        assert data["status"] == "partial"
        assert data["errorCount"] == 1
        assert data["skippedRows"] == 1
        assert data["issues"][0]["code"] == "MISSING_REQUIRED_FIELD"


class TestServerEntryPoint:

    @patch("crm_import.main.uvicorn.run")
    def test_run_serves_app_on_configured_port(self, mock_run, monkeypatch):
        monkeypatch.setenv("PORT", "9100")
        run()

        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "crm_import.main:app"
        assert kwargs["port"] == 9100
