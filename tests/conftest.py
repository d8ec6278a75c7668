"""
Pytest configuration and fixtures for CRM import tests.

API tests run against an in-memory SQLite database that replaces the
``get_db`` dependency, so no PostgreSQL server is needed.
"""

import os

# Never bootstrap the configured database from the app lifespan in tests.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_import.core.security import create_access_token
from crm_import.db.models import init_import_tables
from crm_import.db.session import get_db
from crm_import.domain.imports.events import RecordingEventEmitter
from crm_import.domain.imports.reconcile import InMemoryRecordStore
from crm_import.main import app


TEST_USER_ID = "user-123"


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine with all import tables created."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_import_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    """Test client whose requests use the in-memory database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token(TEST_USER_ID)}"}


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def emitter():
    return RecordingEventEmitter()
