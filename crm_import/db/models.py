"""
ORM models for CRM entities and import bookkeeping.

The three CRM collections (contacts, companies, licenses) are the upsert
targets of the import pipeline. ``import_attempts`` holds one row per commit
and ``import_issues`` its append-only child collection.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from crm_import.db.session import Base, get_engine


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Contact(Base):
    """A person at a licensed cannabis business."""
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    contact_unique_id = Column(String(255), index=True, nullable=True)
    full_name = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    job_category = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    phone_number = Column(String(64), nullable=True)
    linkedin_url = Column(Text, nullable=True)
    license_number = Column(String(255), index=True, nullable=True)
    contact_last_updated = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Company(Base):
    """A company operating under one or more licenses."""
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), index=True, nullable=False)
    dba = Column(String(255), nullable=True)
    website_url = Column(Text, nullable=True)
    linkedin_url = Column(Text, nullable=True)
    open_for_business = Column(Boolean, nullable=True)
    license_number = Column(String(255), index=True, nullable=True)
    company_last_updated = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class License(Base):
    """A state-issued cannabis license."""
    __tablename__ = "licenses"

    id = Column(String(36), primary_key=True, default=_new_id)
    license_number = Column(String(255), index=True, nullable=True)
    license_type = Column(String(255), nullable=True)
    license_market = Column(String(255), nullable=True)
    license_category = Column(String(255), nullable=True)
    full_address = Column(Text, nullable=True)
    state = Column(String(64), nullable=True)
    country = Column(String(64), nullable=True)
    issue_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)
    issued_by = Column(String(255), nullable=True)
    issued_by_website = Column(Text, nullable=True)
    last_updated = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ImportAttemptRecord(Base):
    """Persisted outcome of one committed import."""
    __tablename__ = "import_attempts"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), index=True, nullable=True)
    correlation_id = Column(String(64), nullable=True)
    table_name = Column(String(32), index=True, nullable=False)
    source_type = Column(String(32), nullable=False)  # 'file-upload' | 'remote-url'
    source_url = Column(Text, nullable=True)
    file_name = Column(String(500), nullable=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), index=True, nullable=False, default="running")

    total_rows = Column(Integer, nullable=False, default=0)
    valid_rows = Column(Integer, nullable=False, default=0)
    upserted_rows = Column(Integer, nullable=False, default=0)
    inserted_rows = Column(Integer, nullable=False, default=0)
    updated_rows = Column(Integer, nullable=False, default=0)
    skipped_rows = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    warnings_count = Column(Integer, nullable=False, default=0)

    error_summary = Column(Text, nullable=True)
    sample_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    issues = relationship(
        "ImportIssueRecord",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="ImportIssueRecord.id",
    )


class ImportIssueRecord(Base):
    """One problem found while importing a header or row."""
    __tablename__ = "import_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(
        String(36),
        ForeignKey("import_attempts.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    row_number = Column(Integer, nullable=True)
    severity = Column(String(16), nullable=False)
    code = Column(String(64), index=True, nullable=False)
    message = Column(Text, nullable=False)
    field = Column(String(255), nullable=True)
    raw_row_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    attempt = relationship("ImportAttemptRecord", back_populates="issues")


ENTITY_MODELS = {
    "contacts": Contact,
    "companies": Company,
    "licenses": License,
}


def init_import_tables(engine=None) -> None:
    """Create CRM and import bookkeeping tables if they don't exist."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
