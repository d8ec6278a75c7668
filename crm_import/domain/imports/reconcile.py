"""
Reconciliation: decide per row whether to update an existing record or insert.

Stores expose three operations (find one by equality, insert, update by id).
SqlRecordStore commits after every write so a later row in the same batch
always sees the records written by earlier rows.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import Date
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_import.db.models import ENTITY_MODELS
from .entities import EntitySchema
from .models import INSERT_ERROR, UPDATE_ERROR, CanonicalRow

logger = logging.getLogger(__name__)

ACTION_INSERTED = "inserted"
ACTION_UPDATED = "updated"


class RecordStoreError(Exception):
    """Raised by a record store when a lookup or write fails."""


class ReconcileError(Exception):
    """A row could not be persisted; carries the issue code to record."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class ReconcileResult:
    action: str
    record_id: str
    lookup_key: Optional[tuple] = None


class InMemoryRecordStore:
    """Dict-backed store, used by tests and by callers embedding the pipeline."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)

    def find_one(self, table: str, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for record in self.tables[table].values():
            if all(record.get(key) == value for key, value in criteria.items()):
                return dict(record)
        return None

    def insert(self, table: str, values: Dict[str, Any]) -> str:
        record_id = str(uuid.uuid4())
        self.tables[table][record_id] = {**values, "id": record_id}
        return record_id

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> None:
        if record_id not in self.tables[table]:
            raise RecordStoreError(f"Record {record_id} not found in {table}")
        self.tables[table][record_id].update(values)


class SqlRecordStore:
    """SQLAlchemy-backed store for the CRM entity tables."""

    def __init__(self, session: Session, models: Optional[Dict[str, Any]] = None):
        self.session = session
        self.models = models or ENTITY_MODELS

    def _model(self, table: str):
        model = self.models.get(table)
        if model is None:
            raise RecordStoreError(f"No model registered for table '{table}'")
        return model

    @staticmethod
    def _coerce(model, values: Dict[str, Any]) -> Dict[str, Any]:
        """Drop unknown keys and turn ISO date strings into date objects."""
        columns = model.__table__.columns
        coerced = {}
        for key, value in values.items():
            if key not in columns or key == "id":
                continue
            if isinstance(value, str) and isinstance(columns[key].type, Date):
                value = date.fromisoformat(value)
            coerced[key] = value
        return coerced

    def find_one(self, table: str, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        model = self._model(table)
        try:
            record = self.session.query(model).filter_by(**self._coerce(model, criteria)).first()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        if record is None:
            return None
        return {column.name: getattr(record, column.name) for column in model.__table__.columns}

    def insert(self, table: str, values: Dict[str, Any]) -> str:
        model = self._model(table)
        record = model(**self._coerce(model, values))
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        return record.id

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> None:
        model = self._model(table)
        try:
            updated = (
                self.session.query(model)
                .filter(model.id == record_id)
                .update(self._coerce(model, values), synchronize_session="fetch")
            )
            if not updated:
                raise RecordStoreError(f"Record {record_id} not found in {table}")
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RecordStoreError(str(exc)) from exc


def _is_absent(value) -> bool:
    return value is None or value == ""


def lookup_criteria(schema: EntitySchema, row: CanonicalRow):
    """
    Yield (fields, criteria) for every lookup key fully present on the row.

    Keys with an ``unless_present`` field set on the row are skipped.
    """
    for key in schema.lookup_keys:
        if any(not _is_absent(row.get(name)) for name in key.unless_present):
            continue
        values = [row.get(name) for name in key.fields]
        if any(_is_absent(value) for value in values):
            continue
        yield key.fields, dict(zip(key.fields, values))


def find_existing(schema: EntitySchema, row: CanonicalRow, store):
    """Try each usable lookup key in precedence order; first match wins."""
    for key, criteria in lookup_criteria(schema, row):
        existing = store.find_one(schema.entity_type, criteria)
        if existing is not None:
            return key, existing
    return None, None


def reconcile(schema: EntitySchema, row: CanonicalRow, store) -> ReconcileResult:
    """
    Update the matching record or insert a new one.

    Raises:
        ReconcileError: UPDATE_ERROR when the lookup or update fails,
            INSERT_ERROR when the insert fails.
    """
    try:
        key, existing = find_existing(schema, row, store)
    except Exception as exc:
        raise ReconcileError(UPDATE_ERROR, f"Lookup failed: {exc}") from exc

    if existing is not None:
        try:
            store.update(schema.entity_type, existing["id"], row)
        except Exception as exc:
            raise ReconcileError(UPDATE_ERROR, str(exc)) from exc
        return ReconcileResult(ACTION_UPDATED, existing["id"], key)

    try:
        record_id = store.insert(schema.entity_type, row)
    except Exception as exc:
        raise ReconcileError(INSERT_ERROR, str(exc)) from exc
    return ReconcileResult(ACTION_INSERTED, record_id)
