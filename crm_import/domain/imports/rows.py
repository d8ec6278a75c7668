"""
Per-row validation and field transformation.
"""
import hashlib
from typing import Dict, List, Optional

from .entities import EntitySchema, SurrogateKey
from .headers import HeaderMapping
from .models import (
    MISSING_REQUIRED_FIELD,
    UNIQUE_ID_GENERATED,
    UNIQUE_ID_MISSING,
    CanonicalRow,
    ImportIssue,
    RowOutcome,
    error,
    warning,
)
from .validators import run_field_pipeline


def build_raw_row(headers: List[str], cells: List[str]) -> Dict[str, str]:
    """Original cell values keyed by original header, for operator debugging."""
    return {header: (cells[idx] if idx < len(cells) else "") for idx, header in enumerate(headers)}


def derive_surrogate_key(surrogate: SurrogateKey, row: CanonicalRow) -> Optional[str]:
    """
    Derive a deterministic id from the surrogate source fields.

    Returns None when any source field is absent.
    """
    parts = [row.get(name) for name in surrogate.sources]
    if any(part in (None, "") for part in parts):
        return None
    digest = hashlib.sha256("-".join(str(part) for part in parts).encode("utf-8")).hexdigest()
    return f"{surrogate.prefix}{digest[:surrogate.length]}"


def _is_blank(value) -> bool:
    return value is None or value == ""


def validate_row(
    schema: EntitySchema,
    mapping: HeaderMapping,
    cells: List[str],
    row_number: int,
) -> RowOutcome:
    """
    Build and validate the canonical row for one CSV data row.

    Field-level problems (bad email, URL, date, boolean, short phone) are
    warnings and never reject the row. A missing unique id that cannot be
    derived, or a missing required field, rejects it.

    Args:
        schema: Target entity descriptor
        mapping: Header mapping for the file
        cells: Raw cell strings in column order
        row_number: 1-based source row number, counting the header row
    """
    raw = build_raw_row(mapping.headers, cells)
    issues: List[ImportIssue] = []
    row: CanonicalRow = {}

    for idx, field_name in enumerate(mapping.column_fields):
        if field_name is None:
            continue
        spec = schema.get_field(field_name)
        value = cells[idx] if idx < len(cells) else ""
        check = run_field_pipeline(spec.kind, value)
        if not check.ok:
            issues.append(
                warning(check.code, check.message, row_number=row_number, field=field_name, raw_row=raw)
            )
        if check.value is not None:
            row[field_name] = check.value

    unique_field = schema.unique_field
    if unique_field and _is_blank(row.get(unique_field)):
        surrogate = derive_surrogate_key(schema.surrogate, row) if schema.surrogate else None
        if surrogate is None:
            issues.append(
                error(
                    UNIQUE_ID_MISSING,
                    f"Missing {unique_field} and insufficient data to generate one",
                    row_number=row_number,
                    field=unique_field,
                    raw_row=raw,
                )
            )
            return RowOutcome(row_number=row_number, row=None, issues=issues, raw=raw)

        row[unique_field] = surrogate
        issues.append(
            warning(
                UNIQUE_ID_GENERATED,
                f"Generated surrogate {unique_field}: {surrogate}",
                row_number=row_number,
                field=unique_field,
                raw_row=raw,
            )
        )

    missing = [name for name in schema.required if _is_blank(row.get(name))]
    for name in missing:
        issues.append(
            error(
                MISSING_REQUIRED_FIELD,
                f"Missing required field: {name}",
                row_number=row_number,
                field=name,
                raw_row=raw,
            )
        )
    if missing:
        return RowOutcome(row_number=row_number, row=None, issues=issues, raw=raw)

    return RowOutcome(row_number=row_number, row=row, issues=issues, raw=raw)
