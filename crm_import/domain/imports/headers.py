"""
Header normalization and alias mapping.
"""
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from .models import HEADER_DUPLICATE, HEADER_MISSING, HEADER_UNKNOWN, ImportIssue, error, warning

if TYPE_CHECKING:
    from .entities import EntitySchema

_INVISIBLE_CHARS = re.compile(r"[\u200b-\u200d\ufeff]")
_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class HeaderMapping:
    headers: List[str]
    normalized_headers: List[str]
    # Canonical field per column, None for unknown or duplicate columns
    column_fields: List[Optional[str]]
    issues: List[ImportIssue] = field(default_factory=list)

    @property
    def mapped_fields(self) -> Dict[str, int]:
        """Canonical field -> column index."""
        return {name: idx for idx, name in enumerate(self.column_fields) if name}


def normalize_header(header: str) -> str:
    """Strip invisible characters, collapse whitespace and lowercase."""
    text = _INVISIBLE_CHARS.sub("", header or "").replace("\u00a0", " ")
    return _WHITESPACE_RUN.sub(" ", text).strip().lower()


def detect_delimiter(header_line: str) -> str:
    """Pick ';' only when it outnumbers ',' in the header line."""
    return ";" if header_line.count(";") > header_line.count(",") else ","


def map_headers(headers: List[str], schema: "EntitySchema") -> HeaderMapping:
    """
    Map raw header cells to canonical field names for an entity.

    Unknown headers are kept verbatim and reported as HEADER_UNKNOWN
    warnings. Required fields with no matching column are reported as
    HEADER_MISSING errors; processing continues either way.
    """
    aliases = schema.alias_table()
    normalized_headers: List[str] = []
    column_fields: List[Optional[str]] = []
    issues: List[ImportIssue] = []
    claimed: Dict[str, str] = {}

    for header in headers:
        canonical = aliases.get(normalize_header(header))
        if canonical is None:
            normalized_headers.append(header)
            column_fields.append(None)
            issues.append(warning(HEADER_UNKNOWN, f"Unknown header: {header}", field=header))
        elif canonical in claimed:
            normalized_headers.append(header)
            column_fields.append(None)
            issues.append(
                warning(
                    HEADER_DUPLICATE,
                    f"Header '{header}' maps to {canonical}, already provided by '{claimed[canonical]}'; column ignored",
                    field=canonical,
                )
            )
        else:
            claimed[canonical] = header
            normalized_headers.append(canonical)
            column_fields.append(canonical)

    for required in schema.required_headers:
        if required not in claimed:
            spec = schema.get_field(required)
            label = spec.label if spec else required
            issues.append(error(HEADER_MISSING, f"Required header missing: {label}", field=required))

    return HeaderMapping(
        headers=list(headers),
        normalized_headers=normalized_headers,
        column_fields=column_fields,
        issues=issues,
    )
