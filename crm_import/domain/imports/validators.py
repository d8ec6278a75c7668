"""
Field validators for imported CRM rows.

Each validator is a small pure function taking a raw cell value and returning
a FieldCheck: the cleaned value (None when the value is dropped) plus an
optional warning code and message. Validators are chained per field kind in
FIELD_PIPELINES; the chain stops as soon as a step drops the value.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

from .models import BOOLEAN_INVALID, DATE_PARSE, EMAIL_INVALID, PHONE_SHORT, URL_INVALID


PRESET_PATTERNS = {
    "email": r"^[^\s@]+@[^\s@]+\.[^\s@]+$",
    "url": r"^https?://",
    "date_us": r"^(\d{1,2})/(\d{1,2})/(\d{4})$",
}

PRESET_DESCRIPTIONS = {
    "email": "Standard email format (local@domain.tld)",
    "url": "HTTP/HTTPS URL",
    "date_us": "US date format (MM/DD/YYYY)",
}

MIN_DATE_YEAR = 1900
MIN_PHONE_LENGTH = 7

TRUE_VALUES = frozenset({"true", "yes", "y", "1"})
FALSE_VALUES = frozenset({"false", "no", "n", "0"})

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "district of columbia": "DC", "florida": "FL", "georgia": "GA", "hawaii": "HI",
    "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME",
    "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE",
    "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM",
    "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI",
    "south carolina": "SC", "south dakota": "SD", "tennessee": "TN", "texas": "TX",
    "utah": "UT", "vermont": "VT", "virginia": "VA", "washington": "WA",
    "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}
_STATE_CODES = frozenset(US_STATES.values())

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass(frozen=True)
class FieldCheck:
    value: Any
    code: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code is None


def get_preset_pattern(preset_name: str) -> Optional[str]:
    """Get the regex pattern for a preset validator."""
    return PRESET_PATTERNS.get(preset_name)


def validate_with_preset(value: str, preset_name: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a value against a preset pattern.

    Returns:
        Tuple of (is_valid, error_message)
    """
    pattern = get_preset_pattern(preset_name)
    if pattern is None:
        return False, f"Unknown preset validator: {preset_name}"

    if not re.match(pattern, value):
        description = PRESET_DESCRIPTIONS.get(preset_name, preset_name)
        return False, f"Value '{value}' does not match {description} format"
    return True, None


def strip_value(value: Any) -> FieldCheck:
    text = str(value).strip() if value is not None else ""
    return FieldCheck(text or None)


def collapse_whitespace(value: Any) -> FieldCheck:
    text = _WHITESPACE_RUN.sub(" ", str(value)).strip() if value is not None else ""
    return FieldCheck(text or None)


def check_email(value: str) -> FieldCheck:
    is_valid, _ = validate_with_preset(value, "email")
    if not is_valid:
        return FieldCheck(None, EMAIL_INVALID, f"Invalid email format: {value}")
    return FieldCheck(value)


def check_url(value: str) -> FieldCheck:
    is_valid, _ = validate_with_preset(value, "url")
    if not is_valid:
        return FieldCheck(
            None,
            URL_INVALID,
            f"Invalid URL format: {value}. Must start with http:// or https://",
        )
    return FieldCheck(value)


def parse_us_date(value: str) -> FieldCheck:
    """Parse MM/DD/YYYY and return the ISO form YYYY-MM-DD."""
    match = re.match(PRESET_PATTERNS["date_us"], value)
    if not match:
        return FieldCheck(None, DATE_PARSE, f"Invalid date format: {value}. Expected MM/DD/YYYY")

    month, day, year = (int(part) for part in match.groups())
    if not (1 <= month <= 12 and 1 <= day <= 31 and year >= MIN_DATE_YEAR):
        return FieldCheck(None, DATE_PARSE, f"Invalid date values: {value}")

    try:
        parsed = date(year, month, day)
    except ValueError:
        # e.g. 02/30/2024: every part is in range but the day does not exist
        return FieldCheck(None, DATE_PARSE, f"Invalid date values: {value}")
    return FieldCheck(parsed.isoformat())


def check_phone_length(value: str) -> FieldCheck:
    # Short numbers are flagged but kept; they are often extensions or partial data
    if len(value) < MIN_PHONE_LENGTH:
        return FieldCheck(value, PHONE_SHORT, f"Phone number seems too short: {value}")
    return FieldCheck(value)


def parse_boolean(value: str) -> FieldCheck:
    normalized = value.lower()
    if normalized in TRUE_VALUES:
        return FieldCheck(True)
    if normalized in FALSE_VALUES:
        return FieldCheck(False)
    return FieldCheck(
        None,
        BOOLEAN_INVALID,
        f"Invalid boolean value: {value}. Expected true/false, yes/no, y/n, or 1/0",
    )


def normalize_state(value: str) -> FieldCheck:
    """Map US state names to postal codes; unknown values pass through."""
    if value.upper() in _STATE_CODES:
        return FieldCheck(value.upper())
    return FieldCheck(US_STATES.get(value.lower(), value))


Validator = Callable[[Any], FieldCheck]

FIELD_PIPELINES: Dict[str, Tuple[Validator, ...]] = {
    "text": (strip_value,),
    "email": (strip_value, check_email),
    "url": (strip_value, check_url),
    "date": (strip_value, parse_us_date),
    "phone": (collapse_whitespace, check_phone_length),
    "boolean": (strip_value, parse_boolean),
    "state": (collapse_whitespace, normalize_state),
}


def run_field_pipeline(kind: str, raw_value: Any) -> FieldCheck:
    """
    Run every validator registered for a field kind.

    Returns the last FieldCheck. A flagged step that keeps its value (phone
    length) does not stop the chain; a step that drops the value does.
    """
    validators = FIELD_PIPELINES.get(kind)
    if validators is None:
        raise ValueError(f"Unknown field kind: {kind}")

    flagged: Optional[FieldCheck] = None
    current = FieldCheck(raw_value)
    for validator in validators:
        current = validator(current.value)
        if not current.ok:
            flagged = current
        if current.value is None:
            break

    if flagged is not None and current.ok:
        return FieldCheck(current.value, flagged.code, flagged.message)
    return current
