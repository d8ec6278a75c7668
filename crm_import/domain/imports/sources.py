"""
Source acquisition: turn an upload or a sharing URL into normalized CSV bytes.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

import requests

from crm_import.core.config import settings
from crm_import.core.errors import (
    FETCH_FAILED,
    FILE_MISSING,
    PAYLOAD_TOO_LARGE,
    UNSUPPORTED_CONTENT_TYPE,
    URL_FORBIDDEN,
    URL_MISSING,
    ImportPipelineError,
)
from .models import SOURCE_FILE_UPLOAD, SOURCE_REMOTE_URL

logger = logging.getLogger(__name__)

# Media types accepted from a remote CSV export
REMOTE_CSV_MEDIA_TYPES = frozenset({"text/csv", "application/csv", "text/plain"})

# Browsers label .csv uploads inconsistently (Excel on Windows sends vnd.ms-excel)
UPLOAD_CSV_MEDIA_TYPES = REMOTE_CSV_MEDIA_TYPES | {
    "application/vnd.ms-excel",
    "application/octet-stream",
}

FETCH_CHUNK_SIZE = 64 * 1024

_SHEETS_EDIT_URL = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)/edit")
_SHEETS_GID = re.compile(r"[#?&]gid=([0-9]+)")
_SHEETS_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{doc_id}/export?format=csv&gid={gid}"


@dataclass
class SourcePayload:
    content: bytes
    source_kind: str
    locator: Optional[str] = None
    file_name: Optional[str] = None


def normalize_csv_text(text: str) -> str:
    """
    Strip leading byte-order marks, unify line endings to LF and replace
    non-breaking spaces. Applying it twice gives the same result as once.
    """
    text = text.lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.replace("\u00a0", " ")


def normalize_csv_bytes(content: bytes) -> bytes:
    text = content.decode("utf-8", errors="replace")
    return normalize_csv_text(text).encode("utf-8")


def _media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def _ensure_within_limit(size: int, max_bytes: int) -> None:
    if size > max_bytes:
        raise ImportPipelineError(
            PAYLOAD_TOO_LARGE,
            f"CSV file too large (max {max_bytes // (1024 * 1024)}MB)",
            413,
            {"size_bytes": size, "max_bytes": max_bytes},
        )


def acquire_upload(
    content: Optional[bytes],
    file_name: Optional[str] = None,
    declared_size: Optional[int] = None,
    content_type: Optional[str] = None,
    max_bytes: Optional[int] = None,
) -> SourcePayload:
    """
    Accept an uploaded CSV file.

    The declared size is checked before the content is touched so oversized
    uploads are rejected without parsing.

    Args:
        content: Raw file bytes
        file_name: Original filename, kept as the source locator
        declared_size: Size reported by the client, if any
        content_type: Media type reported by the client, if any
        max_bytes: Size ceiling (defaults to the configured import limit)
    """
    max_bytes = max_bytes if max_bytes is not None else settings.import_max_file_size_bytes

    if declared_size is not None:
        _ensure_within_limit(declared_size, max_bytes)
    if not content:
        raise ImportPipelineError(FILE_MISSING, "No CSV file uploaded")
    _ensure_within_limit(len(content), max_bytes)

    media_type = _media_type(content_type)
    if media_type and media_type not in UPLOAD_CSV_MEDIA_TYPES:
        raise ImportPipelineError(
            UNSUPPORTED_CONTENT_TYPE,
            f"Expected a CSV file, got {media_type}",
            415,
        )

    return SourcePayload(
        content=normalize_csv_bytes(content),
        source_kind=SOURCE_FILE_UPLOAD,
        locator=file_name,
        file_name=file_name,
    )


def transform_sheets_url(url: str) -> str:
    """
    Rewrite a Google Sheets edit URL to its CSV export URL.

    The tab id (``gid``) is taken from the query string or fragment and
    defaults to the first tab. Any other URL is returned unchanged.
    """
    edit_match = _SHEETS_EDIT_URL.search(url)
    if not edit_match:
        return url

    gid_match = _SHEETS_GID.search(url)
    gid = gid_match.group(1) if gid_match else "0"
    return _SHEETS_EXPORT_URL.format(doc_id=edit_match.group(1), gid=gid)


def _read_limited(chunks: Iterable[bytes], max_bytes: int) -> bytes:
    buffer = bytearray()
    for chunk in chunks:
        if not chunk:
            continue
        buffer.extend(chunk)
        _ensure_within_limit(len(buffer), max_bytes)
    return bytes(buffer)


def fetch_csv_from_url(
    url: Optional[str],
    file_name: Optional[str] = None,
    timeout: Optional[float] = None,
    max_bytes: Optional[int] = None,
) -> SourcePayload:
    """
    Fetch a CSV export from a sharing URL.

    Raises:
        ImportPipelineError: URL_MISSING, URL_FORBIDDEN (sheet not public),
            UNSUPPORTED_CONTENT_TYPE, PAYLOAD_TOO_LARGE or FETCH_FAILED.
    """
    if not url or not url.strip():
        raise ImportPipelineError(URL_MISSING, "No Google Sheets/CSV URL provided")

    url = url.strip()
    timeout = timeout if timeout is not None else settings.import_fetch_timeout_seconds
    max_bytes = max_bytes if max_bytes is not None else settings.import_max_file_size_bytes
    effective_url = transform_sheets_url(url)
    if effective_url != url:
        logger.info("Transformed sharing URL %s -> %s", url, effective_url)

    try:
        response = requests.get(
            effective_url,
            headers={
                "Accept": "text/csv, application/csv;q=0.9, text/plain;q=0.8",
                "User-Agent": settings.import_user_agent,
                "Cache-Control": "no-cache",
            },
            timeout=timeout,
            stream=True,
        )
    except requests.exceptions.RequestException as exc:
        logger.warning("Fetching %s failed: %s", effective_url, exc)
        raise ImportPipelineError(
            FETCH_FAILED,
            f"Failed to fetch CSV from URL: {exc}",
            502,
            {"url": effective_url},
        ) from exc

    try:
        status = response.status_code
        if status in (403, 404):
            raise ImportPipelineError(
                URL_FORBIDDEN,
                'Google Sheets URL is not accessible. Make the sheet public or use "Publish to web -> CSV"',
                403,
                {"url": effective_url, "upstream_status": status},
            )
        if not 200 <= status < 300:
            raise ImportPipelineError(
                FETCH_FAILED,
                f"URL returned {status}",
                status if status >= 400 else 502,
                {"url": effective_url, "upstream_status": status},
            )

        media_type = _media_type(response.headers.get("Content-Type"))
        if media_type not in REMOTE_CSV_MEDIA_TYPES:
            raise ImportPipelineError(
                UNSUPPORTED_CONTENT_TYPE,
                f"Expected CSV, got {media_type or 'no content type'}",
                415,
                {"url": effective_url},
            )

        declared_length = response.headers.get("Content-Length")
        if declared_length and declared_length.isdigit():
            _ensure_within_limit(int(declared_length), max_bytes)

        try:
            content = _read_limited(response.iter_content(chunk_size=FETCH_CHUNK_SIZE), max_bytes)
        except requests.exceptions.RequestException as exc:
            raise ImportPipelineError(
                FETCH_FAILED,
                f"Failed to read CSV from URL: {exc}",
                502,
                {"url": effective_url},
            ) from exc
    finally:
        response.close()

    logger.info("Fetched %d bytes from %s", len(content), effective_url)
    return SourcePayload(
        content=normalize_csv_bytes(content),
        source_kind=SOURCE_REMOTE_URL,
        locator=effective_url,
        file_name=file_name,
    )
