import csv
import io
import logging
from dataclasses import dataclass
from typing import List

import pandas as pd

from crm_import.core.errors import CSV_EMPTY, CSV_INVALID, ImportPipelineError
from ..headers import detect_delimiter

logger = logging.getLogger(__name__)


@dataclass
class ParsedCsv:
    headers: List[str]
    rows: List[List[str]]
    delimiter: str
    truncated_rows: int = 0


def _first_non_blank_line(text: str) -> str:
    for line in text.split("\n"):
        if line.strip():
            return line
    return ""


def _cell(value) -> str:
    # Ragged rows come back padded with NaN/None rather than strings
    return value.strip() if isinstance(value, str) else ""


def parse_csv(file_content: bytes) -> ParsedCsv:
    """
    Tokenize normalized CSV bytes into a header row and data rows.

    Every cell is read as a stripped string; nothing is type-inferred. The
    delimiter is detected from the header line. Blank lines are skipped.
    Rows with more cells than the header are truncated to the header width
    and rows with fewer are padded with empty strings.

    Args:
        file_content: CSV content, already normalized to UTF-8 with LF endings

    Returns:
        ParsedCsv with headers, data rows and the detected delimiter

    Raises:
        ImportPipelineError: CSV_EMPTY when no header row exists, CSV_INVALID
            when the tokenizer cannot make sense of the content.
    """
    text = file_content.decode("utf-8", errors="replace")
    header_line = _first_non_blank_line(text)
    if not header_line:
        raise ImportPipelineError(CSV_EMPTY, "CSV file is empty or invalid")

    delimiter = detect_delimiter(header_line)
    width = len(next(csv.reader([header_line], delimiter=delimiter)))
    truncated: List[int] = []

    def _keep_header_width(bad_line: List[str]) -> List[str]:
        truncated.append(len(bad_line))
        return bad_line[:width]

    try:
        df = pd.read_csv(
            io.StringIO(text[text.find(header_line):]),
            sep=delimiter,
            header=None,
            dtype=str,
            na_filter=False,
            skip_blank_lines=True,
            engine="python",
            index_col=False,
            on_bad_lines=_keep_header_width,
        )
    except pd.errors.EmptyDataError as exc:
        raise ImportPipelineError(CSV_EMPTY, "CSV file is empty or invalid") from exc
    except (pd.errors.ParserError, csv.Error) as exc:
        raise ImportPipelineError(CSV_INVALID, f"CSV could not be parsed: {exc}") from exc

    records = [[_cell(value) for value in row] for row in df.itertuples(index=False, name=None)]
    if not records:
        raise ImportPipelineError(CSV_EMPTY, "CSV file is empty or invalid")

    # The header row is kept even when every cell is blank; mapping reports it
    headers = records[0]
    rows = [row + [""] * (len(headers) - len(row)) for row in records[1:] if any(row)]

    if truncated:
        logger.warning("Truncated %d CSV rows wider than the %d-column header", len(truncated), width)
    logger.info(
        "Parsed CSV with %d data rows, %d columns (delimiter %r)",
        len(rows),
        len(headers),
        delimiter,
    )
    return ParsedCsv(headers=headers, rows=rows, delimiter=delimiter, truncated_rows=len(truncated))
