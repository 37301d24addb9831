from __future__ import annotations

import io
from dataclasses import dataclass

import pandas as pd

from recordport.models.raw_row import RawRow

"""CSV reader and dialect detection.

- The first non-blank line is the header row (row 0); data rows are numbered
  from 1.
- The delimiter is detected from the header line unless given explicitly.
- Every cell is read as a string: pandas NA coercion is disabled so values
  like "NA" or "null" reach mapping and validation untouched.
- Quoting follows RFC4180 (delimiters/newlines inside quotes, doubled quote =
  literal quote).
"""

__all__ = [
    "CANDIDATE_DELIMITERS",
    "ParseError",
    "ParsedCSV",
    "decode_content",
    "detect_delimiter",
    "parse_csv",
]

# Priority order also breaks ties: comma > semicolon > tab > pipe
CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")


class ParseError(Exception):
    """Raised when the input cannot be turned into a header + rows."""


@dataclass
class ParsedCSV:
    headers: list[str]
    rows: list[RawRow]
    delimiter: str

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)


def decode_content(content: str | bytes, encoding: str = "utf-8") -> str:
    """Decode raw bytes, stripping a UTF-8 BOM. Text passes through."""
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    codec = "utf-8-sig" if encoding.lower().replace("_", "-") in ("utf-8", "utf8") else encoding
    try:
        return content.decode(codec)
    except (UnicodeDecodeError, LookupError) as e:
        raise ParseError(f"unable to decode CSV content as {encoding}: {e}") from e


def _header_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def detect_delimiter(text: str) -> str:
    """Pick the candidate delimiter occurring most often in the header line.

    Ties go to the earlier candidate in CANDIDATE_DELIMITERS; a header with no
    candidate at all (single column) yields a comma.
    """
    header = _header_line(text)
    best = CANDIDATE_DELIMITERS[0]
    best_count = 0
    for candidate in CANDIDATE_DELIMITERS:
        count = header.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def _cell(value: object) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


def parse_csv(
    content: str | bytes,
    *,
    max_rows: int | None = None,
    delimiter: str | None = None,
    encoding: str = "utf-8",
) -> ParsedCSV:
    """Parse CSV content into headers and RawRows.

    Parameters
    ----------
    content: raw CSV (bytes or str)
    max_rows: optional cap on the number of data rows returned
    delimiter: explicit delimiter; detected from the header line when None
    encoding: byte encoding (BOM is stripped for UTF-8)

    Raises
    ------
    ParseError: empty input, empty header, duplicate column names, a row with
        more fields than the header, or undecodable bytes.
    """
    text = decode_content(content, encoding)
    if not text.strip():
        raise ParseError("CSV file is empty")

    sep = delimiter or detect_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=sep,
            header=None,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            quotechar='"',
            doublequote=True,
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError("CSV file is empty") from e
    except pd.errors.ParserError as e:
        raise ParseError(f"malformed CSV: {e}") from e

    if df.shape[0] == 0:
        raise ParseError("CSV file has no header row")

    names = [_cell(raw).strip() for raw in df.iloc[0].tolist()]
    if not any(names):
        raise ParseError("CSV header row is empty")
    # Trailing delimiters produce unnamed columns; give them a stable name
    headers = [name or f"Column {position}" for position, name in enumerate(names, start=1)]

    seen: set[str] = set()
    duplicates: list[str] = []
    for h in headers:
        if h in seen and h not in duplicates:
            duplicates.append(h)
        seen.add(h)
    if duplicates:
        raise ParseError(f"duplicate column names in header: {duplicates}")

    rows: list[RawRow] = []
    for raw in df.iloc[1:].itertuples(index=False, name=None):
        values = [_cell(v) for v in raw]
        # A row of only empty cells (e.g. ",,,") carries no data
        if not any(v.strip() for v in values):
            continue
        rows.append(RawRow(row_number=len(rows) + 1, values=dict(zip(headers, values, strict=False))))
        if max_rows is not None and len(rows) >= max_rows:
            break

    return ParsedCSV(headers=headers, rows=rows, delimiter=sep)
