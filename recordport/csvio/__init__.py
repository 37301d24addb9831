"""CSV reading (dialect detection, parsing) and writing for exports."""

from .parser import CANDIDATE_DELIMITERS, ParseError, ParsedCSV, decode_content, detect_delimiter, parse_csv
from .writer import render_csv

__all__ = [
    "CANDIDATE_DELIMITERS",
    "ParseError",
    "ParsedCSV",
    "decode_content",
    "detect_delimiter",
    "parse_csv",
    "render_csv",
]
