from __future__ import annotations

import csv
import io
import re
from collections.abc import Sequence

import pandas as pd

"""CSV serialization for exports.

Values are already formatted strings at this point; quoting is minimal: a
value is quoted only when it contains the delimiter, a quote character or a
line break (``\\n`` or ``\\r``), with embedded quotes doubled. Every line ends
with a newline.
"""

__all__ = [
    "render_csv",
]

_QUOTED_FIELD_RE = re.compile(r'("(?:[^"]|"")*")')


def _has_carriage_return(labels: Sequence[str], rows: Sequence[Sequence[str]]) -> bool:
    return any("\r" in str(v) for v in labels) or any("\r" in str(v) for r in rows for v in r)


def _unquoted_crlf_to_lf(text: str) -> str:
    # split() keeps quoted fields at odd indexes
    parts = _QUOTED_FIELD_RE.split(text)
    return "".join(p if i % 2 else p.replace("\r\n", "\n") for i, p in enumerate(parts))


def render_csv(
    labels: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    delimiter: str = ",",
    include_headers: bool = True,
) -> str:
    """Render formatted rows as CSV text."""
    if not rows and not include_headers:
        return ""
    df = pd.DataFrame([list(r) for r in rows], columns=list(labels), dtype=object)
    # The csv writer only quotes line-break characters found in the line
    # terminator; a bare \r needs "\r\n" there to be quoted.
    carriage_return = _has_carriage_return(labels, rows)
    buf = io.StringIO()
    df.to_csv(
        buf,
        sep=delimiter,
        header=include_headers,
        index=False,
        quoting=csv.QUOTE_MINIMAL,
        quotechar='"',
        doublequote=True,
        lineterminator="\r\n" if carriage_return else "\n",
    )
    text = buf.getvalue()
    return _unquoted_crlf_to_lf(text) if carriage_return else text
