from __future__ import annotations

from dataclasses import dataclass

"""RawRow model.

RawRow represents a single CSV data row exactly as parsed: column name -> raw
string, in header order. The header line is row 0, so the first data row is
row 1. Rows live only for the duration of one validate or import call.
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """Logical representation of a single parsed CSV data row."""
    row_number: int  # 1-based, header = 0
    values: dict[str, str]  # column name -> raw string (insertion order = header order)

    def get(self, column: str, default: str = "") -> str:
        return self.values.get(column, default)

    def as_dict(self) -> dict[str, str]:
        return dict(self.values)
