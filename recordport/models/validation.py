from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Validation result models.

Validation problems are carried as data (ValidationIssue) and never raised; the
caller checks ``ValidationResult.is_valid`` before importing.
"""

__all__ = [
    "Severity",
    "ValidationIssue",
    "ValidationResult",
]


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """One validation finding.

    ``row=None`` marks a global (configuration level) issue such as a required
    field without any mapping.
    """
    severity: Severity
    column: str
    message: str
    row: int | None = None
    value: Any = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "row": self.row,
            "column": self.column,
            "message": self.message,
            "value": self.value,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one parsed file against a mapping."""
    is_valid: bool
    issues: tuple[ValidationIssue, ...]
    row_count: int
    column_count: int
    headers: tuple[str, ...]
    sample_rows: tuple[dict[str, str], ...] = field(default_factory=tuple)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "row_count": self.row_count,
            "column_count": self.column_count,
            "headers": list(self.headers),
            "issues": [i.to_dict() for i in self.issues],
            "sample_rows": [dict(r) for r in self.sample_rows],
        }
