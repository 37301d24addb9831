from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

"""ErrorRecord model for job error reporting and error logging.

An ErrorRecord describes one failure inside an import job: a row that could
not be written, or a job-level failure. It supports row=-1 as a sentinel value
for job-level errors where no specific row applies (store unreachable, job
aborted).

Records are kept on ``ImportJob.errors`` and also written to the JSON Lines
error log with a fixed key set.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        job_id: Import job the failure belongs to
        module: Target module (customers, products, ...)
        row: Row number (1-based). Use -1 for job-level errors
        column: CSV column (or canonical field) involved; empty when unknown
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Store error message or description
    """
    timestamp: str  # ISO8601 UTC
    job_id: str
    module: str
    row: int  # -1 for job-level errors
    column: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(job_id: str, module: str, row: int, column: str, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            job_id=job_id,
            module=module,
            row=row,
            column=column,
            error_type=error_type,
            message=message,
        )

    @property
    def is_job_level(self) -> bool:
        return self.row == -1

    def describe(self) -> str:
        """Human readable one-liner, e.g. ``Row 3 (Email): duplicate key``."""
        if self.is_job_level:
            return f"Job: {self.message}"
        if self.column:
            return f"Row {self.row} ({self.column}): {self.message}"
        return f"Row {self.row}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorRecord:
        return cls(
            timestamp=data["timestamp"],
            job_id=data["job_id"],
            module=data["module"],
            row=int(data["row"]),
            column=data.get("column", ""),
            error_type=data["error_type"],
            message=data["message"],
        )

    def to_json_line(self) -> str:
        """Serialize ErrorRecord to JSON Lines format (no extra keys)."""
        return json.dumps(asdict(self), ensure_ascii=False)
