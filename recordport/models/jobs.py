from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .error_record import ErrorRecord
from .field_definition import FieldMapping

"""Job domain models and status enums.

ImportJob and ExportJob are persisted units of work. Both are frozen: the Job
Tracker replaces the stored snapshot on every transition, so a terminal job is
never mutated in place.

Status transitions: pending -> processing -> (completed | failed | cancelled),
plus completed -> rolled_back for import jobs.
"""

__all__ = [
    "DuplicateHandling",
    "ExportJob",
    "ImportJob",
    "JobKind",
    "JobStatus",
    "TERMINAL_STATUSES",
]


class JobKind(Enum):
    """Explicit tag distinguishing the two job variants."""
    IMPORT = "import"
    EXPORT = "export"


class JobStatus(Enum):
    """Job processing lifecycle.

    - PENDING: submitted, no executor yet
    - PROCESSING: one executor holds the job
    - COMPLETED: finished (possibly with some failed rows)
    - FAILED: every processed row failed, or a fatal error aborted the job
    - CANCELLED: cancelled before or between batches
    - ROLLED_BACK: a completed import whose inserted records were removed
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.ROLLED_BACK}
)


class DuplicateHandling(Enum):
    """How an import reacts to a natural-key collision."""
    SKIP = "skip"
    UPDATE = "update"
    CREATE_NEW = "create_new"
    MERGE = "merge"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class ImportJob:
    """Import job state and outcome counters."""
    id: str
    module: str
    file_name: str
    file_size_bytes: int
    total_rows: int
    created_at: datetime
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    mapping_used: tuple[FieldMapping, ...] = ()
    status: JobStatus = JobStatus.PENDING
    rows_processed: int = 0
    rows_imported: int = 0
    rows_failed: int = 0
    rows_skipped: int = 0
    errors: tuple[ErrorRecord, ...] = ()
    warnings: tuple[str, ...] = ()
    can_rollback: bool = False
    rolled_back: bool = False
    rolled_back_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    inserted_record_ids: tuple[str, ...] = ()  # store ids inserted by this job
    template_id: str | None = None

    @property
    def kind(self) -> JobKind:
        return JobKind.IMPORT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> float:
        """Fraction of rows processed (0.0 - 1.0)."""
        if self.total_rows == 0:
            return 1.0 if self.is_terminal else 0.0
        return self.rows_processed / self.total_rows

    @property
    def counters_balanced(self) -> bool:
        return self.rows_processed == self.rows_imported + self.rows_failed + self.rows_skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "module": self.module,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "total_rows": self.total_rows,
            "created_at": _iso(self.created_at),
            "duplicate_handling": self.duplicate_handling.value,
            "mapping_used": [m.to_dict() for m in self.mapping_used],
            "status": self.status.value,
            "rows_processed": self.rows_processed,
            "rows_imported": self.rows_imported,
            "rows_failed": self.rows_failed,
            "rows_skipped": self.rows_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "can_rollback": self.can_rollback,
            "rolled_back": self.rolled_back,
            "rolled_back_at": _iso(self.rolled_back_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "inserted_record_ids": list(self.inserted_record_ids),
            "template_id": self.template_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportJob:
        return cls(
            id=data["id"],
            module=data["module"],
            file_name=data["file_name"],
            file_size_bytes=int(data.get("file_size_bytes", 0)),
            total_rows=int(data["total_rows"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            duplicate_handling=DuplicateHandling(data.get("duplicate_handling", "skip")),
            mapping_used=tuple(FieldMapping.from_dict(m) for m in data.get("mapping_used", [])),
            status=JobStatus(data["status"]),
            rows_processed=int(data.get("rows_processed", 0)),
            rows_imported=int(data.get("rows_imported", 0)),
            rows_failed=int(data.get("rows_failed", 0)),
            rows_skipped=int(data.get("rows_skipped", 0)),
            errors=tuple(ErrorRecord.from_dict(e) for e in data.get("errors", [])),
            warnings=tuple(data.get("warnings", [])),
            can_rollback=bool(data.get("can_rollback", False)),
            rolled_back=bool(data.get("rolled_back", False)),
            rolled_back_at=_parse_dt(data.get("rolled_back_at")),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            inserted_record_ids=tuple(str(i) for i in data.get("inserted_record_ids", [])),
            template_id=data.get("template_id"),
        )


@dataclass(frozen=True)
class ExportJob:
    """Export job state; the artifact is available at ``file_url`` until ``expires_at``."""
    id: str
    module: str
    file_name: str
    created_at: datetime
    expires_at: datetime
    status: JobStatus = JobStatus.PENDING
    total_rows: int = 0
    rows_exported: int = 0
    file_url: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def kind(self) -> JobKind:
        return JobKind.EXPORT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "module": self.module,
            "file_name": self.file_name,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "status": self.status.value,
            "total_rows": self.total_rows,
            "rows_exported": self.rows_exported,
            "file_url": self.file_url,
            "warnings": list(self.warnings),
            "error": self.error,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExportJob:
        return cls(
            id=data["id"],
            module=data["module"],
            file_name=data["file_name"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            status=JobStatus(data["status"]),
            total_rows=int(data.get("total_rows", 0)),
            rows_exported=int(data.get("rows_exported", 0)),
            file_url=data.get("file_url"),
            warnings=tuple(data.get("warnings", [])),
            error=data.get("error"),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
        )
