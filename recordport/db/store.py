from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

"""Record store contract.

The importer and exporter never talk to a module's tables directly; they go
through a RecordStore. Records are plain dicts keyed by canonical field name.
Every record written by an import carries the job id as its tag so the whole
import can be removed again with ``delete_by_job_tag``.

Natural-key lookups compare values trimmed and case-insensitively.
"""

__all__ = [
    "RecordStore",
    "StoreError",
    "StoreUnavailableError",
    "StoredRecord",
    "TagDeletion",
    "normalize_key_value",
]


class StoreError(Exception):
    """A single store operation failed (constraint violation, bad value, ...)."""


class StoreUnavailableError(StoreError):
    """The store cannot be reached at all; no further operation can succeed."""


@dataclass(frozen=True)
class StoredRecord:
    id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TagDeletion:
    deleted_ids: tuple[str, ...] = ()
    modified_ids: tuple[str, ...] = ()  # subset of deleted_ids changed after the import wrote them


def normalize_key_value(value: Any) -> str:
    return "" if value is None else str(value).strip().lower()


class RecordStore(ABC):
    # False for stores that cannot tag inserted records; imports into them
    # are not rollback-able.
    supports_job_tags: bool = True

    @abstractmethod
    def find_by_natural_key(self, module: str, key: Mapping[str, Any]) -> StoredRecord | None:
        ...

    @abstractmethod
    def insert(self, module: str, record: Mapping[str, Any], job_tag: str | None = None) -> str:
        """Insert ``record`` and return the new record id."""

    @abstractmethod
    def update(
        self, module: str, record_id: str, fields: Mapping[str, Any], job_tag: str | None = None
    ) -> None:
        """Overwrite ``fields`` on an existing record.

        ``job_tag`` identifies the writer; an update by anyone other than the
        job that inserted the record marks it modified for rollback purposes.
        """

    @abstractmethod
    def delete_by_job_tag(self, module: str, job_tag: str) -> TagDeletion:
        ...

    @abstractmethod
    def query(
        self,
        module: str,
        fields: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Return records (restricted to ``fields``) matching ``filter`` equality."""
