from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .store import RecordStore, StoredRecord, StoreError, TagDeletion, normalize_key_value

"""In-memory RecordStore used by tests, dry runs and the CLI when no
database is reachable."""

__all__ = [
    "InMemoryRecordStore",
]


@dataclass
class _Entry:
    fields: dict[str, Any]
    job_tag: str | None = None
    modified: bool = False


@dataclass
class _ModuleTable:
    entries: dict[str, _Entry] = field(default_factory=dict)


class InMemoryRecordStore(RecordStore):
    def __init__(self, *, supports_job_tags: bool = True) -> None:
        self.supports_job_tags = supports_job_tags
        self._tables: dict[str, _ModuleTable] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _table(self, module: str) -> _ModuleTable:
        return self._tables.setdefault(module, _ModuleTable())

    def find_by_natural_key(self, module: str, key: Mapping[str, Any]) -> StoredRecord | None:
        wanted = {k: normalize_key_value(v) for k, v in key.items()}
        with self._lock:
            for record_id, entry in self._table(module).entries.items():
                if all(normalize_key_value(entry.fields.get(k)) == v for k, v in wanted.items()):
                    return StoredRecord(id=record_id, fields=dict(entry.fields))
        return None

    def insert(self, module: str, record: Mapping[str, Any], job_tag: str | None = None) -> str:
        with self._lock:
            record_id = str(next(self._ids))
            tag = job_tag if self.supports_job_tags else None
            self._table(module).entries[record_id] = _Entry(fields=dict(record), job_tag=tag)
            return record_id

    def update(
        self, module: str, record_id: str, fields: Mapping[str, Any], job_tag: str | None = None
    ) -> None:
        with self._lock:
            entry = self._table(module).entries.get(record_id)
            if entry is None:
                raise StoreError(f"{module} record {record_id} not found")
            entry.fields.update(fields)
            if entry.job_tag is not None and entry.job_tag != job_tag:
                entry.modified = True

    def delete_by_job_tag(self, module: str, job_tag: str) -> TagDeletion:
        with self._lock:
            entries = self._table(module).entries
            tagged = [rid for rid, e in entries.items() if e.job_tag == job_tag]
            modified = [rid for rid in tagged if entries[rid].modified]
            for rid in tagged:
                del entries[rid]
        return TagDeletion(deleted_ids=tuple(tagged), modified_ids=tuple(modified))

    def query(
        self,
        module: str,
        fields: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            entries = list(self._table(module).entries.values())
        out: list[dict[str, Any]] = []
        for entry in entries:
            if filter and any(entry.fields.get(k) != v for k, v in filter.items()):
                continue
            out.append({f: entry.fields.get(f) for f in fields})
        return out

    # helpers for tests and dry runs

    def delete(self, module: str, record_id: str) -> None:
        with self._lock:
            self._table(module).entries.pop(record_id, None)

    def get(self, module: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._table(module).entries.get(record_id)
            return dict(entry.fields) if entry else None

    def count(self, module: str) -> int:
        with self._lock:
            return len(self._table(module).entries)
