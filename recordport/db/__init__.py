"""Record store contract and adapters (in-memory, PostgreSQL)."""

from .memory_store import InMemoryRecordStore
from .store import RecordStore, StoredRecord, StoreError, StoreUnavailableError, TagDeletion

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "StoreError",
    "StoreUnavailableError",
    "StoredRecord",
    "TagDeletion",
]
