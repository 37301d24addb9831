from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from recordport.catalog import ModuleCatalog
from recordport.db.store import RecordStore, StoreError, StoreUnavailableError, normalize_key_value
from recordport.logging.error_log import ErrorLogBuffer
from recordport.models.error_record import ErrorRecord
from recordport.models.field_definition import FieldMapping
from recordport.models.jobs import DuplicateHandling, ImportJob, JobStatus
from recordport.models.raw_row import RawRow

from .conversion import convert_value, is_empty
from .job_tracker import JobTracker
from .mapping import MappingEngine, MappingError
from .progress import ProgressTracker
from .validation import matches_valid_value, natural_key_for, resolve_value

"""Import executor.

Runs one ImportJob against a RecordStore:

- claims the job through the JobTracker (single writer)
- processes rows in batches; rows of a batch run on a bounded thread pool
- inserts/updates for the same natural key are serialized by per-key locks
- counters are updated under a lock and published after every batch
- row failures are recorded (job continues); an unreachable store aborts
- cancellation is checked between batches
- any other exception ends the job as failed before it propagates

Row errors are also buffered into the JSON Lines error log and flushed once
when the job ends.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "ExecutionError",
    "FatalExecutionError",
    "ImportExecutor",
    "check_batch_size",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class ExecutionError(Exception):
    """A single row could not be imported; recorded on the job."""

    def __init__(self, row: int, column: str, message: str, error_type: str = "ROW_ERROR") -> None:
        super().__init__(message)
        self.row = row
        self.column = column
        self.message = message
        self.error_type = error_type


class FatalExecutionError(Exception):
    """The store became unavailable; the job stops."""


def check_batch_size(batch_size: int) -> int:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
    return batch_size


class _KeyLocks:
    """Per-natural-key locks shared by concurrent runs.

    An entry lives only while some row holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, ...], list[Any]] = {}  # name -> [lock, holders]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, name: tuple[str, ...]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(name, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[name]


@dataclass
class _RunState:
    job_id: str
    module: str
    base_warnings: tuple[str, ...] = ()  # carried over from validation
    processed: int = 0
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[tuple[int, str]] = field(default_factory=list)
    inserted_ids: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)
    abort: threading.Event = field(default_factory=threading.Event)

    def imported_row(self, record_id: str | None = None) -> None:
        with self.lock:
            self.processed += 1
            self.imported += 1
            if record_id is not None:
                self.inserted_ids.append(record_id)

    def skipped_row(self, row: int, warning: str) -> None:
        with self.lock:
            self.processed += 1
            self.skipped += 1
            self.warnings.append((row, warning))

    def failed_row(self, record: ErrorRecord) -> None:
        with self.lock:
            self.processed += 1
            self.failed += 1
            self.errors.append(record)

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                "rows_processed": self.processed,
                "rows_imported": self.imported,
                "rows_failed": self.failed,
                "rows_skipped": self.skipped,
                "errors": tuple(sorted(self.errors, key=lambda e: (e.row < 0, e.row))),
                "warnings": self.base_warnings + tuple(w for _, w in sorted(self.warnings, key=lambda w: w[0])),
                "inserted_record_ids": tuple(self.inserted_ids),
            }


class ImportExecutor:
    def __init__(
        self,
        store: RecordStore,
        tracker: JobTracker,
        *,
        mapping_engine: MappingEngine | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = 4,
        date_format: str = "YYYY-MM-DD",
        logs_dir: Path | str | None = None,
        show_progress: bool | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.mapping_engine = mapping_engine or MappingEngine()
        self.batch_size = check_batch_size(batch_size)
        self.max_workers = max_workers
        self.date_format = date_format
        self.logs_dir = logs_dir
        self.show_progress = show_progress
        self._key_locks = _KeyLocks()

    def _key_lock(self, module: str, key: dict[str, Any]) -> AbstractContextManager[None]:
        return self._key_locks.hold((module, *(normalize_key_value(v) for v in key.values())))

    def run(
        self,
        job_id: str,
        rows: Sequence[RawRow],
        mappings: Sequence[FieldMapping],
        *,
        batch_size: int | None = None,
        date_format: str | None = None,
    ) -> ImportJob:
        """Execute a pending import job and return its terminal snapshot.

        Raises:
            MappingError: invalid mappings or a required field without an
                active mapping (the job stays pending).
            ValueError: ``batch_size`` is not a positive integer (the job
                stays pending).
            JobStateError: the job is not pending.

        Any other exception raised once the job is claimed marks the job
        failed (with a row -1 ``INTERNAL_ERROR`` record) and is re-raised.
        """
        job = self.tracker.get(job_id)
        if not isinstance(job, ImportJob):
            raise MappingError(f"job {job_id} is not an import job")
        module = job.module
        engine = self.mapping_engine
        engine.check(module, mappings)
        missing = engine.unmapped_required(module, mappings)
        if missing:
            raise MappingError(f"required fields without a mapping: {', '.join(f.field for f in missing)}")

        catalog = engine.catalog(module)
        active = [m for m in mappings if m.is_active]
        size = self.batch_size if batch_size is None else check_batch_size(batch_size)
        fmt = date_format or self.date_format
        policy = job.duplicate_handling

        token = self.tracker.start(job_id)
        logger.info(f"import {job_id}: module={module} rows={len(rows)} policy={policy.value} batch_size={size}")

        state = _RunState(job_id=job_id, module=module, base_warnings=job.warnings)
        try:
            status = self._execute(state, token, rows, catalog, active, policy, size, fmt)
        except Exception as e:
            state.abort.set()
            logger.error(f"import {job_id}: failed: {e!r}")
            with state.lock:
                state.errors.append(
                    ErrorRecord.create(job_id, module, -1, "", "INTERNAL_ERROR", str(e) or type(e).__name__)
                )
            self._finish(state, token, JobStatus.FAILED)
            raise
        return self._finish(state, token, status)

    def _finish(self, state: _RunState, token: str, status: JobStatus) -> ImportJob:
        snap = state.snapshot()
        can_rollback = bool(snap["inserted_record_ids"]) and self.store.supports_job_tags
        return self.tracker.finish(state.job_id, token, status, can_rollback=can_rollback, **snap)

    def _execute(
        self,
        state: _RunState,
        token: str,
        rows: Sequence[RawRow],
        catalog: ModuleCatalog,
        mappings: Sequence[FieldMapping],
        policy: DuplicateHandling,
        size: int,
        date_format: str,
    ) -> JobStatus:
        """Run every batch, flush the error log and pick the terminal status."""
        job_id, module = state.job_id, state.module
        error_log = ErrorLogBuffer(self.logs_dir)
        cancelled = False
        fatal: FatalExecutionError | None = None

        with ProgressTracker(len(rows), description=f"Importing {module}", enabled=self.show_progress) as progress, \
                ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="import") as pool:
            for start in range(0, len(rows), size):
                if self.tracker.is_cancel_requested(job_id):
                    cancelled = True
                    logger.info(f"import {job_id}: cancelled after {state.processed} rows")
                    break
                batch = rows[start:start + size]
                futures = [
                    pool.submit(self._process_row, state, catalog, mappings, policy, date_format, row)
                    for row in batch
                ]
                for future in futures:
                    try:
                        future.result()
                    except FatalExecutionError as e:
                        fatal = fatal or e
                progress.advance(len(batch))
                snap = state.snapshot()
                progress.set_postfix(imported=snap["rows_imported"], failed=snap["rows_failed"])
                self.tracker.update(job_id, token, **snap)
                if fatal is not None:
                    break

        if fatal is not None:
            fatal_record = ErrorRecord.create(job_id, module, -1, "", "STORE_UNAVAILABLE", str(fatal))
            with state.lock:
                state.errors.append(fatal_record)
            logger.error(f"import {job_id}: aborted: {fatal}")

        for record in state.errors:
            error_log.append(record)
        log_path = error_log.flush()
        if log_path is not None:
            logger.info(f"import {job_id}: error log written to {log_path}")

        snap = state.snapshot()
        if cancelled:
            return JobStatus.CANCELLED
        if fatal is not None:
            return JobStatus.FAILED
        if snap["rows_processed"] > 0 and snap["rows_failed"] == snap["rows_processed"]:
            return JobStatus.FAILED
        return JobStatus.COMPLETED

    # --- per row ------------------------------------------------------------

    def _process_row(
        self,
        state: _RunState,
        catalog: ModuleCatalog,
        mappings: Sequence[FieldMapping],
        policy: DuplicateHandling,
        date_format: str,
        row: RawRow,
    ) -> None:
        if state.abort.is_set():
            return
        try:
            record = self._build_record(row, mappings, date_format)
            self._write(state, catalog, mappings, policy, record, row)
        except ExecutionError as e:
            state.failed_row(ErrorRecord.create(state.job_id, state.module, e.row, e.column, e.error_type, e.message))
        except StoreUnavailableError as e:
            state.abort.set()
            raise FatalExecutionError(str(e)) from e

    def _build_record(self, row: RawRow, mappings: Sequence[FieldMapping], date_format: str) -> dict[str, Any]:
        """Transform, default and convert every mapped value of ``row``."""
        record: dict[str, Any] = {}
        for m in mappings:
            value = resolve_value(row, m)
            if is_empty(value):
                if m.required:
                    raise ExecutionError(row.row_number, m.csv_column, "Required field is empty", "REQUIRED_MISSING")
                record[m.db_field] = None
                continue
            if m.valid_values:
                canonical = matches_valid_value(value, m.valid_values)
                if canonical is None:
                    raise ExecutionError(
                        row.row_number,
                        m.csv_column,
                        f"Invalid value. Must be one of: {', '.join(m.valid_values)}",
                        "INVALID_VALUE",
                    )
                value = canonical
            try:
                value = convert_value(value, m.data_type, date_format)
            except ValueError as e:
                raise ExecutionError(row.row_number, m.csv_column, str(e), "CONVERSION_ERROR") from e
            if m.max_length is not None and isinstance(value, str) and len(value) > m.max_length:
                raise ExecutionError(
                    row.row_number, m.csv_column, f"Value exceeds maximum length of {m.max_length}", "INVALID_VALUE"
                )
            record[m.db_field] = value
        return record

    def _write(
        self,
        state: _RunState,
        catalog: ModuleCatalog,
        mappings: Sequence[FieldMapping],
        policy: DuplicateHandling,
        record: dict[str, Any],
        row: RawRow,
    ) -> None:
        module = state.module
        key = natural_key_for(catalog.natural_key, record)
        try:
            if policy is DuplicateHandling.CREATE_NEW or key is None:
                state.imported_row(self.store.insert(module, record, job_tag=state.job_id))
                return
            with self._key_lock(module, key):
                existing = self.store.find_by_natural_key(module, key)
                if existing is None:
                    state.imported_row(self.store.insert(module, record, job_tag=state.job_id))
                elif policy is DuplicateHandling.SKIP:
                    shown = ", ".join(str(v) for v in key.values())
                    state.skipped_row(row.row_number, f"Row {row.row_number}: skipped, record already exists ({shown})")
                elif policy is DuplicateHandling.UPDATE:
                    self.store.update(module, existing.id, record, job_tag=state.job_id)
                    state.imported_row()
                else:
                    merged = {k: v for k, v in record.items() if v is not None}
                    self.store.update(module, existing.id, merged, job_tag=state.job_id)
                    state.imported_row()
        except StoreUnavailableError:
            raise
        except StoreError as e:
            column = next((m.csv_column for m in mappings if m.db_field == catalog.natural_key[0]), "")
            raise ExecutionError(row.row_number, column, str(e), "STORE_ERROR") from e
