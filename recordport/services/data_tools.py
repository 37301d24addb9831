from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from recordport.catalog import CatalogError
from recordport.config.loader import AppConfig
from recordport.csvio.parser import ParsedCSV, parse_csv
from recordport.db.store import RecordStore, StoreError
from recordport.logging.init import log_summary
from recordport.models.field_definition import FieldDefinition, FieldMapping
from recordport.models.jobs import DuplicateHandling, ExportJob, ImportJob, JobKind, JobStatus
from recordport.models.template import ImportTemplate
from recordport.models.validation import ValidationResult

from .executor import ImportExecutor, check_batch_size
from .export import ExportError, ExportGenerator, ExportOptions, ExportResult
from .job_tracker import Job, JobStateError, JobTracker
from .mapping import MappingEngine
from .rollback import RollbackManager
from .summary import render_summary_line
from .template_store import TemplateStore
from .validation import ValidationEngine

"""Service facade for CSV bulk import/export.

DataToolsService is the single entry point used by the CLI (and any other
front end): parse, suggest mappings, validate, import (sync or background),
rollback, export (sync or background) and template management. Background
work runs on a small bounded thread pool; callers poll jobs by id.
"""

__all__ = [
    "DataToolsService",
    "ImportBlockedError",
]

logger = logging.getLogger(__name__)


class ImportBlockedError(Exception):
    """Validation failed; nothing was imported."""

    def __init__(self, result: ValidationResult) -> None:
        errors = result.errors
        super().__init__(f"import blocked by {len(errors)} validation errors")
        self.result = result


def _now() -> datetime:
    return datetime.now(UTC)


class DataToolsService:
    def __init__(
        self,
        store: RecordStore,
        config: AppConfig | None = None,
        *,
        tracker: JobTracker | None = None,
        templates: TemplateStore | None = None,
        background_workers: int = 2,
        show_progress: bool | None = None,
    ) -> None:
        self.store = store
        self.config = config or AppConfig()
        cfg = self.config
        self.mapping = MappingEngine()
        self.tracker = tracker or JobTracker(Path(cfg.state.jobs_path) if cfg.state.jobs_path else None)
        self.templates = templates or TemplateStore(
            Path(cfg.state.templates_path) if cfg.state.templates_path else None, self.mapping
        )
        self.executor = ImportExecutor(
            store,
            self.tracker,
            mapping_engine=self.mapping,
            batch_size=cfg.batch_size,
            max_workers=cfg.max_workers,
            date_format=cfg.date_format,
            logs_dir=cfg.logs_directory,
            show_progress=show_progress,
        )
        self.rollback_manager = RollbackManager(store, self.tracker)
        self.exporter = ExportGenerator(store)
        self._pool = ThreadPoolExecutor(max_workers=background_workers, thread_name_prefix="data-tools")
        self._futures: dict[str, Future[Any]] = {}

    # --- lifecycle ----------------------------------------------------------

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> DataToolsService:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # --- parsing / mapping ----------------------------------------------------

    def parse(
        self,
        raw_data: str | bytes | ParsedCSV,
        *,
        delimiter: str | None = None,
        encoding: str = "utf-8",
        max_rows: int | None = None,
    ) -> ParsedCSV:
        if isinstance(raw_data, ParsedCSV):
            return raw_data
        return parse_csv(raw_data, delimiter=delimiter, encoding=encoding, max_rows=max_rows)

    def suggest_mappings(
        self, raw_data: str | bytes | ParsedCSV, module: str, template_id: str | None = None
    ) -> list[FieldMapping]:
        """Initial mappings from a template (exact columns) or auto-suggestion."""
        template = self.templates.get(template_id) if template_id else None
        parsed = self.parse(raw_data, delimiter=template.delimiter if template else None)
        return self.mapping.initial_mappings(module, parsed.headers, template)

    def available_targets(self, module: str, mappings: Sequence[FieldMapping], index: int | None = None) -> list[FieldDefinition]:
        return self.mapping.available_targets(module, mappings, index)

    # --- validation -----------------------------------------------------------

    def _template(self, template_id: str | None) -> ImportTemplate | None:
        return self.templates.get(template_id) if template_id else None

    def validate(
        self,
        raw_data: str | bytes | ParsedCSV,
        mappings: Sequence[FieldMapping],
        module: str,
        *,
        template_id: str | None = None,
        delimiter: str | None = None,
    ) -> ValidationResult:
        template = self._template(template_id)
        parsed = self.parse(raw_data, delimiter=delimiter or (template.delimiter if template else None))
        engine = ValidationEngine(self.mapping, self.store, self.config.date_format)
        return engine.validate(
            parsed.headers,
            parsed.rows,
            mappings,
            module,
            rules=template.validation_rules if template else (),
            date_format=template.date_format if template else None,
        )

    # --- import ---------------------------------------------------------------

    def _prepare_import(
        self,
        raw_data: str | bytes | ParsedCSV,
        mappings: Sequence[FieldMapping],
        module: str,
        duplicate_handling: DuplicateHandling,
        file_name: str,
        template_id: str | None,
        delimiter: str | None,
        batch_size: int | None,
    ) -> tuple[ImportJob, ParsedCSV, str | None]:
        if batch_size is not None:
            check_batch_size(batch_size)
        template = self._template(template_id)
        parsed = self.parse(raw_data, delimiter=delimiter or (template.delimiter if template else None))
        result = self.validate(parsed, mappings, module, template_id=template_id)
        if not result.is_valid:
            logger.info(f"import refused: {len(result.errors)} validation errors")
            raise ImportBlockedError(result)

        size = len(raw_data) if isinstance(raw_data, (str, bytes)) else 0
        job = ImportJob(
            id=self.tracker.new_id(),
            module=module,
            file_name=file_name,
            file_size_bytes=size,
            total_rows=parsed.row_count,
            created_at=_now(),
            duplicate_handling=duplicate_handling,
            mapping_used=tuple(mappings),
            warnings=tuple(f"Row {w.row}: {w.message}" if w.row else w.message for w in result.warnings),
            template_id=template_id,
        )
        self.tracker.create(job)
        if template is not None:
            self.templates.record_use(template.id)
        return job, parsed, template.date_format if template else None

    def run_import(
        self,
        raw_data: str | bytes | ParsedCSV,
        mappings: Sequence[FieldMapping],
        module: str,
        duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP,
        batch_size: int | None = None,
        *,
        file_name: str = "upload.csv",
        template_id: str | None = None,
        delimiter: str | None = None,
    ) -> ImportJob:
        """Validate and import synchronously; returns the terminal job.

        Raises:
            ImportBlockedError: validation failed
            ParseError / MappingError: unusable input or mappings
            ValueError: batch_size is not a positive integer
        """
        job, parsed, date_format = self._prepare_import(
            raw_data, mappings, module, duplicate_handling, file_name, template_id, delimiter, batch_size
        )
        job = self.executor.run(job.id, parsed.rows, mappings, batch_size=batch_size, date_format=date_format)
        log_summary(render_summary_line(job)[len("SUMMARY "):])
        return job

    def submit_import(
        self,
        raw_data: str | bytes | ParsedCSV,
        mappings: Sequence[FieldMapping],
        module: str,
        duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP,
        batch_size: int | None = None,
        *,
        file_name: str = "upload.csv",
        template_id: str | None = None,
        delimiter: str | None = None,
    ) -> ImportJob:
        """Validate, then import in the background; returns the pending job."""
        job, parsed, date_format = self._prepare_import(
            raw_data, mappings, module, duplicate_handling, file_name, template_id, delimiter, batch_size
        )
        future = self._pool.submit(
            self._background_import, job.id, parsed.rows, list(mappings), batch_size, date_format
        )
        self._track(job.id, future)
        return job

    def _background_import(
        self,
        job_id: str,
        rows: Sequence[Any],
        mappings: Sequence[FieldMapping],
        batch_size: int | None,
        date_format: str | None,
    ) -> ImportJob | None:
        try:
            job = self.executor.run(job_id, rows, mappings, batch_size=batch_size, date_format=date_format)
        except JobStateError as e:
            # Cancelled while still pending
            logger.info(f"import {job_id} not started: {e}")
            return None
        log_summary(render_summary_line(job)[len("SUMMARY "):])
        return job

    def _track(self, job_id: str, future: Future[Any]) -> None:
        # Registered before the callback so a future that is already done
        # is still removed.
        self._futures[job_id] = future
        future.add_done_callback(lambda f: self._on_done(job_id, f))

    def _on_done(self, job_id: str, future: Future[Any]) -> None:
        self._futures.pop(job_id, None)
        error = future.exception()
        if error is not None:
            logger.error(f"background job {job_id} crashed: {error}")

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Block until a background job's worker returns, then return the job."""
        future = self._futures.get(job_id)
        if future is not None:
            future.exception(timeout=timeout)
            self._futures.pop(job_id, None)
        return self.tracker.get(job_id)

    # --- jobs -----------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        return self.tracker.get(job_id)

    def list_jobs(
        self, kind: JobKind | None = None, module: str | None = None, status: JobStatus | None = None
    ) -> list[Job]:
        return self.tracker.list_jobs(kind=kind, module=module, status=status)

    def cancel_job(self, job_id: str) -> Job:
        return self.tracker.cancel(job_id)

    def rollback(self, job_id: str) -> ImportJob:
        return self.rollback_manager.rollback(job_id)

    # --- export ---------------------------------------------------------------

    def _export_options(
        self, delimiter: str, include_headers: bool, filter: dict[str, Any] | None
    ) -> ExportOptions:
        return ExportOptions(
            delimiter=delimiter,
            include_headers=include_headers,
            date_format=self.config.date_format,
            currency_symbol=self.config.currency_symbol,
            filter=filter,
        )

    def export(
        self,
        module: str,
        selected_fields: Sequence[str | FieldDefinition] | None = None,
        delimiter: str = ",",
        include_headers: bool = True,
        *,
        filter: dict[str, Any] | None = None,
    ) -> ExportResult:
        return self.exporter.export(module, selected_fields, self._export_options(delimiter, include_headers, filter))

    def submit_export(
        self,
        module: str,
        selected_fields: Sequence[str | FieldDefinition] | None = None,
        delimiter: str = ",",
        include_headers: bool = True,
        *,
        filter: dict[str, Any] | None = None,
    ) -> ExportJob:
        """Export in the background; the artifact lands in the export directory."""
        created = _now()
        job = ExportJob(
            id=self.tracker.new_id(),
            module=module,
            file_name=f"{module}-export-{created.strftime('%Y%m%d-%H%M%S')}.csv",
            created_at=created,
            expires_at=created + timedelta(days=self.config.export.expires_after_days),
        )
        self.tracker.create(job)
        options = self._export_options(delimiter, include_headers, filter)
        future = self._pool.submit(self._background_export, job.id, list(selected_fields or []), options)
        self._track(job.id, future)
        return job

    def _background_export(
        self, job_id: str, selected_fields: Sequence[str | FieldDefinition], options: ExportOptions
    ) -> ExportJob | None:
        try:
            token = self.tracker.start(job_id)
        except JobStateError as e:
            logger.info(f"export {job_id} not started: {e}")
            return None
        job = self.tracker.get(job_id)
        try:
            result = self.exporter.export(job.module, selected_fields, options)
            directory = Path(self.config.export.directory)
            directory.mkdir(parents=True, exist_ok=True)
            artifact = directory / f"{job_id}-{job.file_name}"
            artifact.write_bytes(result.content)
        except (StoreError, ExportError, CatalogError, OSError) as e:
            logger.error(f"export {job_id} failed: {e}")
            return self.tracker.finish(job_id, token, JobStatus.FAILED, error=str(e))
        finished = self.tracker.finish(
            job_id,
            token,
            JobStatus.COMPLETED,
            total_rows=result.record_count + len(result.warnings),
            rows_exported=result.record_count,
            warnings=result.warnings,
            file_url=artifact.resolve().as_uri(),
        )
        log_summary(render_summary_line(finished)[len("SUMMARY "):])
        return finished

    def purge_expired_exports(self, now: datetime | None = None) -> list[str]:
        """Delete artifacts (and job records) of expired export jobs."""
        now = now or _now()
        purged: list[str] = []
        for job in self.tracker.list_jobs(kind=JobKind.EXPORT):
            if not job.is_terminal or not job.is_expired(now):
                continue
            artifact = Path(self.config.export.directory) / f"{job.id}-{job.file_name}"
            if artifact.exists():
                artifact.unlink()
            self.tracker.discard(job.id)
            purged.append(job.id)
        if purged:
            logger.info(f"purged {len(purged)} expired exports")
        return purged

    # --- templates ------------------------------------------------------------

    def create_template(self, name: str, module: str, field_mappings: Sequence[FieldMapping], **kwargs: Any) -> ImportTemplate:
        return self.templates.create(name, module, field_mappings, **kwargs)

    def get_template(self, template_id: str) -> ImportTemplate:
        return self.templates.get(template_id)

    def list_templates(self, module: str | None = None, search: str | None = None) -> list[ImportTemplate]:
        return self.templates.list_templates(module, search)

    def update_template(self, template_id: str, **changes: Any) -> ImportTemplate:
        return self.templates.update(template_id, **changes)

    def delete_template(self, template_id: str) -> None:
        self.templates.delete(template_id)

    def duplicate_template(self, template_id: str) -> ImportTemplate:
        return self.templates.duplicate(template_id)

    def export_template(self, template_id: str) -> dict[str, Any]:
        return self.templates.export_bundle(template_id)

    def import_template(self, bundle: dict[str, Any], owner_id: str = "local") -> ImportTemplate:
        return self.templates.import_bundle(bundle, owner_id)
