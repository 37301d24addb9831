from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from recordport.models.jobs import ExportJob, ImportJob, JobKind, JobStatus

"""Job tracker: the single source of truth for import and export jobs.

Allowed transitions::

    pending    -> processing | cancelled
    processing -> completed | failed | cancelled
    completed  -> rolled_back        (import jobs only)

Only the holder of the writer token returned by ``start`` may update or
finish a processing job. Jobs are frozen dataclasses; every change stores a
new snapshot. With a ``path`` the tracker persists all jobs as JSON after
each change so they survive between CLI invocations.
"""

__all__ = [
    "Job",
    "JobNotFoundError",
    "JobStateError",
    "JobTracker",
]

logger = logging.getLogger(__name__)

Job = ImportJob | ExportJob

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset({JobStatus.ROLLED_BACK}),
}

_FINISH_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobStateError(Exception):
    pass


class JobNotFoundError(JobStateError):
    pass


def _now() -> datetime:
    return datetime.now(UTC)


def _job_from_dict(data: dict[str, Any]) -> Job:
    if data.get("kind") == JobKind.EXPORT.value:
        return ExportJob.from_dict(data)
    return ImportJob.from_dict(data)


class JobTracker:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._jobs: dict[str, Job] = {}
        self._writers: dict[str, str] = {}
        self._cancel_requested: set[str] = set()
        self._lock = threading.RLock()
        if path is not None and path.exists():
            self._load(path)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    # --- persistence ------------------------------------------------------

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise JobStateError(f"cannot read job state {path}: {e}") from e
        for raw in data.get("jobs", []):
            job = _job_from_dict(raw)
            self._jobs[job.id] = job
        logger.debug(f"loaded {len(self._jobs)} jobs from {path}")

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"jobs": [j.to_dict() for j in self._jobs.values()]}
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)

    # --- queries ----------------------------------------------------------

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"job not found: {job_id}")
        return job

    def list_jobs(
        self,
        kind: JobKind | None = None,
        module: str | None = None,
        status: JobStatus | None = None,
    ) -> list[Job]:
        """Jobs matching the filters, newest first."""
        with self._lock:
            jobs = list(self._jobs.values())
        if kind is not None:
            jobs = [j for j in jobs if j.kind is kind]
        if module is not None:
            jobs = [j for j in jobs if j.module == module]
        if status is not None:
            jobs = [j for j in jobs if j.status is status]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._cancel_requested

    # --- transitions ------------------------------------------------------

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise JobStateError(f"job already exists: {job.id}")
            if job.status is not JobStatus.PENDING:
                raise JobStateError(f"new job must be pending, got {job.status.value}")
            self._jobs[job.id] = job
            self._save()
        return job

    def _transition(self, job: Job, target: JobStatus) -> None:
        if target not in _TRANSITIONS.get(job.status, frozenset()):
            raise JobStateError(f"job {job.id}: illegal transition {job.status.value} -> {target.value}")

    def _check_writer(self, job_id: str, token: str) -> Job:
        job = self.get(job_id)
        if job.status is not JobStatus.PROCESSING:
            raise JobStateError(f"job {job_id} is not processing ({job.status.value})")
        if self._writers.get(job_id) != token:
            raise JobStateError(f"job {job_id}: caller does not hold the writer token")
        return job

    def start(self, job_id: str) -> str:
        """Claim a pending job for processing; returns the writer token."""
        with self._lock:
            job = self.get(job_id)
            self._transition(job, JobStatus.PROCESSING)
            token = uuid.uuid4().hex
            self._writers[job_id] = token
            self._jobs[job_id] = replace(job, status=JobStatus.PROCESSING, started_at=_now())
            self._save()
        return token

    def update(self, job_id: str, token: str, **changes: Any) -> Job:
        """Publish progress/counters of a processing job."""
        if "status" in changes:
            raise JobStateError("use finish() to change the status")
        with self._lock:
            job = replace(self._check_writer(job_id, token), **changes)
            self._jobs[job_id] = job
            self._save()
        return job

    def finish(self, job_id: str, token: str, status: JobStatus, **changes: Any) -> Job:
        """Move a processing job to a terminal status and release the writer."""
        if status not in _FINISH_STATUSES:
            raise JobStateError(f"cannot finish a job as {status.value}")
        with self._lock:
            job = self._check_writer(job_id, token)
            self._transition(job, status)
            job = replace(job, status=status, completed_at=_now(), **changes)
            self._jobs[job_id] = job
            self._writers.pop(job_id, None)
            self._cancel_requested.discard(job_id)
            self._save()
        return job

    def cancel(self, job_id: str) -> Job:
        """Cancel a pending job now, or request cancellation of a processing one."""
        with self._lock:
            job = self.get(job_id)
            if job.status is JobStatus.PENDING:
                job = replace(job, status=JobStatus.CANCELLED, completed_at=_now())
                self._jobs[job_id] = job
                self._save()
            elif job.status is JobStatus.PROCESSING:
                self._cancel_requested.add(job_id)
            else:
                raise JobStateError(f"job {job_id} is already {job.status.value}")
        return job

    def mark_rolled_back(self, job_id: str, **changes: Any) -> ImportJob:
        with self._lock:
            job = self.get(job_id)
            if not isinstance(job, ImportJob):
                raise JobStateError(f"job {job_id} is not an import job")
            self._transition(job, JobStatus.ROLLED_BACK)
            job = replace(job, status=JobStatus.ROLLED_BACK, **changes)
            self._jobs[job_id] = job
            self._save()
        return job

    def discard(self, job_id: str) -> None:
        """Forget a terminal job (expired exports)."""
        with self._lock:
            job = self.get(job_id)
            if not job.is_terminal:
                raise JobStateError(f"job {job_id} is still {job.status.value}")
            del self._jobs[job_id]
            self._save()
