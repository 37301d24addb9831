from __future__ import annotations

import logging
from datetime import UTC, datetime

from recordport.db.store import RecordStore
from recordport.models.jobs import ImportJob, JobStatus

from .job_tracker import JobNotFoundError, JobStateError, JobTracker

"""Rollback of completed imports.

All records tagged with the job id are deleted from the store. The job
becomes ``rolled_back`` as soon as the store returns; discrepancies (records
already gone, or modified after the import) do not undo the deletions but
are reported through RollbackError.
"""

__all__ = [
    "RollbackError",
    "RollbackManager",
]

logger = logging.getLogger(__name__)


class RollbackError(Exception):
    def __init__(self, message: str, job: ImportJob | None = None, discrepancies: list[str] | None = None) -> None:
        super().__init__(message)
        self.job = job  # rolled-back job when the deletions went through
        self.discrepancies = discrepancies or []


class RollbackManager:
    def __init__(self, store: RecordStore, tracker: JobTracker) -> None:
        self.store = store
        self.tracker = tracker

    def rollback(self, job_id: str) -> ImportJob:
        """Delete every record inserted by ``job_id``.

        Raises:
            RollbackError: job unknown or not eligible (not completed, not
                rollback-able, already rolled back, not an import), or eligible
                and rolled back but with discrepancies (``error.job`` holds the
                new state).
        """
        try:
            job = self.tracker.get(job_id)
        except JobNotFoundError as e:
            raise RollbackError(f"job {job_id} not found") from e
        if not isinstance(job, ImportJob):
            raise RollbackError(f"job {job_id} is not an import job")
        if job.rolled_back or job.status is JobStatus.ROLLED_BACK:
            raise RollbackError(f"job {job_id} was already rolled back")
        if job.status is not JobStatus.COMPLETED:
            raise RollbackError(f"job {job_id} is {job.status.value}; only completed imports can be rolled back")
        if not job.can_rollback:
            raise RollbackError(f"job {job_id} cannot be rolled back")

        deletion = self.store.delete_by_job_tag(job.module, job_id)
        try:
            rolled = self.tracker.mark_rolled_back(
                job_id,
                rolled_back=True,
                rolled_back_at=datetime.now(UTC),
                can_rollback=False,
            )
        except JobStateError as e:
            # A concurrent rollback of the same job finished first
            raise RollbackError(f"job {job_id} was already rolled back: {e}") from e
        logger.info(f"rollback {job_id}: deleted {len(deletion.deleted_ids)} {job.module} records")

        discrepancies: list[str] = []
        deleted = set(deletion.deleted_ids)
        missing = [rid for rid in job.inserted_record_ids if rid not in deleted]
        if missing:
            discrepancies.append(f"{len(missing)} records were already removed: {', '.join(missing)}")
        if deletion.modified_ids:
            discrepancies.append(
                f"{len(deletion.modified_ids)} records had been modified since import: {', '.join(deletion.modified_ids)}"
            )
        if discrepancies:
            for d in discrepancies:
                logger.warning(f"rollback {job_id}: {d}")
            raise RollbackError(
                f"job {job_id} rolled back with discrepancies: {'; '.join(discrepancies)}",
                job=rolled,
                discrepancies=discrepancies,
            )
        return rolled
