from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from recordport.models.jobs import ExportJob, ImportJob, JobKind, JobStatus
from recordport.services.job_tracker import JobNotFoundError, JobStateError, JobTracker


def _import_job(job_id: str = "imp1", module: str = "customers", created_at: datetime | None = None) -> ImportJob:
    return ImportJob(
        id=job_id,
        module=module,
        file_name="customers.csv",
        file_size_bytes=120,
        total_rows=3,
        created_at=created_at or datetime.now(UTC),
    )


def _export_job(job_id: str = "exp1") -> ExportJob:
    now = datetime.now(UTC)
    return ExportJob(id=job_id, module="products", file_name="products.csv", created_at=now, expires_at=now + timedelta(days=7))


def test_lifecycle_pending_processing_completed(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    job = tracker.get("imp1")
    assert job.status is JobStatus.PROCESSING
    assert job.started_at is not None
    tracker.update("imp1", token, rows_processed=2, rows_imported=2)
    assert tracker.get("imp1").rows_processed == 2
    done = tracker.finish("imp1", token, JobStatus.COMPLETED, rows_processed=3, rows_imported=3)
    assert done.status is JobStatus.COMPLETED
    assert done.completed_at is not None
    assert done.is_terminal


def test_only_token_holder_may_write(tracker: JobTracker):
    tracker.create(_import_job())
    tracker.start("imp1")
    with pytest.raises(JobStateError):
        tracker.update("imp1", "not-the-token", rows_processed=1)
    with pytest.raises(JobStateError):
        tracker.finish("imp1", "not-the-token", JobStatus.COMPLETED)


def test_second_start_is_rejected(tracker: JobTracker):
    tracker.create(_import_job())
    tracker.start("imp1")
    with pytest.raises(JobStateError):
        tracker.start("imp1")


def test_update_cannot_change_status(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    with pytest.raises(JobStateError):
        tracker.update("imp1", token, status=JobStatus.COMPLETED)


def test_terminal_job_is_never_modified(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    tracker.finish("imp1", token, JobStatus.FAILED)
    with pytest.raises(JobStateError):
        tracker.update("imp1", token, rows_processed=5)
    with pytest.raises(JobStateError):
        tracker.cancel("imp1")
    with pytest.raises(JobStateError):
        tracker.mark_rolled_back("imp1")


def test_finish_rejects_non_terminal_status(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    with pytest.raises(JobStateError):
        tracker.finish("imp1", token, JobStatus.ROLLED_BACK)


def test_new_job_must_be_pending_and_unique(tracker: JobTracker):
    tracker.create(_import_job())
    with pytest.raises(JobStateError):
        tracker.create(_import_job())
    with pytest.raises(JobStateError):
        tracker.create(replace(_import_job("imp2"), status=JobStatus.COMPLETED))


def test_cancel_pending_job_is_immediate(tracker: JobTracker):
    tracker.create(_import_job())
    job = tracker.cancel("imp1")
    assert job.status is JobStatus.CANCELLED
    with pytest.raises(JobStateError):
        tracker.start("imp1")


def test_cancel_processing_job_sets_flag(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    job = tracker.cancel("imp1")
    assert job.status is JobStatus.PROCESSING
    assert tracker.is_cancel_requested("imp1")
    tracker.finish("imp1", token, JobStatus.CANCELLED)
    assert not tracker.is_cancel_requested("imp1")


def test_mark_rolled_back_only_from_completed(tracker: JobTracker):
    tracker.create(_import_job())
    token = tracker.start("imp1")
    tracker.finish("imp1", token, JobStatus.COMPLETED, can_rollback=True)
    job = tracker.mark_rolled_back("imp1", rolled_back=True, can_rollback=False)
    assert job.status is JobStatus.ROLLED_BACK
    assert job.rolled_back is True
    with pytest.raises(JobStateError):
        tracker.mark_rolled_back("imp1")


def test_mark_rolled_back_rejects_export_jobs(tracker: JobTracker):
    tracker.create(_export_job())
    token = tracker.start("exp1")
    tracker.finish("exp1", token, JobStatus.COMPLETED)
    with pytest.raises(JobStateError):
        tracker.mark_rolled_back("exp1")


def test_unknown_job(tracker: JobTracker):
    with pytest.raises(JobNotFoundError):
        tracker.get("nope")


def test_list_jobs_filters_newest_first(tracker: JobTracker):
    base = datetime(2024, 1, 1, tzinfo=UTC)
    tracker.create(_import_job("old", created_at=base))
    tracker.create(_import_job("new", created_at=base + timedelta(hours=1)))
    tracker.create(_import_job("vend", module="vendors", created_at=base + timedelta(hours=2)))
    tracker.create(_export_job())
    assert [j.id for j in tracker.list_jobs(kind=JobKind.IMPORT, module="customers")] == ["new", "old"]
    assert [j.id for j in tracker.list_jobs(kind=JobKind.EXPORT)] == ["exp1"]
    tracker.cancel("old")
    assert [j.id for j in tracker.list_jobs(status=JobStatus.CANCELLED)] == ["old"]


def test_discard_only_terminal_jobs(tracker: JobTracker):
    tracker.create(_export_job())
    with pytest.raises(JobStateError):
        tracker.discard("exp1")
    tracker.cancel("exp1")
    tracker.discard("exp1")
    with pytest.raises(JobNotFoundError):
        tracker.get("exp1")


def test_jobs_persist_across_instances(tmp_path: Path):
    path = tmp_path / "state" / "jobs.json"
    first = JobTracker(path)
    first.create(_import_job())
    token = first.start("imp1")
    first.finish("imp1", token, JobStatus.COMPLETED, rows_processed=3, rows_imported=3, inserted_record_ids=("1", "2", "3"))
    first.create(_export_job())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert {j["kind"] for j in data["jobs"]} == {"import", "export"}

    second = JobTracker(path)
    job = second.get("imp1")
    assert isinstance(job, ImportJob)
    assert job.status is JobStatus.COMPLETED
    assert job.inserted_record_ids == ("1", "2", "3")
    assert isinstance(second.get("exp1"), ExportJob)


def test_corrupt_state_file(tmp_path: Path):
    path = tmp_path / "jobs.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(JobStateError):
        JobTracker(path)
