from __future__ import annotations

"""Error log row=-1 sentinel contract.

A job-level failure (the store became unreachable) is logged with row=-1 and
an empty column; row values below -1 never appear.
"""
import json
import pathlib
from datetime import UTC, datetime
from unittest.mock import patch

import jsonschema
import pytest

from recordport.db.memory_store import InMemoryRecordStore
from recordport.db.store import StoreUnavailableError
from recordport.models.field_definition import FieldMapping
from recordport.models.jobs import ImportJob, JobStatus
from recordport.models.raw_row import RawRow
from recordport.services.executor import ImportExecutor
from recordport.services.job_tracker import JobTracker

SCHEMA_PATH = pathlib.Path(__file__).parent / "error_log_schema.json"


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_error_log_schema_accepts_row_minus_one():
    record = {
        "timestamp": "2025-09-26T10:12:33Z",
        "job_id": "j1",
        "module": "customers",
        "row": -1,
        "column": "",
        "error_type": "STORE_UNAVAILABLE",
        "message": "database unavailable: connection refused",
    }
    jsonschema.validate(record, _schema())


def test_error_log_schema_rejects_row_less_than_minus_one():
    record = {
        "timestamp": "2025-09-26T10:12:33Z",
        "job_id": "j1",
        "module": "customers",
        "row": -2,
        "column": "",
        "error_type": "STORE_UNAVAILABLE",
        "message": "database unavailable",
    }
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, _schema())


def test_store_outage_is_logged_as_job_level_record(tmp_path: pathlib.Path):
    store = InMemoryRecordStore()
    tracker = JobTracker()
    executor = ImportExecutor(store, tracker, batch_size=5, logs_dir=tmp_path, show_progress=False)
    rows = [RawRow(i, {"Company Name": f"Company {i}"}) for i in range(1, 4)]
    job = ImportJob(
        id=tracker.new_id(),
        module="customers",
        file_name="c.csv",
        file_size_bytes=0,
        total_rows=len(rows),
        created_at=datetime.now(UTC),
    )
    tracker.create(job)
    mappings = [FieldMapping(csv_column="Company Name", db_field="company_name", required=True)]

    with patch.object(store, "find_by_natural_key", side_effect=StoreUnavailableError("database unavailable")):
        finished = executor.run(job.id, rows, mappings)

    assert finished.status is JobStatus.FAILED
    assert finished.errors[-1].row == -1
    log = next(tmp_path.glob("errors-*.log"))
    records = [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines()]
    job_level = [r for r in records if r["row"] == -1]
    assert len(job_level) == 1
    assert job_level[0]["error_type"] == "STORE_UNAVAILABLE"
    assert job_level[0]["column"] == ""
    jsonschema.validate(job_level[0], _schema())
