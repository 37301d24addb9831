from __future__ import annotations

from datetime import UTC, datetime, timedelta

from recordport.models.jobs import ExportJob, ImportJob, JobStatus
from recordport.services.summary import format_number, render_summary_line

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def _import_job(**changes) -> ImportJob:
    base = dict(
        id="abc",
        module="customers",
        file_name="c.csv",
        file_size_bytes=10,
        total_rows=4,
        created_at=START,
        status=JobStatus.COMPLETED,
        rows_processed=4,
        rows_imported=3,
        rows_failed=1,
        started_at=START,
        completed_at=START + timedelta(seconds=2),
    )
    base.update(changes)
    return ImportJob(**base)


def test_render_import_summary():
    line = render_summary_line(_import_job())
    assert line == (
        "SUMMARY kind=import job=abc module=customers status=completed rows=4/4 "
        "imported=3 failed=1 skipped=0 elapsed_sec=2 throughput_rps=2"
    )


def test_render_import_summary_without_timing():
    line = render_summary_line(_import_job(started_at=None, completed_at=None))
    assert line.endswith("elapsed_sec=0 throughput_rps=0")


def test_render_export_summary():
    job = ExportJob(
        id="exp",
        module="products",
        file_name="p.csv",
        created_at=START,
        expires_at=START + timedelta(days=7),
        status=JobStatus.COMPLETED,
        rows_exported=12,
        started_at=START,
        completed_at=START + timedelta(milliseconds=250),
    )
    assert render_summary_line(job) == "SUMMARY kind=export job=exp module=products status=completed rows=12 elapsed_sec=0.25"


def test_format_number():
    assert format_number(0) == "0"
    assert format_number(3.0) == "3"
    assert format_number(1.23456) == "1.235"
    assert format_number(0.0012) == "0.0012"
    assert format_number(1666.6666) == "1666.667"
