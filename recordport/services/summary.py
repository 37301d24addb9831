from __future__ import annotations

from recordport.models.jobs import ExportJob, ImportJob

"""SUMMARY line rendering for finished jobs.

Import:
SUMMARY kind=import job={id} module={module} status={status} rows={processed}/{total}
imported={n} failed={n} skipped={n} elapsed_sec={elapsed} throughput_rps={rps}

Export:
SUMMARY kind=export job={id} module={module} status={status} rows={exported}
elapsed_sec={elapsed}

(each a single line)
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _elapsed(job: ImportJob | ExportJob) -> float:
    if job.started_at is None or job.completed_at is None:
        return 0.0
    return max((job.completed_at - job.started_at).total_seconds(), 0.0)


def render_summary_line(job: ImportJob | ExportJob) -> str:
    elapsed = _elapsed(job)
    if isinstance(job, ExportJob):
        return (
            f"SUMMARY kind=export job={job.id} module={job.module} "
            f"status={job.status.value} rows={job.rows_exported} "
            f"elapsed_sec={format_number(elapsed)}"
        )
    throughput = job.rows_processed / elapsed if elapsed > 0 else 0.0
    return (
        f"SUMMARY kind=import job={job.id} module={job.module} "
        f"status={job.status.value} "
        f"rows={job.rows_processed}/{job.total_rows} "
        f"imported={job.rows_imported} "
        f"failed={job.rows_failed} "
        f"skipped={job.rows_skipped} "
        f"elapsed_sec={format_number(elapsed)} "
        f"throughput_rps={format_number(throughput)}"
    )
