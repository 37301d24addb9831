from __future__ import annotations

import threading
from datetime import UTC, datetime
from pathlib import Path

from recordport.models.error_record import ErrorRecord

"""JSON Lines error log.

- Fixed key set per line (see ErrorRecord.to_json_line)
- One file per buffer: ``<logs_dir>/errors-YYYYMMDD-HHMMSS.log`` (UTC),
  created lazily on the first non-empty flush
- Records are buffered while a job runs and written in one flush
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """Buffer of ErrorRecords; flush appends them to the log file.

    Appends may come from executor worker threads, so the buffer is guarded by
    a lock.
    """

    def __init__(self, logs_dir: Path | str | None = None) -> None:
        self._logs_dir = Path(logs_dir) if logs_dir is not None else LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the file path, or None if empty."""
        with self._lock:
            if not self._records:
                return None
            records, self._records = self._records, []
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in records:
                f.write(r.to_json_line() + "\n")
        return fp
