from __future__ import annotations

import json
import threading
from pathlib import Path

from recordport.logging.error_log import ErrorLogBuffer, ErrorRecord

ERROR_LOG_KEYS = {"timestamp", "job_id", "module", "row", "column", "error_type", "message"}


def test_error_log_buffer_flush(temp_workdir: Path):
    buf = ErrorLogBuffer()
    buf.append(ErrorRecord.create("job1", "customers", 1, "Email", "CONVERSION_ERROR", "must be a valid email address"))
    buf.append(ErrorRecord.create("job1", "customers", 2, "Company Name", "STORE_ERROR", "duplicate key"))
    path = buf.flush()
    assert path is not None and path.exists()
    assert path.parent == Path("./logs")
    assert path.name.startswith("errors-") and path.suffix == ".log"
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    for raw in lines:
        assert set(json.loads(raw).keys()) == ERROR_LOG_KEYS
    # buffer cleared after flush
    assert len(buf) == 0


def test_error_log_buffer_multiple_flushes_append(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("job1", "products", 1, "SKU", "STORE_ERROR", "dup"))
    path = buf.flush()
    size1 = path.stat().st_size
    buf.append(ErrorRecord.create("job1", "products", 2, "SKU", "STORE_ERROR", "dup2"))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1
    assert len(path2.read_text(encoding="utf-8").splitlines()) == 2


def test_empty_flush_creates_no_file(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_concurrent_appends(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)

    def worker(start: int) -> None:
        for row in range(start, start + 50):
            buf.append(ErrorRecord.create("job1", "customers", row, "", "STORE_ERROR", "x"))

    threads = [threading.Thread(target=worker, args=(i * 50,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(buf) == 200
    path = buf.flush()
    assert len(path.read_text(encoding="utf-8").splitlines()) == 200
