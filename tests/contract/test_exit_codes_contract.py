from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any
from unittest.mock import patch

from recordport.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL
from recordport.cli.__main__ import main as cli_main
from recordport.db.memory_store import InMemoryRecordStore
from recordport.db.store import StoreError, StoreUnavailableError
from recordport.logging.init import reset_logging

"""Exit code contract: 0 success, 2 partial failure, 1 fatal."""


class _RejectingStore(InMemoryRecordStore):
    """Refuses to insert one company, like a failing constraint would."""

    def insert(self, module: str, record: Mapping[str, Any], job_tag: str | None = None) -> str:
        if record.get("company_name") == "Globex":
            raise StoreError('duplicate key value violates unique constraint "customers_email_key"')
        return super().insert(module, record, job_tag)


def _run(argv: list[str], capsys) -> tuple[int, str]:
    reset_logging()
    code = cli_main(argv)
    return code, capsys.readouterr().out


def _csv(workdir: Path, text: str) -> str:
    path = workdir / "data" / "customers.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_exit_code_values():
    assert (EXIT_SUCCESS_ALL, EXIT_FATAL, EXIT_PARTIAL_FAILURE) == (0, 1, 2)


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    (temp_workdir / "config" / "recordport.yml").write_text("unknown_key: 1\n", encoding="utf-8")
    code, out = _run(["jobs"], capsys)
    assert code == 1
    assert "ERROR config:" in out


def test_exit_code_all_success(temp_workdir: Path, write_config, customers_csv: str, capsys):
    code, out = _run(["import", _csv(temp_workdir, customers_csv), "-m", "customers"], capsys)
    assert code == 0
    assert "failed=0" in out


def test_exit_code_validation_refused(temp_workdir: Path, write_config, capsys):
    path = _csv(temp_workdir, "Company Name,Email\nAcme,a@acme.test\nGlobex,not-an-email\n")
    code, out = _run(["import", path, "-m", "customers"], capsys)
    assert code == 2
    assert "ERROR import refused: import blocked by 1 validation errors" in out
    assert "SUMMARY" not in out


def test_exit_code_partial_failure(temp_workdir: Path, write_config, customers_csv: str, capsys):
    store = _RejectingStore()
    with patch("recordport.cli.__main__.InMemoryRecordStore", return_value=store):
        code, out = _run(["import", _csv(temp_workdir, customers_csv), "-m", "customers"], capsys)
    assert code == 2
    assert "imported=2 failed=1" in out
    assert "ERROR Row 2 (Company Name): duplicate key value" in out
    assert store.count("customers") == 2


def test_exit_code_store_unavailable_is_fatal(temp_workdir: Path, write_config, customers_csv: str, capsys):
    store = InMemoryRecordStore()
    with patch("recordport.cli.__main__.InMemoryRecordStore", return_value=store), \
            patch.object(store, "insert", side_effect=StoreUnavailableError("database unavailable: gone")):
        code, out = _run(["import", _csv(temp_workdir, customers_csv), "-m", "customers"], capsys)
    assert code == 1
    assert "ERROR Job: database unavailable: gone" in out
    assert "status=failed" in out


def test_exit_code_rollback_with_discrepancies(temp_workdir: Path, write_config, customers_csv: str, capsys):
    # each invocation opens a fresh in-memory store, so the imported records are already gone
    _run(["import", _csv(temp_workdir, customers_csv), "-m", "customers"], capsys)
    job_id = _run(["jobs", "--kind", "import"], capsys)[1].split()[0]
    code, out = _run(["rollback", job_id], capsys)
    assert code == 2
    assert "WARN rollback" in out and "3 records were already removed" in out


def test_exit_code_second_rollback_is_fatal(temp_workdir: Path, write_config, customers_csv: str, capsys):
    store = InMemoryRecordStore()
    with patch("recordport.cli.__main__.InMemoryRecordStore", return_value=store):
        _run(["import", _csv(temp_workdir, customers_csv), "-m", "customers"], capsys)
        job_id = _run(["jobs", "--kind", "import"], capsys)[1].split()[0]
        assert _run(["rollback", job_id], capsys)[0] == 0
        code, out = _run(["rollback", job_id], capsys)
    assert code == 1
    assert f"ERROR rollback: job {job_id} was already rolled back" in out
