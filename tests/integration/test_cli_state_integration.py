from __future__ import annotations

import json
from pathlib import Path

from recordport.cli.__main__ import main as cli_main
from recordport.logging.init import reset_logging

"""Integration test: job history and templates survive across CLI runs
through the JSON state files configured under ``state:``.
"""


def _run(argv: list[str], capsys) -> tuple[int, str]:
    reset_logging()
    code = cli_main(argv)
    return code, capsys.readouterr().out


def _state(workdir: Path, name: str) -> dict:
    return json.loads((workdir / "state" / name).read_text(encoding="utf-8"))


def test_jobs_and_templates_persist(temp_workdir: Path, write_config, capsys):
    bundle = temp_workdir / "bundle.json"
    bundle.write_text(
        json.dumps(
            {
                "name": "Product feed",
                "module": "products",
                "description": "weekly product feed",
                "field_mappings": [
                    {"csv_column": "Item", "db_field": "name", "required": True},
                    {"csv_column": "Code", "db_field": "sku", "required": True, "transform": "uppercase"},
                    {"csv_column": "Retail", "db_field": "price", "data_type": "currency"},
                ],
                "default_values": {"is_active": True},
                "settings": {"delimiter": "|"},
            }
        ),
        encoding="utf-8",
    )
    code, out = _run(["templates", "import", str(bundle)], capsys)
    assert code == 0
    template_id = _state(temp_workdir, "templates.json")["templates"][0]["id"]

    data = temp_workdir / "data" / "products.csv"
    data.write_text("Item|Code|Retail\nWidget|w-001|$19.99\nGadget|g-002|5\n", encoding="utf-8")
    code, out = _run(["import", str(data), "-m", "products", "--template", template_id], capsys)
    assert code == 0
    assert "imported=2" in out

    jobs = _state(temp_workdir, "jobs.json")["jobs"]
    assert len(jobs) == 1
    assert jobs[0]["status"] == "completed"
    assert jobs[0]["template_id"] == template_id

    code, out = _run(["templates", "list", "--search", "weekly"], capsys)
    assert f"{template_id}  products" in out
    assert "used=1" in out

    code, out = _run(["jobs", "--status", "completed", "--module", "products"], capsys)
    assert out.startswith(jobs[0]["id"])
    assert "rows=2/2" in out


def test_validate_does_not_create_jobs(temp_workdir: Path, write_config, customers_csv: str, capsys):
    data = temp_workdir / "data" / "customers.csv"
    data.write_text(customers_csv, encoding="utf-8")
    code, _ = _run(["validate", str(data), "-m", "customers"], capsys)
    assert code == 0
    assert not (temp_workdir / "state" / "jobs.json").exists()


def test_refused_import_leaves_no_job(temp_workdir: Path, write_config, capsys):
    data = temp_workdir / "data" / "customers.csv"
    data.write_text("Company Name,Email\n,a@x.com\n", encoding="utf-8")
    code, out = _run(["import", str(data), "-m", "customers"], capsys)
    assert code == 2
    assert "ERROR Row 1 (Company Name): Required field is empty" in out
    code, out = _run(["jobs"], capsys)
    assert "INFO no jobs" in out
