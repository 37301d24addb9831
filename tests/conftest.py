# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from recordport.config.loader import AppConfig, ExportConfig
from recordport.db.memory_store import InMemoryRecordStore
from recordport.logging.init import reset_logging
from recordport.services.data_tools import DataToolsService
from recordport.services.job_tracker import JobTracker


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """batch_size: 2
max_workers: 2
date_format: YYYY-MM-DD
currency_symbol: "$"
logs_directory: ./logs
export:
  directory: ./exports
  expires_after_days: 7
state:
  jobs_path: ./state/jobs.json
  templates_path: ./state/templates.json
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "recordport.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def customers_csv() -> str:
    return (
        "Company Name,Contact Name,Email,Phone\n"
        "Acme Corp,Jane Doe,jane@acme.test,555-123-4567\n"
        "Globex,Hank Scorpio,hank@globex.test,(555) 987-6543\n"
        "Initech,Bill Lumbergh,bill@initech.test,555.222.3333\n"
    )


@pytest.fixture()
def products_csv() -> str:
    return (
        "Product Name,SKU,Price,Active\n"
        "Widget,W-001,$19.99,yes\n"
        "Gadget,G-002,\"$1,250.00\",no\n"
    )


@pytest.fixture()
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def tracker() -> JobTracker:
    return JobTracker()


@pytest.fixture()
def app_config(temp_workdir: Path) -> AppConfig:
    return AppConfig(
        batch_size=2,
        max_workers=2,
        logs_directory=str(temp_workdir / "logs"),
        export=ExportConfig(directory=str(temp_workdir / "exports"), expires_after_days=7),
    )


@pytest.fixture()
def service(memory_store: InMemoryRecordStore, app_config: AppConfig):
    with DataToolsService(memory_store, app_config, show_progress=False) as svc:
        yield svc


@pytest.fixture()
def clean_logging():
    reset_logging()
    yield
    reset_logging()
