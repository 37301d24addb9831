from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Configuration loader.

Responsibilities:
- Load the YAML config (``config/recordport.yml`` by default)
- Validate it against the packaged config_schema.json
- Apply defaults for every missing key; a missing file means all defaults
- Job and template state is persisted under state/ unless set to null
"""

__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "ExportConfig",
    "SCHEMA_PATH",
    "StateConfig",
    "load_config",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/recordport.yml")
DEFAULT_JOBS_PATH = "state/jobs.json"
DEFAULT_TEMPLATES_PATH = "state/templates.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ExportConfig:
    directory: str = "exports"
    expires_after_days: int = 7


@dataclass(frozen=True)
class StateConfig:
    jobs_path: str | None = None  # None -> kept in memory only; load_config defaults to state/
    templates_path: str | None = None


@dataclass(frozen=True)
class AppConfig:
    batch_size: int = 50
    max_workers: int = 4
    date_format: str = "YYYY-MM-DD"
    currency_symbol: str = "$"
    logs_directory: str = "logs"
    export: ExportConfig = field(default_factory=ExportConfig)
    state: StateConfig = field(default_factory=StateConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the config data
            violates the schema (unknown keys, wrong types, out of range).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path | None = None) -> AppConfig:
    path = path or DEFAULT_CONFIG_PATH
    if not path.exists():
        return AppConfig(state=StateConfig(jobs_path=DEFAULT_JOBS_PATH, templates_path=DEFAULT_TEMPLATES_PATH))
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    _validate_config_schema(data)

    defaults = AppConfig()
    export_raw = data.get("export") or {}
    state_raw = data.get("state") or {}
    db_raw = data.get("database") or {}
    return AppConfig(
        batch_size=data.get("batch_size", defaults.batch_size),
        max_workers=data.get("max_workers", defaults.max_workers),
        date_format=data.get("date_format", defaults.date_format),
        currency_symbol=data.get("currency_symbol", defaults.currency_symbol),
        logs_directory=data.get("logs_directory", defaults.logs_directory),
        export=ExportConfig(
            directory=export_raw.get("directory", defaults.export.directory),
            expires_after_days=export_raw.get("expires_after_days", defaults.export.expires_after_days),
        ),
        state=StateConfig(
            jobs_path=state_raw.get("jobs_path", DEFAULT_JOBS_PATH),
            templates_path=state_raw.get("templates_path", DEFAULT_TEMPLATES_PATH),
        ),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
    )
