from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from recordport.models.field_definition import DataType, FieldDefinition

"""Static field catalog per business module.

The catalog is a packaged YAML file (modules.yml) validated against
catalog_schema.json. Each module lists its FieldDefinitions in order, the
natural key used for duplicate matching, and the header patterns used by
auto-mapping.
"""

__all__ = [
    "CATALOG_PATH",
    "CatalogError",
    "ModuleCatalog",
    "get_module",
    "load_catalog",
    "module_names",
]

_HERE = Path(__file__).parent
CATALOG_PATH = _HERE / "modules.yml"
SCHEMA_PATH = _HERE / "catalog_schema.json"


class CatalogError(Exception):
    pass


@dataclass(frozen=True)
class ModuleCatalog:
    """FieldDefinitions and matching metadata for one module."""
    module: str
    fields: tuple[FieldDefinition, ...]
    natural_key: tuple[str, ...]
    patterns: dict[str, tuple[str, ...]]  # field -> lower-case header substrings

    def get(self, field: str) -> FieldDefinition | None:
        for definition in self.fields:
            if definition.field == field:
                return definition
        return None

    def has_field(self, field: str) -> bool:
        return self.get(field) is not None

    @property
    def field_names(self) -> list[str]:
        return [f.field for f in self.fields]

    @property
    def required_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.required]

    def patterns_for(self, field: str) -> tuple[str, ...]:
        return self.patterns.get(field) or (field.lower(),)


def _build_module(name: str, raw: dict[str, Any]) -> ModuleCatalog:
    fields: list[FieldDefinition] = []
    patterns: dict[str, tuple[str, ...]] = {}
    seen: set[str] = set()
    for item in raw["fields"]:
        fname = item["field"]
        if fname in seen:
            raise CatalogError(f"module '{name}' defines field '{fname}' twice")
        seen.add(fname)
        valid = item.get("valid_values")
        fields.append(
            FieldDefinition(
                field=fname,
                label=item["label"],
                data_type=DataType(item["type"]),
                required=bool(item.get("required", False)),
                max_length=item.get("max_length"),
                valid_values=tuple(valid) if valid else None,
                default_value=item.get("default_value"),
            )
        )
        if item.get("patterns"):
            patterns[fname] = tuple(p.lower() for p in item["patterns"])
    natural_key = tuple(raw["natural_key"])
    missing = [k for k in natural_key if k not in seen]
    if missing:
        raise CatalogError(f"module '{name}' natural_key references unknown fields: {missing}")
    return ModuleCatalog(module=name, fields=tuple(fields), natural_key=natural_key, patterns=patterns)


def load_catalog(path: Path = CATALOG_PATH) -> dict[str, ModuleCatalog]:
    """Load and validate a catalog file.

    Raises:
        CatalogError: file missing, invalid YAML, schema violation, duplicate
            field names or a natural key naming an unknown field.
    """
    if not path.exists():
        raise CatalogError(f"catalog file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise CatalogError(f"invalid yaml: {e}") from e
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except ValidationError as e:
        raise CatalogError(f"catalog validation failed: {e.message}") from e
    return {name: _build_module(name, raw) for name, raw in data.items()}


@lru_cache(maxsize=1)
def _default_catalog() -> dict[str, ModuleCatalog]:
    return load_catalog(CATALOG_PATH)


def module_names() -> list[str]:
    return list(_default_catalog().keys())


def get_module(module: str) -> ModuleCatalog:
    """Return the packaged catalog entry for ``module``.

    Raises:
        CatalogError: unknown module
    """
    catalog = _default_catalog()
    try:
        return catalog[module]
    except KeyError:
        raise CatalogError(
            f"unknown module '{module}' (supported: {', '.join(sorted(catalog))})"
        ) from None
