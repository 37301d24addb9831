from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from recordport.models.field_definition import FieldMapping
from recordport.models.jobs import DuplicateHandling
from recordport.models.template import ImportTemplate, ValidationRule

from .conversion import DATE_FORMATS
from .mapping import MappingEngine, MappingError
from .validation import check_rule_syntax

"""Template store.

Keeps ImportTemplates (optionally persisted as one JSON file) and validates
every created, updated or imported template against the module catalog.
Templates are only removed by an explicit ``delete``.
"""

__all__ = [
    "BUNDLE_KEYS",
    "TemplateNotFoundError",
    "TemplateStore",
]

logger = logging.getLogger(__name__)

BUNDLE_KEYS = ("name", "module", "description", "field_mappings", "validation_rules", "default_values", "settings")
_UPDATABLE = frozenset(
    {
        "name",
        "description",
        "field_mappings",
        "validation_rules",
        "default_values",
        "delimiter",
        "encoding",
        "date_format",
        "duplicate_handling",
        "is_public",
    }
)


class TemplateNotFoundError(Exception):
    pass


def _now() -> datetime:
    return datetime.now(UTC)


class TemplateStore:
    def __init__(self, path: Path | None = None, mapping_engine: MappingEngine | None = None) -> None:
        self._path = path
        self.mapping_engine = mapping_engine or MappingEngine()
        self._templates: dict[str, ImportTemplate] = {}
        self._lock = threading.RLock()
        if path is not None and path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            for raw in data.get("templates", []):
                template = ImportTemplate.from_dict(raw)
                self._templates[template.id] = template

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"templates": [t.to_dict() for t in self._templates.values()]}
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        tmp.replace(self._path)

    def validate(self, template: ImportTemplate) -> None:
        """Raise MappingError if the template does not fit its module catalog."""
        engine = self.mapping_engine
        engine.check(template.module, template.field_mappings)
        catalog = engine.catalog(template.module)
        if not template.name.strip():
            raise MappingError("template name must not be empty")
        for rule in template.validation_rules:
            if not catalog.has_field(rule.field):
                raise MappingError(f"validation rule for unknown field '{rule.field}'")
            try:
                check_rule_syntax(rule.rule)
            except ValueError as e:
                raise MappingError(str(e)) from e
        unknown = [k for k in template.default_values if not catalog.has_field(k)]
        if unknown:
            raise MappingError(f"default values for unknown fields: {unknown}")
        if template.date_format not in DATE_FORMATS:
            raise MappingError(f"unsupported date format '{template.date_format}'")
        if len(template.delimiter) != 1:
            raise MappingError(f"delimiter must be a single character, got {template.delimiter!r}")

    # --- CRUD ---------------------------------------------------------------

    def create(
        self,
        name: str,
        module: str,
        field_mappings: Sequence[FieldMapping],
        *,
        owner_id: str = "local",
        description: str | None = None,
        validation_rules: Sequence[ValidationRule] = (),
        default_values: dict[str, Any] | None = None,
        delimiter: str = ",",
        encoding: str = "utf-8",
        date_format: str = "YYYY-MM-DD",
        duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP,
        is_public: bool = False,
    ) -> ImportTemplate:
        now = _now()
        template = ImportTemplate(
            id=uuid.uuid4().hex,
            name=name,
            module=module,
            owner_id=owner_id,
            field_mappings=tuple(field_mappings),
            created_at=now,
            updated_at=now,
            description=description,
            validation_rules=tuple(validation_rules),
            default_values=dict(default_values or {}),
            delimiter=delimiter,
            encoding=encoding,
            date_format=date_format,
            duplicate_handling=duplicate_handling,
            is_public=is_public,
        )
        self.validate(template)
        with self._lock:
            self._templates[template.id] = template
            self._save()
        logger.debug(f"template created: {template.id} ({template.name})")
        return template

    def get(self, template_id: str) -> ImportTemplate:
        with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"template not found: {template_id}")
        return template

    def list_templates(self, module: str | None = None, search: str | None = None) -> list[ImportTemplate]:
        """Templates ordered by usage: most used first, then most recently used."""
        with self._lock:
            templates = list(self._templates.values())
        if module is not None:
            templates = [t for t in templates if t.module == module]
        if search:
            needle = search.lower()
            templates = [
                t
                for t in templates
                if needle in t.name.lower() or needle in t.module.lower() or needle in (t.description or "").lower()
            ]
        return sorted(templates, key=lambda t: (t.times_used, t.last_used or t.updated_at), reverse=True)

    def update(self, template_id: str, **changes: Any) -> ImportTemplate:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise MappingError(f"template attributes cannot be updated: {sorted(unknown)}")
        if "field_mappings" in changes:
            changes["field_mappings"] = tuple(changes["field_mappings"])
        if "validation_rules" in changes:
            changes["validation_rules"] = tuple(changes["validation_rules"])
        with self._lock:
            template = replace(self.get(template_id), updated_at=_now(), **changes)
            self.validate(template)
            self._templates[template_id] = template
            self._save()
        return template

    def delete(self, template_id: str) -> None:
        with self._lock:
            self.get(template_id)
            del self._templates[template_id]
            self._save()

    def record_use(self, template_id: str) -> ImportTemplate:
        """Count one job seeded from the template."""
        with self._lock:
            template = self.get(template_id)
            template = replace(template, times_used=template.times_used + 1, last_used=_now())
            self._templates[template_id] = template
            self._save()
        return template

    def duplicate(self, template_id: str, owner_id: str | None = None) -> ImportTemplate:
        source = self.get(template_id)
        now = _now()
        copy = replace(
            source,
            id=uuid.uuid4().hex,
            name=f"{source.name} (Copy)",
            owner_id=owner_id or source.owner_id,
            times_used=0,
            last_used=None,
            is_public=False,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._templates[copy.id] = copy
            self._save()
        return copy

    # --- bundles ------------------------------------------------------------

    def export_bundle(self, template_id: str) -> dict[str, Any]:
        """Portable template definition without ids, ownership or usage stats."""
        t = self.get(template_id)
        return {
            "name": t.name,
            "module": t.module,
            "description": t.description,
            "field_mappings": [m.to_dict() for m in t.field_mappings],
            "validation_rules": [r.to_dict() for r in t.validation_rules],
            "default_values": dict(t.default_values),
            "settings": t.settings(),
        }

    def import_bundle(self, bundle: dict[str, Any], owner_id: str = "local") -> ImportTemplate:
        """Create a template from an exported bundle.

        Raises:
            MappingError: malformed bundle or content that does not fit the catalog
        """
        missing = [k for k in ("name", "module", "field_mappings") if k not in bundle]
        if missing:
            raise MappingError(f"template bundle is missing keys: {missing}")
        settings = bundle.get("settings") or {}
        try:
            mappings = [FieldMapping.from_dict(m) for m in bundle["field_mappings"]]
            rules = [ValidationRule.from_dict(r) for r in bundle.get("validation_rules") or []]
            policy = DuplicateHandling(settings.get("duplicate_handling", "skip"))
        except (KeyError, TypeError, ValueError) as e:
            raise MappingError(f"invalid template bundle: {e}") from e
        return self.create(
            bundle["name"],
            bundle["module"],
            mappings,
            owner_id=owner_id,
            description=bundle.get("description"),
            validation_rules=rules,
            default_values=bundle.get("default_values") or {},
            delimiter=settings.get("delimiter", ","),
            encoding=settings.get("encoding", "utf-8"),
            date_format=settings.get("date_format", "YYYY-MM-DD"),
            duplicate_handling=policy,
        )
