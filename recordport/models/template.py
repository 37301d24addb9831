from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .field_definition import FieldMapping
from .jobs import DuplicateHandling

"""ImportTemplate model: a named, reusable mapping + settings bundle for one module."""

__all__ = [
    "ImportTemplate",
    "ValidationRule",
]


@dataclass(frozen=True)
class ValidationRule:
    """Extra per-field check attached to a template (e.g. ``email_format``, ``max_length:20``)."""
    field: str
    rule: str
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "rule": self.rule, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationRule:
        return cls(field=data["field"], rule=data["rule"], message=data.get("message"))


@dataclass(frozen=True)
class ImportTemplate:
    id: str
    name: str
    module: str
    owner_id: str
    field_mappings: tuple[FieldMapping, ...]
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    validation_rules: tuple[ValidationRule, ...] = ()
    default_values: dict[str, Any] = field(default_factory=dict)
    delimiter: str = ","
    encoding: str = "utf-8"
    date_format: str = "YYYY-MM-DD"
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    times_used: int = 0
    last_used: datetime | None = None
    is_public: bool = False

    def settings(self) -> dict[str, Any]:
        return {
            "delimiter": self.delimiter,
            "encoding": self.encoding,
            "date_format": self.date_format,
            "duplicate_handling": self.duplicate_handling.value,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "module": self.module,
            "owner_id": self.owner_id,
            "description": self.description,
            "field_mappings": [m.to_dict() for m in self.field_mappings],
            "validation_rules": [r.to_dict() for r in self.validation_rules],
            "default_values": dict(self.default_values),
            **self.settings(),
            "times_used": self.times_used,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "is_public": self.is_public,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportTemplate:
        last_used = data.get("last_used")
        return cls(
            id=data["id"],
            name=data["name"],
            module=data["module"],
            owner_id=data["owner_id"],
            description=data.get("description"),
            field_mappings=tuple(FieldMapping.from_dict(m) for m in data.get("field_mappings", [])),
            validation_rules=tuple(ValidationRule.from_dict(r) for r in data.get("validation_rules", [])),
            default_values=dict(data.get("default_values") or {}),
            delimiter=data.get("delimiter", ","),
            encoding=data.get("encoding", "utf-8"),
            date_format=data.get("date_format", "YYYY-MM-DD"),
            duplicate_handling=DuplicateHandling(data.get("duplicate_handling", "skip")),
            times_used=int(data.get("times_used", 0)),
            last_used=datetime.fromisoformat(last_used) if last_used else None,
            is_public=bool(data.get("is_public", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
