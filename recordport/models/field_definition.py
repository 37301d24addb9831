from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

"""Canonical field and column binding models.

FieldDefinition is the static, typed destination attribute of a module (loaded
from the packaged catalog). FieldMapping binds one CSV column to at most one
FieldDefinition; its overrides start as a copy of the definition but may be
edited independently.
"""

__all__ = [
    "DataType",
    "FieldDefinition",
    "FieldMapping",
]


class DataType(Enum):
    """Value types understood by validation, conversion and export formatting."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"
    CURRENCY = "currency"


@dataclass(frozen=True)
class FieldDefinition:
    """Typed destination attribute of a module."""
    field: str  # canonical name (store column)
    label: str  # human readable name, used as export header
    data_type: DataType = DataType.STRING
    required: bool = False
    max_length: int | None = None
    valid_values: tuple[str, ...] | None = None  # enumerated set
    default_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "label": self.label,
            "data_type": self.data_type.value,
            "required": self.required,
            "max_length": self.max_length,
            "valid_values": list(self.valid_values) if self.valid_values is not None else None,
            "default_value": self.default_value,
        }


@dataclass(frozen=True)
class FieldMapping:
    """Binding from a CSV column to a canonical field.

    ``db_field=None`` means the column is unmapped and ignored by validation
    and import. The remaining attributes override the bound FieldDefinition.
    """
    csv_column: str
    db_field: str | None = None
    required: bool = False
    data_type: DataType | None = None
    transform: str | None = None  # named transform id
    default_value: Any = None
    max_length: int | None = None
    valid_values: tuple[str, ...] | None = None

    @property
    def is_active(self) -> bool:
        return bool(self.db_field)

    @classmethod
    def bind(cls, csv_column: str, definition: FieldDefinition, transform: str | None = None) -> FieldMapping:
        """Create a mapping with overrides copied from ``definition``."""
        return cls(
            csv_column=csv_column,
            db_field=definition.field,
            required=definition.required,
            data_type=definition.data_type,
            transform=transform,
            default_value=definition.default_value,
            max_length=definition.max_length,
            valid_values=definition.valid_values,
        )

    def unbind(self) -> FieldMapping:
        return FieldMapping(csv_column=self.csv_column)

    def with_changes(self, **changes: Any) -> FieldMapping:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "csv_column": self.csv_column,
            "db_field": self.db_field,
            "required": self.required,
            "data_type": self.data_type.value if self.data_type is not None else None,
            "transform": self.transform,
            "default_value": self.default_value,
            "max_length": self.max_length,
            "valid_values": list(self.valid_values) if self.valid_values is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldMapping:
        """Build a mapping from a plain dict (templates, bundles, CLI mapping files).

        Raises ValueError for an unknown ``data_type``.
        """
        raw_type = data.get("data_type")
        valid = data.get("valid_values")
        return cls(
            csv_column=str(data["csv_column"]),
            db_field=data.get("db_field") or None,
            required=bool(data.get("required", False)),
            data_type=DataType(raw_type) if raw_type else None,
            transform=data.get("transform") or None,
            default_value=data.get("default_value"),
            max_length=data.get("max_length"),
            valid_values=tuple(str(v) for v in valid) if valid else None,
        )
