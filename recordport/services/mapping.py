from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from recordport.catalog import CatalogError, ModuleCatalog, get_module
from recordport.models.field_definition import DataType, FieldDefinition, FieldMapping
from recordport.models.template import ImportTemplate

from .transforms import transform_ids

"""Field mapping engine.

Produces and edits the list of FieldMappings binding CSV headers to a
module's catalog fields. Mapping lists are immutable tuples of frozen
FieldMappings; every edit returns a new list.

Invariants enforced by ``check``:
- ``db_field`` (when set) names a catalog field of the module
- at most one active mapping per ``db_field``
- transform ids and data types are known
- optionally, every mapped column exists in the file headers
"""

__all__ = [
    "MappingEngine",
    "MappingError",
]

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class MappingError(Exception):
    pass


class MappingEngine:
    def __init__(self, catalog_lookup=get_module) -> None:
        self._lookup = catalog_lookup

    def catalog(self, module: str) -> ModuleCatalog:
        try:
            return self._lookup(module)
        except CatalogError as e:
            raise MappingError(str(e)) from e

    # --- initial mappings -------------------------------------------------

    def auto_suggest(self, module: str, headers: Sequence[str]) -> list[FieldMapping]:
        """Bind each header to the first catalog field whose patterns match.

        Headers are lower-cased and tested in catalog order against each
        field's substring patterns; a field is bound at most once.
        """
        catalog = self.catalog(module)
        used: set[str] = set()
        mappings: list[FieldMapping] = []
        for header in headers:
            needle = header.lower()
            match: FieldDefinition | None = None
            for definition in catalog.fields:
                if definition.field in used:
                    continue
                if any(p in needle for p in catalog.patterns_for(definition.field)):
                    match = definition
                    break
            if match is None:
                mappings.append(FieldMapping(csv_column=header))
            else:
                used.add(match.field)
                mappings.append(FieldMapping.bind(header, match))
        logger.debug(f"auto-mapped {len(used)}/{len(headers)} columns for {module}")
        return mappings

    def from_template(self, headers: Sequence[str], template: ImportTemplate) -> list[FieldMapping]:
        """Seed mappings from a template.

        Columns must match exactly; template mappings for columns absent from
        the file are dropped and uncovered headers stay unmapped. Template
        default values fill mappings that carry no default of their own.
        """
        by_column = {m.csv_column: m for m in template.field_mappings}
        mappings: list[FieldMapping] = []
        for header in headers:
            mapping = by_column.get(header)
            if mapping is None:
                mappings.append(FieldMapping(csv_column=header))
                continue
            if mapping.is_active and mapping.default_value is None and mapping.db_field in template.default_values:
                mapping = mapping.with_changes(default_value=template.default_values[mapping.db_field])
            mappings.append(mapping)
        dropped = [c for c in by_column if c not in headers]
        if dropped:
            logger.debug(f"template '{template.name}' columns not in file: {dropped}")
        self.check(template.module, mappings)
        return mappings

    def initial_mappings(
        self, module: str, headers: Sequence[str], template: ImportTemplate | None = None
    ) -> list[FieldMapping]:
        if template is not None:
            if template.module != module:
                raise MappingError(f"template '{template.name}' is for module '{template.module}', not '{module}'")
            return self.from_template(headers, template)
        return self.auto_suggest(module, headers)

    # --- manual edits -----------------------------------------------------

    def add_mapping(self, mappings: Sequence[FieldMapping], headers: Sequence[str]) -> list[FieldMapping]:
        """Append an unmapped entry for the first header without one."""
        covered = {m.csv_column for m in mappings}
        for header in headers:
            if header not in covered:
                return [*mappings, FieldMapping(csv_column=header)]
        raise MappingError("every column already has a mapping")

    def remove_mapping(self, mappings: Sequence[FieldMapping], index: int) -> list[FieldMapping]:
        self._check_index(mappings, index)
        return [m for i, m in enumerate(mappings) if i != index]

    def edit_mapping(
        self,
        module: str,
        mappings: Sequence[FieldMapping],
        index: int,
        *,
        db_field: str | None = _UNSET,
        **overrides: Any,
    ) -> list[FieldMapping]:
        """Assign/clear the target of one mapping and/or set its overrides.

        Assigning a new target copies the definition's attributes (the current
        transform is kept); ``db_field=None`` clears the mapping. Remaining
        keyword arguments (transform, required, data_type, default_value,
        max_length, valid_values) are applied afterwards.
        """
        self._check_index(mappings, index)
        mapping = mappings[index]
        catalog = self.catalog(module)
        if db_field is None:
            mapping = mapping.unbind()
        elif db_field is not _UNSET and db_field != mapping.db_field:
            definition = catalog.get(db_field)
            if definition is None:
                raise MappingError(f"'{db_field}' is not a field of module '{module}'")
            mapping = FieldMapping.bind(mapping.csv_column, definition, transform=mapping.transform)
        if "data_type" in overrides and isinstance(overrides["data_type"], str):
            overrides["data_type"] = self._data_type(overrides["data_type"])
        if "valid_values" in overrides and overrides["valid_values"] is not None:
            overrides["valid_values"] = tuple(overrides["valid_values"])
        try:
            mapping = mapping.with_changes(**overrides)
        except TypeError as e:
            raise MappingError(f"invalid mapping override: {e}") from e
        updated = [*mappings[:index], mapping, *mappings[index + 1:]]
        self.check(module, updated)
        return updated

    def available_targets(
        self, module: str, mappings: Sequence[FieldMapping], index: int | None = None
    ) -> list[FieldDefinition]:
        """Catalog fields not bound by any mapping (other than ``index``)."""
        used = {m.db_field for i, m in enumerate(mappings) if m.is_active and i != index}
        return [f for f in self.catalog(module).fields if f.field not in used]

    def unmapped_required(self, module: str, mappings: Sequence[FieldMapping]) -> list[FieldDefinition]:
        bound = {m.db_field for m in mappings if m.is_active}
        return [f for f in self.catalog(module).required_fields if f.field not in bound]

    # --- invariants -------------------------------------------------------

    def check(
        self, module: str, mappings: Sequence[FieldMapping], headers: Sequence[str] | None = None
    ) -> None:
        """Raise MappingError if ``mappings`` break an invariant."""
        catalog = self.catalog(module)
        known_transforms = transform_ids()
        seen: dict[str, str] = {}
        for m in mappings:
            if m.transform and m.transform not in known_transforms:
                raise MappingError(f"unknown transform '{m.transform}' on column '{m.csv_column}'")
            if m.data_type is not None and not isinstance(m.data_type, DataType):
                raise MappingError(f"unknown data type '{m.data_type}' on column '{m.csv_column}'")
            if headers is not None and m.csv_column not in headers:
                raise MappingError(f"column '{m.csv_column}' is not present in the file")
            if not m.is_active:
                continue
            if not catalog.has_field(m.db_field):
                raise MappingError(f"'{m.db_field}' is not a field of module '{module}'")
            if m.db_field in seen:
                raise MappingError(
                    f"field '{m.db_field}' is mapped twice (columns '{seen[m.db_field]}' and '{m.csv_column}')"
                )
            seen[m.db_field] = m.csv_column

    @staticmethod
    def _data_type(raw: str) -> DataType:
        try:
            return DataType(raw)
        except ValueError:
            raise MappingError(f"unknown data type '{raw}'") from None

    @staticmethod
    def _check_index(mappings: Sequence[FieldMapping], index: int) -> None:
        if not 0 <= index < len(mappings):
            raise MappingError(f"no mapping at index {index}")
