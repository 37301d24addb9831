from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from recordport.db.store import RecordStore, StoreError, normalize_key_value
from recordport.models.field_definition import DataType, FieldMapping
from recordport.models.raw_row import RawRow
from recordport.models.template import ValidationRule
from recordport.models.validation import Severity, ValidationIssue, ValidationResult

from .conversion import (
    convert_value,
    is_empty,
    parse_date,
    parse_decimal,
    validate_email,
    validate_phone,
)
from .mapping import MappingEngine
from .transforms import apply_transform

"""Validation engine.

Per row and active mapping the value goes through transform, then default,
then the checks (required, max_length, valid_values, data type, template
rules). Problems are collected as ValidationIssues; nothing is raised except
MappingError for a mapping list that breaks its invariants.

Duplicate records (natural key already stored, or repeated in the file) are
warnings only.
"""

__all__ = [
    "SAMPLE_ROW_COUNT",
    "SUPPORTED_RULES",
    "ValidationEngine",
    "check_rule_syntax",
    "matches_valid_value",
    "natural_key_for",
    "resolve_value",
]

logger = logging.getLogger(__name__)

SAMPLE_ROW_COUNT = 5
SUPPORTED_RULES = ("required", "email_format", "phone_format", "numeric", "date_format", "max_length")

_TYPE_MESSAGES = {
    DataType.NUMBER: "Value must be a valid number",
    DataType.CURRENCY: "Value must be a valid currency amount",
    DataType.BOOLEAN: "Value must be true/false, yes/no, or 1/0",
    DataType.DATE: "Value must be a valid date ({date_format})",
    DataType.EMAIL: "Value must be a valid email address",
    DataType.PHONE: "Value must be a valid phone number",
}


def resolve_value(row: RawRow, mapping: FieldMapping) -> Any:
    """Transformed value of the mapped column, defaulted when empty."""
    value = apply_transform(row.get(mapping.csv_column), mapping.transform)
    if is_empty(value) and mapping.default_value is not None:
        value = mapping.default_value
    return value


def matches_valid_value(value: Any, valid_values: Sequence[str]) -> str | None:
    """Return the catalog spelling matching ``value`` (trimmed, case-insensitive)."""
    needle = str(value).strip().lower()
    for candidate in valid_values:
        if candidate.strip().lower() == needle:
            return candidate
    return None


def natural_key_for(natural_key: Sequence[str], values: dict[str, Any]) -> dict[str, Any] | None:
    """Key dict for lookups, or None when a key field is empty or unmapped."""
    key: dict[str, Any] = {}
    for name in natural_key:
        value = values.get(name)
        if is_empty(value):
            return None
        key[name] = value
    return key


def check_rule_syntax(rule: str) -> None:
    """Raise ValueError for an unsupported template rule."""
    name, _, arg = rule.partition(":")
    if name not in SUPPORTED_RULES:
        raise ValueError(f"unsupported validation rule '{rule}'")
    if name == "max_length":
        if not arg.isdigit() or int(arg) < 1:
            raise ValueError(f"max_length rule needs a positive integer: '{rule}'")
    elif arg:
        raise ValueError(f"rule '{name}' takes no argument")


def _rule_failure(rule: ValidationRule, value: Any, date_format: str) -> str | None:
    name, _, arg = rule.rule.partition(":")
    if name == "required":
        return "Required field is empty" if is_empty(value) else None
    if is_empty(value):
        return None
    text = str(value)
    if name == "email_format" and not validate_email(text):
        return "Value must be a valid email address"
    if name == "phone_format" and not validate_phone(text):
        return "Value must be a valid phone number"
    if name == "max_length" and arg.isdigit() and len(text) > int(arg):
        return f"Value exceeds maximum length of {arg}"
    if name == "numeric":
        try:
            parse_decimal(value)
        except ValueError:
            return "Value must be numeric"
    if name == "date_format":
        try:
            parse_date(value, date_format)
        except ValueError:
            return f"Value must be a valid date ({date_format})"
    return None


class ValidationEngine:
    def __init__(
        self,
        mapping_engine: MappingEngine | None = None,
        store: RecordStore | None = None,
        date_format: str = "YYYY-MM-DD",
    ) -> None:
        self.mapping_engine = mapping_engine or MappingEngine()
        self.store = store
        self.date_format = date_format

    def validate(
        self,
        headers: Sequence[str],
        rows: Sequence[RawRow],
        mappings: Sequence[FieldMapping],
        module: str,
        *,
        rules: Sequence[ValidationRule] = (),
        date_format: str | None = None,
    ) -> ValidationResult:
        """Validate parsed rows against ``mappings`` for ``module``.

        Raises:
            MappingError: unknown module, unknown catalog field, duplicate
                target, unknown transform or data type.
        """
        date_format = date_format or self.date_format
        engine = self.mapping_engine
        engine.check(module, mappings)
        catalog = engine.catalog(module)
        issues: list[ValidationIssue] = []

        for definition in engine.unmapped_required(module, mappings):
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    column=definition.field,
                    message=f"Required field '{definition.label}' is not mapped",
                )
            )
        header_set = set(headers)
        active = [m for m in mappings if m.is_active]
        for m in active:
            if m.csv_column not in header_set:
                issues.append(
                    ValidationIssue(
                        Severity.ERROR,
                        column=m.csv_column,
                        message=f"Mapped column '{m.csv_column}' is missing from the file",
                    )
                )
        present = [m for m in active if m.csv_column in header_set]
        rules_by_field: dict[str, list[ValidationRule]] = {}
        for rule in rules:
            rules_by_field.setdefault(rule.field, []).append(rule)

        key_mapping = {m.db_field: m for m in present if m.db_field in catalog.natural_key}
        check_duplicates = len(key_mapping) == len(catalog.natural_key)
        key_column = key_mapping[catalog.natural_key[0]].csv_column if check_duplicates else ""
        seen_keys: dict[tuple[str, ...], int] = {}

        for row in rows:
            values: dict[str, Any] = {}
            for m in present:
                value = resolve_value(row, m)
                values[m.db_field] = value
                issues.extend(self._check_value(row, m, value, rules_by_field.get(m.db_field, ()), date_format))
            if check_duplicates:
                issues.extend(self._check_duplicate(module, catalog.natural_key, values, row, key_column, seen_keys))

        errors = sum(1 for i in issues if i.is_error)
        logger.debug(f"validated {len(rows)} rows for {module}: {errors} errors, {len(issues) - errors} warnings")
        return ValidationResult(
            is_valid=errors == 0,
            issues=tuple(issues),
            row_count=len(rows),
            column_count=len(headers),
            headers=tuple(headers),
            sample_rows=tuple(r.as_dict() for r in rows[:SAMPLE_ROW_COUNT]),
        )

    def _check_value(
        self,
        row: RawRow,
        m: FieldMapping,
        value: Any,
        rules: Sequence[ValidationRule],
        date_format: str,
    ) -> list[ValidationIssue]:
        raw = row.get(m.csv_column)
        out: list[ValidationIssue] = []

        def error(message: str) -> None:
            out.append(ValidationIssue(Severity.ERROR, column=m.csv_column, message=message, row=row.row_number, value=raw))

        if m.required and is_empty(value):
            error("Required field is empty")
            return out
        for rule in rules:
            failure = _rule_failure(rule, value, date_format)
            if failure:
                error(rule.message or failure)
        if is_empty(value):
            return out
        if m.max_length is not None and len(str(value)) > m.max_length:
            error(f"Value exceeds maximum length of {m.max_length}")
        if m.valid_values and matches_valid_value(value, m.valid_values) is None:
            error(f"Invalid value. Must be one of: {', '.join(m.valid_values)}")
        if m.data_type is not None and m.data_type is not DataType.STRING:
            try:
                convert_value(value, m.data_type, date_format)
            except ValueError:
                error(_TYPE_MESSAGES[m.data_type].format(date_format=date_format))
        return out

    def _check_duplicate(
        self,
        module: str,
        natural_key: Sequence[str],
        values: dict[str, Any],
        row: RawRow,
        column: str,
        seen_keys: dict[tuple[str, ...], int],
    ) -> list[ValidationIssue]:
        key = natural_key_for(natural_key, values)
        if key is None:
            return []
        out: list[ValidationIssue] = []
        normalized = tuple(normalize_key_value(v) for v in key.values())
        shown = ", ".join(str(v) for v in key.values())
        if normalized in seen_keys:
            out.append(
                ValidationIssue(
                    Severity.WARNING,
                    column=column,
                    message=f"Duplicate record in file (same key as row {seen_keys[normalized]})",
                    row=row.row_number,
                    value=shown,
                )
            )
        else:
            seen_keys[normalized] = row.row_number
        if self.store is not None:
            try:
                existing = self.store.find_by_natural_key(module, key)
            except StoreError as e:
                logger.warning(f"duplicate lookup failed for row {row.row_number}: {e}")
                existing = None
            if existing is not None:
                out.append(
                    ValidationIssue(
                        Severity.WARNING,
                        column=column,
                        message="Record already exists",
                        row=row.row_number,
                        value=shown,
                    )
                )
        return out
