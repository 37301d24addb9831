from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from recordport.catalog import ModuleCatalog, get_module
from recordport.csvio.writer import render_csv
from recordport.db.store import RecordStore
from recordport.models.field_definition import DataType, FieldDefinition

from .conversion import format_date, parse_boolean, parse_currency, parse_date

"""Export generator: store records -> CSV bytes.

Values are formatted by the field's data type (currency with two decimals
and symbol, booleans as Yes/No, dates in the configured format); a record
that cannot be formatted is skipped with a warning.
"""

__all__ = [
    "ExportError",
    "ExportGenerator",
    "ExportOptions",
    "ExportResult",
    "format_value",
]

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


class ExportError(Exception):
    pass


@dataclass(frozen=True)
class ExportOptions:
    delimiter: str = ","
    include_headers: bool = True
    date_format: str = "YYYY-MM-DD"
    currency_symbol: str = "$"
    filter: dict[str, Any] | None = None


@dataclass(frozen=True)
class ExportResult:
    content: bytes
    record_count: int  # data rows written (header excluded)
    file_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)


def format_value(
    value: Any,
    data_type: DataType,
    *,
    date_format: str = "YYYY-MM-DD",
    currency_symbol: str = "$",
) -> str:
    """Format one stored value for CSV output. Raises ValueError/TypeError."""
    if value is None:
        return ""
    if data_type is DataType.CURRENCY:
        amount = parse_currency(value).quantize(_CENT)
        sign = "-" if amount < 0 else ""
        return f"{sign}{currency_symbol}{abs(amount)}"
    if data_type is DataType.BOOLEAN:
        parsed = parse_boolean(value)
        if parsed is None:
            raise ValueError(f"not a boolean: {value!r}")
        return "Yes" if parsed else "No"
    if data_type is DataType.DATE:
        if isinstance(value, (date, datetime)):
            return format_date(value if not isinstance(value, datetime) else value.date(), date_format)
        return format_date(parse_date(value), date_format)
    if data_type is DataType.NUMBER:
        if isinstance(value, bool):
            raise TypeError(f"not a number: {value!r}")
        return str(value)
    return str(value)


class ExportGenerator:
    def __init__(self, store: RecordStore, catalog_lookup=get_module) -> None:
        self.store = store
        self._lookup = catalog_lookup

    def resolve_fields(
        self, catalog: ModuleCatalog, selected: Sequence[str | FieldDefinition] | None
    ) -> list[FieldDefinition]:
        """Selected fields in order; None or empty selects the whole catalog."""
        if not selected:
            return list(catalog.fields)
        resolved: list[FieldDefinition] = []
        for item in selected:
            name = item.field if isinstance(item, FieldDefinition) else item
            definition = catalog.get(name)
            if definition is None:
                raise ExportError(f"'{name}' is not a field of module '{catalog.module}'")
            resolved.append(definition)
        return resolved

    def export(
        self,
        module: str,
        selected_fields: Sequence[str | FieldDefinition] | None = None,
        options: ExportOptions | None = None,
    ) -> ExportResult:
        options = options or ExportOptions()
        catalog = self._lookup(module)
        fields = self.resolve_fields(catalog, selected_fields)
        records = self.store.query(module, [f.field for f in fields], options.filter)

        rows: list[list[str]] = []
        warnings: list[str] = []
        for index, record in enumerate(records, start=1):
            try:
                rows.append(self._format_record(record, fields, options))
            except (ValueError, TypeError, ArithmeticError) as e:
                message = f"Record {index} skipped: {e}"
                warnings.append(message)
                logger.warning(f"export {module}: {message}")

        text = render_csv(
            [f.label for f in fields],
            rows,
            delimiter=options.delimiter,
            include_headers=options.include_headers,
        )
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        logger.debug(f"export {module}: {len(rows)} records, {len(warnings)} skipped")
        return ExportResult(
            content=text.encode("utf-8"),
            record_count=len(rows),
            file_name=f"{module}-export-{stamp}.csv",
            warnings=tuple(warnings),
        )

    @staticmethod
    def _format_record(
        record: Mapping[str, Any], fields: Sequence[FieldDefinition], options: ExportOptions
    ) -> list[str]:
        return [
            format_value(
                record.get(f.field),
                f.data_type,
                date_format=options.date_format,
                currency_symbol=options.currency_symbol,
            )
            for f in fields
        ]
