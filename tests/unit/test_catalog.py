from __future__ import annotations

from pathlib import Path

import pytest

from recordport.catalog import CatalogError, get_module, load_catalog, module_names
from recordport.models.field_definition import DataType


def test_packaged_modules():
    assert set(module_names()) == {
        "customers",
        "vendors",
        "products",
        "inventory",
        "sales_orders",
        "purchase_orders",
        "estimates",
    }


@pytest.mark.parametrize(
    "module,natural_key",
    [
        ("customers", ("company_name",)),
        ("vendors", ("vendor_name",)),
        ("products", ("sku",)),
        ("inventory", ("product_sku", "location_code")),
        ("sales_orders", ("so_number",)),
        ("purchase_orders", ("po_number",)),
        ("estimates", ("estimate_number",)),
    ],
)
def test_natural_keys_are_catalog_fields(module, natural_key):
    catalog = get_module(module)
    assert catalog.natural_key == natural_key
    assert all(catalog.has_field(k) for k in natural_key)


def test_field_definitions_are_typed():
    products = get_module("products")
    price = products.get("price")
    assert price is not None
    assert price.label == "Price"
    assert price.data_type is DataType.CURRENCY
    assert [f.field for f in products.required_fields] == ["name", "sku"]
    assert products.get("is_active").default_value is True
    assert get_module("inventory").get("abc_classification").valid_values == ("A", "B", "C")


def test_fields_without_patterns_match_on_their_name():
    assert get_module("customers").patterns_for("address_line_2") == ("address_line_2",)


def test_unknown_module():
    with pytest.raises(CatalogError) as e:
        get_module("invoices")
    assert "supported:" in str(e.value)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "modules.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_catalog_rejects_unknown_natural_key(tmp_path: Path):
    path = _write(
        tmp_path,
        "things:\n  natural_key: [code]\n  fields:\n    - {field: name, label: Name, type: string}\n",
    )
    with pytest.raises(CatalogError) as e:
        load_catalog(path)
    assert "natural_key" in str(e.value)


def test_load_catalog_rejects_duplicate_field(tmp_path: Path):
    path = _write(
        tmp_path,
        "things:\n  natural_key: [name]\n  fields:\n"
        "    - {field: name, label: Name, type: string}\n"
        "    - {field: name, label: Again, type: string}\n",
    )
    with pytest.raises(CatalogError):
        load_catalog(path)


def test_load_catalog_rejects_unknown_type(tmp_path: Path):
    path = _write(
        tmp_path,
        "things:\n  natural_key: [name]\n  fields:\n    - {field: name, label: Name, type: colour}\n",
    )
    with pytest.raises(CatalogError) as e:
        load_catalog(path)
    assert "catalog validation failed" in str(e.value)


def test_load_catalog_missing_file(tmp_path: Path):
    with pytest.raises(CatalogError):
        load_catalog(tmp_path / "missing.yml")
