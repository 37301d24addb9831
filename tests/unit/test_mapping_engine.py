from __future__ import annotations

from datetime import UTC, datetime

import pytest

from recordport.models.field_definition import DataType, FieldMapping
from recordport.models.template import ImportTemplate
from recordport.services.mapping import MappingEngine, MappingError


@pytest.fixture()
def engine() -> MappingEngine:
    return MappingEngine()


def _template(module: str, mappings, default_values=None) -> ImportTemplate:
    now = datetime.now(UTC)
    return ImportTemplate(
        id="t1",
        name="Customer upload",
        module=module,
        owner_id="local",
        field_mappings=tuple(mappings),
        created_at=now,
        updated_at=now,
        default_values=default_values or {},
    )


def test_auto_suggest_binds_by_header_patterns(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Company Name", "E-mail Address", "Telephone", "Favourite Colour"])
    targets = [m.db_field for m in mappings]
    assert targets == ["company_name", "email", "phone", None]
    company = mappings[0]
    assert company.required is True
    assert company.data_type is DataType.STRING
    assert company.max_length == 255


def test_auto_suggest_binds_each_field_once(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Email", "Backup Email"])
    assert [m.db_field for m in mappings] == ["email", None]


def test_auto_suggest_products(engine: MappingEngine):
    mappings = engine.auto_suggest("products", ["Product Name", "SKU", "Price", "Active"])
    assert [m.db_field for m in mappings] == ["name", "sku", "price", "is_active"]
    assert mappings[3].default_value is True


def test_auto_suggest_unknown_module(engine: MappingEngine):
    with pytest.raises(MappingError):
        engine.auto_suggest("invoices", ["Name"])


def test_from_template_uses_exact_columns_only(engine: MappingEngine):
    template = _template(
        "customers",
        [
            FieldMapping(csv_column="Business", db_field="company_name", required=True, data_type=DataType.STRING),
            FieldMapping(csv_column="Mail", db_field="email", data_type=DataType.EMAIL),
        ],
    )
    mappings = engine.from_template(["Business", "Phone"], template)
    assert [(m.csv_column, m.db_field) for m in mappings] == [("Business", "company_name"), ("Phone", None)]


def test_from_template_applies_default_values(engine: MappingEngine):
    template = _template(
        "customers",
        [
            FieldMapping(csv_column="Business", db_field="company_name", required=True),
            FieldMapping(csv_column="Kind", db_field="customer_type"),
        ],
        default_values={"customer_type": "RETAIL"},
    )
    mappings = engine.from_template(["Business", "Kind"], template)
    assert mappings[1].default_value == "RETAIL"


def test_initial_mappings_rejects_template_for_other_module(engine: MappingEngine):
    template = _template("vendors", [FieldMapping(csv_column="Vendor", db_field="vendor_name")])
    with pytest.raises(MappingError) as e:
        engine.initial_mappings("customers", ["Vendor"], template)
    assert "vendors" in str(e.value)


def test_initial_mappings_without_template_suggests(engine: MappingEngine):
    assert engine.initial_mappings("customers", ["Company"])[0].db_field == "company_name"


def test_add_mapping_appends_first_uncovered_header(engine: MappingEngine):
    mappings = [FieldMapping(csv_column="A")]
    updated = engine.add_mapping(mappings, ["A", "B", "C"])
    assert [m.csv_column for m in updated] == ["A", "B"]
    assert updated[1].db_field is None


def test_add_mapping_when_every_header_covered(engine: MappingEngine):
    with pytest.raises(MappingError):
        engine.add_mapping([FieldMapping(csv_column="A")], ["A"])


def test_remove_mapping(engine: MappingEngine):
    mappings = [FieldMapping(csv_column="A"), FieldMapping(csv_column="B")]
    assert [m.csv_column for m in engine.remove_mapping(mappings, 0)] == ["B"]
    with pytest.raises(MappingError):
        engine.remove_mapping(mappings, 5)


def test_edit_mapping_assigns_definition_and_keeps_transform(engine: MappingEngine):
    mappings = [FieldMapping(csv_column="Org", transform="trim")]
    updated = engine.edit_mapping("customers", mappings, 0, db_field="company_name")
    m = updated[0]
    assert m.db_field == "company_name"
    assert m.required is True
    assert m.transform == "trim"
    assert mappings[0].db_field is None  # original list untouched


def test_edit_mapping_overrides(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Company Name", "Kind"])
    updated = engine.edit_mapping(
        "customers",
        mappings,
        1,
        db_field="customer_type",
        transform="uppercase",
        data_type="string",
        valid_values=["A", "B"],
    )
    m = updated[1]
    assert m.transform == "uppercase"
    assert m.data_type is DataType.STRING
    assert m.valid_values == ("A", "B")


def test_edit_mapping_clear_target(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Company Name"])
    assert engine.edit_mapping("customers", mappings, 0, db_field=None)[0].db_field is None


def test_edit_mapping_rejects_duplicate_target(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Company Name", "Other"])
    with pytest.raises(MappingError) as e:
        engine.edit_mapping("customers", mappings, 1, db_field="company_name")
    assert "mapped twice" in str(e.value)


@pytest.mark.parametrize(
    "overrides",
    [{"db_field": "not_a_field"}, {"transform": "rot13"}, {"data_type": "colour"}, {"colour": "red"}],
)
def test_edit_mapping_rejects_invalid_input(engine: MappingEngine, overrides):
    mappings = [FieldMapping(csv_column="X")]
    with pytest.raises(MappingError):
        engine.edit_mapping("customers", mappings, 0, **overrides)


def test_available_targets_excludes_bound_fields(engine: MappingEngine):
    mappings = engine.auto_suggest("customers", ["Company Name", "Email"])
    names = [f.field for f in engine.available_targets("customers", mappings)]
    assert "company_name" not in names and "email" not in names
    names_for_first = [f.field for f in engine.available_targets("customers", mappings, index=0)]
    assert "company_name" in names_for_first


def test_unmapped_required(engine: MappingEngine):
    missing = engine.unmapped_required("products", engine.auto_suggest("products", ["Product Name"]))
    assert [f.field for f in missing] == ["sku"]


def test_check_rejects_columns_missing_from_headers(engine: MappingEngine):
    mappings = [FieldMapping(csv_column="Ghost", db_field="email")]
    engine.check("customers", mappings)
    with pytest.raises(MappingError):
        engine.check("customers", mappings, headers=["Email"])
