from __future__ import annotations

from decimal import Decimal

import pytest

from recordport.services.transforms import TRANSFORMS, apply_transform, transform_ids


def test_transform_ids_lists_all_named_transforms():
    assert transform_ids() == frozenset(
        {
            "uppercase",
            "lowercase",
            "trim",
            "numbers_only",
            "phone_normalize",
            "currency_to_number",
            "boolean_yes_no",
            "remove_special",
        }
    )
    assert set(TRANSFORMS) == transform_ids()


@pytest.mark.parametrize(
    "transform,value,expected",
    [
        ("uppercase", "acme", "ACME"),
        ("lowercase", "ACME", "acme"),
        ("trim", "  acme  ", "acme"),
        ("numbers_only", "A-12 b3", "123"),
        ("phone_normalize", "555.123.4567", "(555) 123-4567"),
        ("currency_to_number", "$1,000.50", Decimal("1000.50")),
        ("boolean_yes_no", "Yes", True),
        ("boolean_yes_no", "0", False),
        ("remove_special", "Acme, Inc.!", "Acme Inc"),
    ],
)
def test_apply_transform(transform, value, expected):
    assert apply_transform(value, transform) == expected


@pytest.mark.parametrize("value", ["12345", "1-555-123-4567", "+1 555 123 4567"])
def test_phone_normalize_leaves_other_lengths_unchanged(value):
    assert apply_transform(value, "phone_normalize") == value


def test_failed_transform_returns_original_value():
    assert apply_transform("not money", "currency_to_number") == "not money"
    assert apply_transform("maybe", "boolean_yes_no") == "maybe"


@pytest.mark.parametrize("transform", [None, "", "does_not_exist"])
def test_missing_or_unknown_transform_passes_through(transform):
    assert apply_transform("Acme", transform) == "Acme"


def test_empty_and_non_string_values_pass_through():
    assert apply_transform("", "uppercase") == ""
    assert apply_transform(5, "uppercase") == 5
    assert apply_transform(None, "trim") is None
