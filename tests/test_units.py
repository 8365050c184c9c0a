"""
Tests for unit conversion and pricing.
"""

from decimal import Decimal

import pytest

from apps.core.exceptions import (
    InvalidPrice,
    InvalidQuantity,
    PriceNotDefined,
    UnknownUnit,
    ValidationFailed,
)
from apps.inventory import units
from apps.inventory.models import Product


def build_product(**overrides):
    fields = {
        "name": "Tata Salt",
        "base_unit": "piece",
        "packaging_levels": [
            {"name": "box", "quantity": "12"},
            {"name": "carton", "quantity": "10"},
        ],
        "default_prices": [
            {"unit": "piece", "price": "10.00"},
            {"unit": "box", "price": "110.00"},
        ],
        "selling_price": Decimal("10.00"),
    }
    fields.update(overrides)
    return Product(**fields)


class TestConversionFactor:
    def test_base_unit_is_one(self):
        assert units.conversion_factor(build_product(), "piece") == Decimal("1")

    def test_levels_multiply_cumulatively(self):
        product = build_product()
        assert units.conversion_factor(product, "box") == Decimal("12")
        assert units.conversion_factor(product, "carton") == Decimal("120")

    def test_unit_names_are_normalized(self):
        assert units.conversion_factor(build_product(), "  BOX ") == Decimal("12")

    def test_unknown_unit(self):
        with pytest.raises(UnknownUnit):
            units.conversion_factor(build_product(), "crate")


class TestToBaseQuantity:
    def test_box_to_pieces(self):
        assert units.to_base_quantity(build_product(), "box", "2") == Decimal("24.000")

    def test_fractional_quantity(self):
        assert units.to_base_quantity(build_product(), "box", "0.5") == Decimal("6.000")

    @pytest.mark.parametrize("unit", ["piece", "box", "carton"])
    @pytest.mark.parametrize("qty", ["1", "3", "0.5", "2.25", "17"])
    def test_converts_back_to_the_sold_quantity(self, unit, qty):
        product = build_product()
        assert set(units.conversion_map(product)) == {"piece", "box", "carton"}

        base_qty = units.to_base_quantity(product, unit, qty)

        assert base_qty / units.conversion_factor(product, unit) == Decimal(qty)

    @pytest.mark.parametrize("qty", ["0", "-1", "abc", None])
    def test_rejects_non_positive_or_malformed(self, qty):
        with pytest.raises(InvalidQuantity):
            units.to_base_quantity(build_product(), "box", qty)


class TestUnitPrice:
    def test_base_unit_uses_selling_price(self):
        product = build_product(selling_price=Decimal("11.00"))
        assert units.unit_price(product, "piece") == Decimal("11.00")

    def test_level_uses_default_prices(self):
        assert units.unit_price(build_product(), "box") == Decimal("110.00")

    def test_declared_but_unpriced_level(self):
        with pytest.raises(PriceNotDefined):
            units.unit_price(build_product(), "carton")

    def test_undeclared_unit(self):
        with pytest.raises(UnknownUnit):
            units.unit_price(build_product(), "crate")

    def test_negative_price(self):
        product = build_product(
            default_prices=[{"unit": "piece", "price": "10"}, {"unit": "box", "price": "-1"}]
        )
        with pytest.raises(InvalidPrice):
            units.unit_price(product, "box")

    def test_line_total(self):
        price, total = units.line_total(build_product(), "box", Decimal("2"))
        assert price == Decimal("110.00")
        assert total == Decimal("220.00")


class TestAvailableUnits:
    def test_lists_every_unit_with_price(self):
        listed = {entry["unit"]: entry for entry in units.available_units(build_product())}

        assert set(listed) == {"piece", "box", "carton"}
        assert listed["carton"]["factor"] == Decimal("120")
        assert listed["carton"]["price"] is None
        assert listed["piece"]["price"] == Decimal("10.00")


class TestValidateUnitDefinitions:
    def test_normalizes_names_and_numbers(self):
        base, levels, prices = units.validate_unit_definitions(
            " Piece ",
            [{"name": "Box", "quantity": 12}],
            [{"unit": "PIECE", "price": "10"}, {"unit": "box", "price": 110}],
        )

        assert base == "piece"
        assert levels == [{"name": "box", "quantity": "12"}]
        assert prices == [
            {"unit": "piece", "price": "10.00"},
            {"unit": "box", "price": "110.00"},
        ]

    def test_requires_base_unit(self):
        with pytest.raises(ValidationFailed):
            units.validate_unit_definitions("", [], [])

    def test_rejects_duplicate_level(self):
        with pytest.raises(ValidationFailed):
            units.validate_unit_definitions(
                "piece",
                [{"name": "box", "quantity": 12}, {"name": "box", "quantity": 10}],
                [{"unit": "piece", "price": "1"}],
            )

    def test_rejects_level_named_like_base(self):
        with pytest.raises(ValidationFailed):
            units.validate_unit_definitions(
                "piece", [{"name": "piece", "quantity": 12}], [{"unit": "piece", "price": "1"}]
            )

    def test_rejects_level_quantity_below_two(self):
        with pytest.raises(ValidationFailed):
            units.validate_unit_definitions(
                "piece", [{"name": "box", "quantity": 1}], [{"unit": "piece", "price": "1"}]
            )

    @pytest.mark.parametrize("level_qty", ["2.5", 12.5, "0.5"])
    def test_rejects_fractional_level_quantity(self, level_qty):
        with pytest.raises(ValidationFailed):
            units.validate_unit_definitions(
                "piece",
                [{"name": "box", "quantity": level_qty}],
                [{"unit": "piece", "price": "1"}],
            )

    def test_whole_decimal_level_quantity_is_stored_as_integer(self):
        _, levels, _ = units.validate_unit_definitions(
            "piece", [{"name": "box", "quantity": "12.0"}], [{"unit": "piece", "price": "1"}]
        )

        assert levels == [{"name": "box", "quantity": "12"}]

    def test_rejects_price_for_unknown_unit(self):
        with pytest.raises(UnknownUnit):
            units.validate_unit_definitions(
                "piece", [], [{"unit": "piece", "price": "1"}, {"unit": "box", "price": "5"}]
            )

    def test_requires_base_price(self):
        with pytest.raises(PriceNotDefined):
            units.validate_unit_definitions(
                "piece", [{"name": "box", "quantity": 12}], [{"unit": "box", "price": "5"}]
            )
