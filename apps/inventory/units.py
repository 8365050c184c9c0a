"""
Unit conversion and pricing for products with packaging hierarchies.

A product tracks stock in its base unit (e.g. "piece"). Larger units are declared
as ordered packaging levels, each holding a number of the next smaller unit::

    base_unit = "piece"
    packaging_levels = [{"name": "box", "quantity": 12}, {"name": "carton", "quantity": 10}]

gives the multipliers piece=1, box=12, carton=120.

These functions are pure: they read the product snapshot passed in and never
touch the database.
"""

from decimal import Decimal

from apps.core.exceptions import (
    InvalidPrice,
    InvalidQuantity,
    PriceNotDefined,
    UnknownUnit,
    ValidationFailed,
)
from apps.core.utils import ZERO, money, quantity, to_decimal

MIN_LEVEL_QUANTITY = 2


def normalize_unit(value):
    """Trim and lower-case a unit name."""
    return str(value or "").strip().lower()


def conversion_map(product):
    """
    Return ``{unit: multiplier}`` for the base unit and every packaging level.

    Each level's multiplier is the cumulative product of the quantities of all
    levels up to and including it, in declared order.
    """
    base_unit = normalize_unit(product.base_unit)
    factors = {base_unit: Decimal("1")}
    cumulative = Decimal("1")
    for level in product.packaging_levels or []:
        cumulative *= Decimal(str(level["quantity"]))
        factors[normalize_unit(level["name"])] = cumulative
    return factors


def conversion_factor(product, unit):
    """Base-unit multiplier for ``unit``; raises ``UnknownUnit`` if undeclared."""
    factors = conversion_map(product)
    key = normalize_unit(unit)
    if key not in factors:
        raise UnknownUnit(f"Unit '{key}' not defined for {product.name}")
    return factors[key]


def to_base_quantity(product, unit, qty):
    """Convert ``qty`` of ``unit`` into base units."""
    try:
        qty = to_decimal(qty)
    except ValueError as exc:
        raise InvalidQuantity() from exc
    if qty <= 0:
        raise InvalidQuantity()
    return quantity(qty * conversion_factor(product, unit))


def unit_price(product, unit):
    """
    Price of one ``unit`` of ``product``.

    The base unit is priced by ``selling_price``; larger units by their entry in
    ``default_prices``.
    """
    key = normalize_unit(unit)
    if key == normalize_unit(product.base_unit) and product.selling_price is not None:
        price = Decimal(product.selling_price)
    else:
        conversion_factor(product, key)
        prices = price_map(product)
        if key not in prices:
            raise PriceNotDefined(f"Price not defined for unit '{key}'")
        price = prices[key]

    if price < 0:
        raise InvalidPrice()
    return money(price)


def price_map(product):
    """Return ``{unit: price}`` from ``default_prices``."""
    return {
        normalize_unit(entry["unit"]): Decimal(str(entry["price"]))
        for entry in product.default_prices or []
    }


def line_total(product, unit, qty):
    """Return ``(unit_price, line_total)`` for ``qty`` of ``unit``."""
    price = unit_price(product, unit)
    return price, money(price * to_decimal(qty))


def available_units(product):
    """List every sellable unit with its multiplier and price (``None`` if unpriced)."""
    prices = price_map(product)
    base_unit = normalize_unit(product.base_unit)
    units = []
    for unit, factor in conversion_map(product).items():
        if unit == base_unit and product.selling_price is not None:
            price = money(product.selling_price)
        else:
            price = prices.get(unit)
        units.append({"unit": unit, "factor": factor, "price": price})
    return units


def validate_unit_definitions(base_unit, packaging_levels, default_prices):
    """
    Validate a product's unit configuration and return it normalized.

    Rules:
    - base unit is required
    - level names are unique, distinct from the base unit, with a whole quantity >= 2
    - every priced unit is a declared unit, prices are >= 0
    - the base unit has a price entry

    Returns:
        tuple: ``(base_unit, packaging_levels, default_prices)`` with unit names
        lower-cased and numbers rendered as strings for JSON storage.
    """
    base = normalize_unit(base_unit)
    if not base:
        raise ValidationFailed("Base unit is required")

    seen = {base}
    levels = []
    for level in packaging_levels or []:
        name = normalize_unit(level.get("name"))
        if not name:
            raise ValidationFailed("Packaging level name is required")
        if name in seen:
            raise ValidationFailed(f"Duplicate unit name '{name}'")
        try:
            level_qty = to_decimal(level.get("quantity"))
        except ValueError as exc:
            raise ValidationFailed(f"Invalid quantity for level '{name}'") from exc
        if level_qty != level_qty.to_integral_value():
            raise ValidationFailed(f"Packaging level '{name}' must hold a whole number of units")
        if level_qty < MIN_LEVEL_QUANTITY:
            raise ValidationFailed(
                f"Packaging level '{name}' must hold at least {MIN_LEVEL_QUANTITY} units"
            )
        seen.add(name)
        levels.append({"name": name, "quantity": str(int(level_qty))})

    prices = []
    priced = set()
    for entry in default_prices or []:
        unit = normalize_unit(entry.get("unit"))
        if unit not in seen:
            raise UnknownUnit(f"Price given for unknown unit '{unit}'")
        if unit in priced:
            raise ValidationFailed(f"Duplicate price for unit '{unit}'")
        try:
            price = to_decimal(entry.get("price"))
        except ValueError as exc:
            raise InvalidPrice() from exc
        if price < ZERO:
            raise InvalidPrice()
        priced.add(unit)
        prices.append({"unit": unit, "price": str(money(price))})

    if base not in priced:
        raise PriceNotDefined("Base unit price is required")

    return base, levels, prices
