"""
Helpers for parsing request values.

Money is kept at two decimal places and stock quantities at three.
"""

import uuid
from decimal import Decimal, InvalidOperation

from django.utils.dateparse import parse_date

from apps.core.exceptions import ValidationFailed

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(value, default=None):
    """
    Convert user input to a finite Decimal.

    Returns ``default`` for ``None`` and blank strings. Raises ``ValueError`` for
    anything that is not a finite number.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is None:
            raise ValueError("A number is required")
        return Decimal(default)
    if isinstance(value, bool):
        raise ValueError("A number is required")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid number: {value!r}")
    return result


def money(value):
    """Round a value to two decimal places."""
    return Decimal(value).quantize(MONEY_PLACES)


def quantity(value):
    """Round a value to three decimal places."""
    return Decimal(value).quantize(QUANTITY_PLACES)


def format_quantity(value):
    """Render a quantity without trailing zeros (``Decimal("24.000")`` -> ``"24"``)."""
    normalized = Decimal(value).normalize()
    return f"{normalized:f}"


def parse_uuid(value, error_class):
    """
    Coerce ``value`` to a UUID, raising ``error_class`` when it is not one.

    Lets services accept ids straight from request bodies and report a bad id as
    the matching not-found error.
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError) as exc:
        raise error_class() from exc


def parse_date_param(value):
    """
    Parse an optional ``YYYY-MM-DD`` query value.

    Returns ``None`` for missing values and raises ``ValueError`` for malformed ones.
    """
    if value in (None, ""):
        return None
    parsed = parse_date(str(value).strip())
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


def date_range_from_params(params):
    """
    Read an inclusive ``from``/``to`` date range from query parameters.

    ``date_from``/``date_to`` are accepted as aliases.
    """
    try:
        date_from = parse_date_param(params.get("from") or params.get("date_from"))
        date_to = parse_date_param(params.get("to") or params.get("date_to"))
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc
    if date_from and date_to and date_from > date_to:
        raise ValidationFailed("'from' must not be after 'to'")
    return date_from, date_to
