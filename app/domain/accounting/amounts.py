"""Money helpers: everything is Decimal, held at the currency minor unit."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from app.core.config import get_settings
from app.domain.accounting.errors import ValidationError

ZERO = Decimal("0")


def minor_unit() -> Decimal:
    return Decimal(1).scaleb(-get_settings().amount_places)


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Convert a number or numeric string to a Decimal at the minor unit.

    Floats go through ``str`` so 0.1 stays 0.1. Trailing zeros beyond the
    minor unit are fine; significant digits beyond it are not.

    Raises:
        ValidationError: If the value is not numeric or is finer than the
            minor unit
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} is not a valid amount: {value!r}", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} is not a valid amount: {value!r}", field=field)
    try:
        quantized = amount.quantize(minor_unit(), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range: {value!r}", field=field)
    if quantized != amount:
        raise ValidationError(
            f"{field} has more than {get_settings().amount_places} decimal places: {value!r}",
            field=field,
        )
    return quantized


def total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO).quantize(minor_unit())
