"""
Values -- coercion of caller input into exact numbers and enum members.

Responsibility:
    The single place where caller-supplied numbers become ``Decimal`` or
    ``int`` values the core will compute with.  Every service and engine
    routes external numeric input through these helpers so rejection rules
    and rounding are identical everywhere.  Status and type filters go
    through ``to_choice`` so an unknown value is an InvalidInputError, never
    a bare ValueError.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - No binary floats in arithmetic.  A float argument is converted through
      its shortest ``repr`` (``Decimal(str(x))``), never ``Decimal(x)``.
    - Money rounds half-up to 2 places (``round_money``); nothing else in
      the codebase quantizes money.
    - Stock quantities are whole units.

Failure modes:
    - InvalidInputError for booleans, NaN, infinities, unparsable strings,
      negative values where a non-negative value is required, and
      fractional stock quantities.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import TypeVar

from supply_kernel.exceptions import InvalidInputError

E = TypeVar("E", bound=Enum)

MONEY_DECIMAL_PLACES = 2
QUANTITY_DECIMAL_PLACES = 4
# Columns are 18 digits wide with up to 4 fractional digits.
MAX_INTEGER_DIGITS = 14

_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
_QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to 2 places, half-up."""
    return amount.quantize(_MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def round_quantity(quantity: Decimal) -> Decimal:
    """Round a line quantity to storage precision, half-up."""
    return quantity.quantize(_QUANTITY_QUANTUM, rounding=ROUND_HALF_UP)


def to_decimal(value: object, field: str) -> Decimal:
    """
    Convert caller input to an exact, finite ``Decimal``.

    Accepts Decimal, int, str and float (via ``str``).  Rejects bool,
    None, NaN and infinities.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(field, value, "must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidInputError(field, value, "is not a valid number") from None
    else:
        raise InvalidInputError(field, value, "must be a number")
    if not result.is_finite():
        raise InvalidInputError(field, value, "must be finite")
    if result != ZERO and result.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidInputError(field, value, "is too large")
    return result


def to_non_negative_decimal(value: object, field: str) -> Decimal:
    """``to_decimal`` that also rejects values below zero."""
    result = to_decimal(value, field)
    if result < ZERO:
        raise InvalidInputError(field, value, "must not be negative")
    return result


def to_money(value: object, field: str) -> Decimal:
    """Non-negative amount with at most 2 decimal places."""
    result = to_non_negative_decimal(value, field)
    if result != round_money(result):
        raise InvalidInputError(field, value, "has more than 2 decimal places")
    return round_money(result)


def to_positive_money(value: object, field: str) -> Decimal:
    """Money amount strictly greater than zero."""
    result = to_money(value, field)
    if result == ZERO:
        raise InvalidInputError(field, value, "must be greater than zero")
    return result


def to_stock_quantity(value: object, field: str, *, allow_zero: bool = True) -> int:
    """
    Convert caller input to a whole, non-negative stock quantity.

    ``Decimal("8.0000")`` is accepted as 8; ``Decimal("8.5")`` is rejected.
    """
    result = to_non_negative_decimal(value, field)
    if result != result.to_integral_value():
        raise InvalidInputError(field, value, "must be a whole number of units")
    quantity = int(result)
    if quantity == 0 and not allow_zero:
        raise InvalidInputError(field, value, "must be greater than zero")
    return quantity


def to_signed_stock_delta(value: object, field: str) -> int:
    """Whole, possibly negative stock delta."""
    result = to_decimal(value, field)
    if result != result.to_integral_value():
        raise InvalidInputError(field, value, "must be a whole number of units")
    return int(result)


def to_choice(choices: type[E], value: object, field: str) -> E:
    """Caller input as a member of ``choices`` (a status or type enum)."""
    try:
        return choices(value)
    except ValueError:
        raise InvalidInputError(
            field, value, f"must be one of {sorted(c.value for c in choices)}",
        ) from None
