"""
Pricing & Tax Engine - line and document totals.

Pure functions with no I/O and no shared state; safe to call concurrently
without locks.  Every document in the system (purchase orders, goods
receipts, purchase invoices) computes its line and header amounts here and
nowhere else, so a document recomputed from its stored lines always
reproduces its stored totals exactly.

Rules:
    gross_amount = quantity x unit_price
    tax_amount   = round2(gross_amount x tax_percentage / 100)
    line_total   = round2(gross_amount) + tax_amount - discount_amount

    subtotal        = round2(sum(gross_amount))
    tax_amount      = sum(line tax_amount)
    discount_amount = sum(line discount_amount)
    total_amount    = subtotal + tax_amount - discount_amount

Arithmetic is Decimal-only under a private context (50 digits, half-up),
so results do not depend on the caller's thread-local decimal context.
Addition of exact decimals is associative and commutative, so document
totals are independent of line order.

Usage:
    from decimal import Decimal
    from supply_engines.pricing import compute_line, compute_document_totals, LineInput

    line = compute_line(10, Decimal("5.00"), Decimal("5"), Decimal("0"))
    line.tax_amount   # Decimal("2.50")
    line.line_total   # Decimal("52.50")

    totals = compute_document_totals([LineInput(10, Decimal("5.00"), Decimal("5"))])
    totals.total_amount  # Decimal("52.50")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, localcontext
from typing import Protocol

from supply_engines.tracer import traced_engine
from supply_kernel.domain.values import (
    HUNDRED,
    QUANTITY_DECIMAL_PLACES,
    ZERO,
    round_money,
    to_money,
    to_non_negative_decimal,
)
from supply_kernel.exceptions import InvalidInputError

_ENGINE_CONTEXT = Context(prec=50, rounding=ROUND_HALF_UP)


def round2(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return round_money(value)


class PricedLine(Protocol):
    """Anything carrying the four pricing inputs of a line item."""

    quantity: Decimal
    unit_price: Decimal
    tax_percentage: Decimal
    discount_amount: Decimal


@dataclass(frozen=True)
class LineInput:
    """Raw pricing inputs for one line."""

    quantity: Decimal | int | str
    unit_price: Decimal | int | str
    tax_percentage: Decimal | int | str = ZERO
    discount_amount: Decimal | int | str = ZERO


@dataclass(frozen=True)
class LineComputation:
    """Validated inputs and computed amounts for one line."""

    quantity: Decimal
    unit_price: Decimal
    tax_percentage: Decimal
    discount_amount: Decimal
    gross_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    """Header amounts for a document."""

    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    line_count: int = 0

    @classmethod
    def zero(cls) -> DocumentTotals:
        return cls(ZERO, ZERO, ZERO, ZERO, 0)


_MAX_ADJUSTED_EXPONENT = 12


def _limited_scale(value: Decimal, field: str, places: int) -> Decimal:
    if value != ZERO and value.adjusted() > _MAX_ADJUSTED_EXPONENT:
        raise InvalidInputError(field, value, "is too large")
    with localcontext(_ENGINE_CONTEXT):
        if value != value.quantize(Decimal(1).scaleb(-places)):
            raise InvalidInputError(field, value, f"has more than {places} decimal places")
    return value


@traced_engine(
    "pricing.line",
    "1.0",
    fingerprint_fields=("quantity", "unit_price", "tax_percentage", "discount_amount"),
)
def compute_line(
    quantity: object,
    unit_price: object,
    tax_percentage: object = ZERO,
    discount_amount: object = ZERO,
) -> LineComputation:
    """
    Compute tax and total for one line.

    Raises:
        InvalidInputError: negative or non-numeric input, tax above 100%,
            more than 4 decimal places on quantity/price/tax, more than 2 on
            the discount, or a discount exceeding the pre-tax line value.
    """
    qty = _limited_scale(
        to_non_negative_decimal(quantity, "quantity"), "quantity", QUANTITY_DECIMAL_PLACES
    )
    price = _limited_scale(
        to_non_negative_decimal(unit_price, "unit_price"), "unit_price", QUANTITY_DECIMAL_PLACES
    )
    tax_pct = _limited_scale(
        to_non_negative_decimal(tax_percentage, "tax_percentage"),
        "tax_percentage",
        QUANTITY_DECIMAL_PLACES,
    )
    if tax_pct > HUNDRED:
        raise InvalidInputError("tax_percentage", tax_percentage, "must not exceed 100")
    discount = to_money(discount_amount, "discount_amount")

    with localcontext(_ENGINE_CONTEXT):
        gross = qty * price
        if discount > gross:
            raise InvalidInputError(
                "discount_amount",
                discount_amount,
                f"exceeds pre-tax line value {gross}",
            )
        tax = round2(gross * tax_pct / HUNDRED)
        total = round2(gross) + tax - discount

    return LineComputation(
        quantity=qty,
        unit_price=price,
        tax_percentage=tax_pct,
        discount_amount=discount,
        gross_amount=gross,
        tax_amount=tax,
        line_total=total,
    )


def compute_line_for(line: PricedLine | LineInput) -> LineComputation:
    """``compute_line`` applied to an object carrying the four inputs."""
    return compute_line(
        line.quantity,
        line.unit_price,
        line.tax_percentage,
        line.discount_amount,
    )


@traced_engine("pricing.document", "1.0")
def compute_document_totals(
    lines: Iterable[PricedLine | LineInput | LineComputation],
) -> DocumentTotals:
    """
    Aggregate header totals for a document.

    Accepts raw inputs or already-computed lines; raw inputs are validated
    through ``compute_line``.  An empty document totals zero.
    """
    gross_sum = ZERO
    tax_sum = ZERO
    discount_sum = ZERO
    count = 0
    with localcontext(_ENGINE_CONTEXT):
        for line in lines:
            computed = line if isinstance(line, LineComputation) else compute_line_for(line)
            gross_sum += computed.gross_amount
            tax_sum += computed.tax_amount
            discount_sum += computed.discount_amount
            count += 1
        subtotal = round2(gross_sum)
        total = subtotal + tax_sum - discount_sum

    return DocumentTotals(
        subtotal=subtotal,
        tax_amount=round2(tax_sum),
        discount_amount=round2(discount_sum),
        total_amount=round2(total),
        line_count=count,
    )
