"""
Shared document line helpers (``supply_modules._line_items``).

Responsibility
--------------
The line-item shape shared by purchase orders, goods receipts and
invoices, and the single path by which document lines are priced: every
line goes through ``supply_engines.pricing.compute_line`` and every
document total through ``compute_document_totals``.  Documents never
compute line math on their own.

Architecture position
---------------------
**Modules layer** -- utility.  Imports engines and kernel only.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from supply_engines.pricing import (
    DocumentTotals,
    LineComputation,
    compute_document_totals,
    compute_line,
)
from supply_kernel.domain.values import ZERO
from supply_kernel.exceptions import InvalidInputError


@dataclass(frozen=True)
class LineItemInput:
    """Caller-supplied line of a purchase order or invoice."""
    product_id: UUID
    quantity: Decimal | int | str
    unit_price: Decimal | int | str
    variant_id: UUID | None = None
    tax_percentage: Decimal | int | str = ZERO
    discount_amount: Decimal | int | str = ZERO
    description: str = ""


@dataclass(frozen=True)
class LineItem:
    """A priced line owned by one document."""
    id: UUID
    line_number: int
    product_id: UUID
    variant_id: UUID | None
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_percentage: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal

    @property
    def gross_amount(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class PricedLine:
    """A validated input line together with its computation."""
    line_number: int
    product_id: UUID
    variant_id: UUID | None
    description: str
    computation: LineComputation


def price_lines(
    lines: Sequence[LineItemInput],
    require_lines: bool = False,
) -> tuple[list[PricedLine], DocumentTotals]:
    """
    Validate and price document lines.

    Raises:
        InvalidInputError: empty line list when ``require_lines``, or any
            invalid numeric field (from the pricing engine).
    """
    if lines is None or (require_lines and not lines):
        raise InvalidInputError("lines", lines, "at least one line is required")
    priced: list[PricedLine] = []
    for number, line in enumerate(lines, start=1):
        if not isinstance(line, LineItemInput):
            raise InvalidInputError(f"lines[{number}]", line, "must be a LineItemInput")
        computation = compute_line(
            line.quantity,
            line.unit_price,
            line.tax_percentage,
            line.discount_amount,
        )
        priced.append(
            PricedLine(
                line_number=number,
                product_id=line.product_id,
                variant_id=line.variant_id,
                description=line.description or "",
                computation=computation,
            )
        )
    totals = compute_document_totals([p.computation for p in priced])
    return priced, totals


def totals_of(computations: Iterable[LineComputation]) -> DocumentTotals:
    return compute_document_totals(list(computations))
