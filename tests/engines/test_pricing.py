"""
Tests for the Pricing & Tax Engine.

Validates:
- Line math: gross, half-up tax rounding, discount, line total
- Input rejection: negatives, tax above 100%, excess precision, oversize discount
- Document totals: aggregation, empty documents, order independence
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from supply_engines.pricing import (
    DocumentTotals,
    LineInput,
    compute_document_totals,
    compute_line,
    round2,
)
from supply_kernel.exceptions import InvalidInputError


class TestComputeLine:
    """Single line computation."""

    def test_reference_line(self):
        """qty 10 @ 5.00 with 5% tax totals 52.50."""
        line = compute_line(10, Decimal("5.00"), Decimal("5"), Decimal("0"))

        assert line.gross_amount == Decimal("50.00")
        assert line.tax_amount == Decimal("2.50")
        assert line.line_total == Decimal("52.50")

    def test_discount_subtracted_after_tax(self):
        line = compute_line(4, Decimal("25.00"), Decimal("10"), Decimal("15.00"))

        assert line.tax_amount == Decimal("10.00")
        assert line.line_total == Decimal("95.00")

    def test_tax_rounds_half_up(self):
        # 3 x 0.35 = 1.05; 5% = 0.0525 -> 0.05
        assert compute_line(3, Decimal("0.35"), Decimal("5")).tax_amount == Decimal("0.05")
        # 1 x 0.50 at 5% = 0.025 -> 0.03 (half-up, not banker's)
        assert compute_line(1, Decimal("0.50"), Decimal("5")).tax_amount == Decimal("0.03")

    def test_gross_rounded_in_line_total(self):
        line = compute_line(Decimal("1.5"), Decimal("0.3333"))

        assert line.gross_amount == Decimal("0.49995")
        assert line.line_total == Decimal("0.50")

    def test_zero_quantity_line(self):
        line = compute_line(0, Decimal("9.99"), Decimal("18"))

        assert line.tax_amount == Decimal("0.00")
        assert line.line_total == Decimal("0.00")

    def test_string_and_float_inputs_are_exact(self):
        from_str = compute_line("3", "0.10", "0")
        from_float = compute_line(3, 0.1, 0)

        assert from_str.line_total == Decimal("0.30")
        assert from_float.line_total == Decimal("0.30")

    def test_discount_equal_to_gross_is_allowed(self):
        line = compute_line(2, Decimal("10.00"), Decimal("0"), Decimal("20.00"))

        assert line.line_total == Decimal("0.00")


class TestComputeLineValidation:
    """Inputs the engine rejects before computing anything."""

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"quantity": -1, "unit_price": "5.00"}, "quantity"),
            ({"quantity": 1, "unit_price": "-5.00"}, "unit_price"),
            ({"quantity": 1, "unit_price": "5.00", "tax_percentage": "-1"}, "tax_percentage"),
            ({"quantity": 1, "unit_price": "5.00", "discount_amount": "-0.01"}, "discount_amount"),
        ],
    )
    def test_negative_inputs_rejected(self, kwargs, field):
        with pytest.raises(InvalidInputError) as exc_info:
            compute_line(**kwargs)
        assert exc_info.value.field == field

    def test_tax_above_hundred_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            compute_line(1, Decimal("5.00"), Decimal("100.01"))
        assert exc_info.value.field == "tax_percentage"

    def test_tax_of_hundred_allowed(self):
        assert compute_line(1, Decimal("5.00"), Decimal("100")).line_total == Decimal("10.00")

    def test_discount_above_gross_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            compute_line(1, Decimal("5.00"), Decimal("0"), Decimal("5.01"))
        assert exc_info.value.field == "discount_amount"

    def test_excess_price_precision_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_line(1, Decimal("0.00001"))

    def test_discount_with_three_places_rejected(self):
        with pytest.raises(InvalidInputError):
            compute_line(1, Decimal("5.00"), Decimal("0"), Decimal("0.005"))

    @pytest.mark.parametrize("bad", [None, True, "abc", float("nan"), Decimal("Infinity")])
    def test_non_numeric_rejected(self, bad):
        with pytest.raises(InvalidInputError):
            compute_line(bad, Decimal("5.00"))

    def test_error_code(self):
        with pytest.raises(InvalidInputError) as exc_info:
            compute_line(-1, Decimal("5.00"))
        assert exc_info.value.code == "INVALID_INPUT"


class TestComputeDocumentTotals:
    """Header totals."""

    def test_single_line_document(self):
        totals = compute_document_totals([LineInput(10, Decimal("5.00"), Decimal("5"))])

        assert totals.subtotal == Decimal("50.00")
        assert totals.tax_amount == Decimal("2.50")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("52.50")
        assert totals.line_count == 1

    def test_multi_line_document(self):
        totals = compute_document_totals([
            LineInput(10, Decimal("5.00"), Decimal("5")),
            LineInput(2, Decimal("12.50"), Decimal("0"), Decimal("5.00")),
            LineInput(1, Decimal("100.00"), Decimal("18")),
        ])

        assert totals.subtotal == Decimal("175.00")
        assert totals.tax_amount == Decimal("20.50")
        assert totals.discount_amount == Decimal("5.00")
        assert totals.total_amount == Decimal("190.50")
        assert totals.line_count == 3

    def test_total_equals_sum_of_line_totals(self):
        inputs = [
            LineInput(3, Decimal("0.35"), Decimal("5")),
            LineInput(7, Decimal("1.15"), Decimal("12.5"), Decimal("0.40")),
        ]
        lines = [compute_line(i.quantity, i.unit_price, i.tax_percentage, i.discount_amount) for i in inputs]
        totals = compute_document_totals(lines)

        assert totals.total_amount == sum(line.line_total for line in lines)

    def test_empty_document_is_zero(self):
        totals = compute_document_totals([])

        assert totals == DocumentTotals.zero()
        assert totals.total_amount == Decimal("0")

    def test_invalid_line_rejects_document(self):
        with pytest.raises(InvalidInputError):
            compute_document_totals([
                LineInput(1, Decimal("5.00")),
                LineInput(-1, Decimal("5.00")),
            ])


_quantities = st.integers(min_value=0, max_value=10_000)
_prices = st.decimals(min_value=0, max_value=100_000, places=2, allow_nan=False, allow_infinity=False)
_taxes = st.decimals(min_value=0, max_value=100, places=2, allow_nan=False, allow_infinity=False)


@st.composite
def _line_inputs(draw):
    qty = draw(_quantities)
    price = draw(_prices)
    tax = draw(_taxes)
    ceiling = round2(Decimal(qty) * price)
    discount = draw(
        st.decimals(min_value=0, max_value=ceiling, places=2, allow_nan=False, allow_infinity=False)
    )
    return LineInput(qty, price, tax, discount)


class TestDocumentTotalsProperties:
    """Properties that hold for every document."""

    @settings(max_examples=200)
    @given(lines=st.lists(_line_inputs(), min_size=1, max_size=12), data=st.data())
    def test_totals_independent_of_line_order(self, lines, data):
        shuffled = data.draw(st.permutations(lines))

        assert compute_document_totals(lines) == compute_document_totals(shuffled)

    @settings(max_examples=200)
    @given(lines=st.lists(_line_inputs(), max_size=12))
    def test_total_identity(self, lines):
        totals = compute_document_totals(lines)

        assert totals.total_amount == totals.subtotal + totals.tax_amount - totals.discount_amount
        assert totals.total_amount >= 0
        assert totals.total_amount == round2(totals.total_amount)
