"""
Tests for numeric coercion (supply_kernel.domain.values) and the clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from supply_kernel.domain.clock import DeterministicClock, SystemClock
from supply_kernel.domain.values import (
    round_money,
    to_decimal,
    to_money,
    to_positive_money,
    to_signed_stock_delta,
    to_choice,
    to_stock_quantity,
)
from supply_kernel.exceptions import InvalidInputError
from supply_modules.procurement.models import POStatus


class TestToDecimal:

    def test_float_goes_through_repr(self):
        assert to_decimal(0.1, "x") == Decimal("0.1")

    def test_string_is_stripped(self):
        assert to_decimal(" 12.50 ", "x") == Decimal("12.50")

    @pytest.mark.parametrize("bad", [None, True, False, "", "1,000", float("inf"), object()])
    def test_rejected(self, bad):
        with pytest.raises(InvalidInputError) as exc_info:
            to_decimal(bad, "x")
        assert exc_info.value.field == "x"

    def test_too_large_rejected(self):
        with pytest.raises(InvalidInputError):
            to_decimal(Decimal("1E20"), "x")


class TestMoney:

    def test_round_half_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.345")) == Decimal("2.35")

    def test_to_money_quantizes(self):
        assert str(to_money(5, "amount")) == "5.00"

    def test_to_money_rejects_fractions_of_a_cent(self):
        with pytest.raises(InvalidInputError):
            to_money(Decimal("1.001"), "amount")

    def test_to_positive_money_rejects_zero(self):
        with pytest.raises(InvalidInputError):
            to_positive_money("0.00", "amount")


class TestStockQuantity:

    def test_integral_decimal_accepted(self):
        assert to_stock_quantity(Decimal("8.0000"), "q") == 8

    def test_fraction_rejected(self):
        with pytest.raises(InvalidInputError):
            to_stock_quantity(Decimal("8.5"), "q")

    def test_negative_rejected(self):
        with pytest.raises(InvalidInputError):
            to_stock_quantity(-1, "q")

    def test_zero_rejected_when_not_allowed(self):
        assert to_stock_quantity(0, "q") == 0
        with pytest.raises(InvalidInputError):
            to_stock_quantity(0, "q", allow_zero=False)

    def test_signed_delta(self):
        assert to_signed_stock_delta(-5, "delta") == -5
        with pytest.raises(InvalidInputError):
            to_signed_stock_delta("-1.5", "delta")


class TestChoice:

    def test_value_and_member_accepted(self):
        assert to_choice(POStatus, "submitted", "status") is POStatus.SUBMITTED
        assert to_choice(POStatus, POStatus.DRAFT, "status") is POStatus.DRAFT

    def test_unknown_value_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            to_choice(POStatus, "shipped", "status")
        assert exc_info.value.field == "status"
        assert "draft" in exc_info.value.reason


class TestClock:

    def test_deterministic_clock_default(self):
        clock = DeterministicClock()

        assert clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert clock.now() == clock.now()

    def test_advance_days(self):
        clock = DeterministicClock()
        clock.advance_days(31)

        assert clock.today().isoformat() == "2024-02-01"

    def test_tick(self):
        clock = DeterministicClock()
        start = clock.now()

        assert clock.tick() == start + timedelta(seconds=1)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(100)
        target = datetime(2025, 6, 30, tzinfo=timezone.utc)
        clock.set_time(target)

        assert clock.now() == target

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None
