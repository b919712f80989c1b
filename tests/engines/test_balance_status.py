"""
Tests for the balance-status engine.

Status is a pure function of (total, paid, due date, as-of, cancelled).
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from supply_engines.balance_status import BalanceStatus, derive_balance_status, outstanding

TODAY = date(2024, 3, 15)
YESTERDAY = TODAY - timedelta(days=1)
TOMORROW = TODAY + timedelta(days=1)


class TestDeriveBalanceStatus:
    """Decision table."""

    @pytest.mark.parametrize(
        "total,paid,due,expected",
        [
            ("1000.00", "0", TOMORROW, BalanceStatus.PENDING),
            ("1000.00", "400.00", TOMORROW, BalanceStatus.PARTIAL),
            ("1000.00", "1000.00", TOMORROW, BalanceStatus.PAID),
            ("500.00", "0", YESTERDAY, BalanceStatus.OVERDUE),
            ("500.00", "200.00", YESTERDAY, BalanceStatus.OVERDUE),
            ("500.00", "500.00", YESTERDAY, BalanceStatus.PAID),
            ("500.00", "0", TODAY, BalanceStatus.PENDING),
            ("500.00", "0", None, BalanceStatus.PENDING),
            ("0.00", "0", YESTERDAY, BalanceStatus.PAID),
        ],
    )
    def test_decision_table(self, total, paid, due, expected):
        assert derive_balance_status(Decimal(total), Decimal(paid), due, TODAY) == expected

    def test_cancelled_overrides_everything(self):
        status = derive_balance_status(
            Decimal("500.00"), Decimal("0"), YESTERDAY, TODAY, cancelled=True,
        )
        assert status == BalanceStatus.CANCELLED

    def test_overdue_invoice_becomes_paid_when_settled(self):
        """An overdue document can still be settled."""
        before = derive_balance_status(Decimal("500.00"), Decimal("0"), YESTERDAY, TODAY)
        after = derive_balance_status(Decimal("500.00"), Decimal("500.00"), YESTERDAY, TODAY)

        assert before == BalanceStatus.OVERDUE
        assert after == BalanceStatus.PAID

    def test_outstanding(self):
        assert outstanding(Decimal("1000.00"), Decimal("400.00")) == Decimal("600.00")


_amounts = st.decimals(min_value=0, max_value=1_000_000, places=2, allow_nan=False, allow_infinity=False)


class TestDeriveBalanceStatusProperties:

    @given(total=_amounts, paid=_amounts, offset=st.integers(min_value=-60, max_value=60))
    def test_deterministic_and_consistent(self, total, paid, offset):
        due = TODAY + timedelta(days=offset)
        first = derive_balance_status(total, paid, due, TODAY)
        second = derive_balance_status(total, paid, due, TODAY)

        assert first == second
        if paid >= total:
            assert first == BalanceStatus.PAID
        elif offset < 0:
            assert first == BalanceStatus.OVERDUE
        elif paid > 0:
            assert first == BalanceStatus.PARTIAL
        else:
            assert first == BalanceStatus.PENDING
