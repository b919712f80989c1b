"""
Tests for the kernel exception hierarchy.

Every error carries a machine-readable code and the structured fields a
caller needs to react without parsing the message.
"""

from decimal import Decimal

import pytest

from supply_kernel import exceptions as exc


class TestErrorCodes:
    """Codes are part of the public contract."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (exc.InvalidInputError("quantity", -1, "must not be negative"), "INVALID_INPUT"),
            (exc.NotFoundError("PurchaseOrder", "po-1"), "NOT_FOUND"),
            (exc.NegativeStockError("w:p:-", -2, 0), "NEGATIVE_STOCK"),
            (exc.InsufficientStockError("w:p:-", 80, 70), "INSUFFICIENT_STOCK"),
            (exc.InvalidTransitionError("purchase_order", "po-1", "draft", "receive"), "INVALID_TRANSITION"),
            (exc.AlreadyCompletedError("goods_receipt", "grn-1"), "ALREADY_COMPLETED"),
            (exc.DuplicateInvoiceError("grn-1", "inv-1"), "DUPLICATE_INVOICE"),
            (exc.IdempotencyConflictError("key-1", "pay-1"), "IDEMPOTENCY_CONFLICT"),
            (
                exc.OverpaymentError("purchase_invoice", "inv-1", Decimal("50.00"), Decimal("0.00")),
                "OVERPAYMENT",
            ),
            (
                exc.CreditLimitExceededError("cust-1", Decimal("10.00"), Decimal("5.00")),
                "CREDIT_LIMIT_EXCEEDED",
            ),
            (exc.PriceSetError("p/-", "exactly one standard price is required"), "PRICE_SET_INVALID"),
            (exc.OptimisticLockError("StockPosition", "w:p:-", 1, 2), "OPTIMISTIC_LOCK_CONFLICT"),
            (
                exc.ImmutabilityViolationError("StockMovement", "m-1", "append-only"),
                "IMMUTABILITY_VIOLATION",
            ),
        ],
    )
    def test_code(self, error, code):
        assert error.code == code
        assert isinstance(error, exc.SupplyKernelError)

    def test_codes_are_unique(self):
        def _all(cls):
            for sub in cls.__subclasses__():
                yield sub
                yield from _all(sub)

        codes = [cls.code for cls in _all(exc.SupplyKernelError)]
        assert len(codes) == len(set(codes))


class TestStructuredFields:

    def test_insufficient_stock_fields(self):
        error = exc.InsufficientStockError("w:p:-", 80, 70)

        assert error.requested == 80
        assert error.available == 70
        assert "80" in str(error)

    def test_invalid_transition_fields(self):
        error = exc.InvalidTransitionError("goods_receipt", "grn-1", "completed", "complete")

        assert error.document_type == "goods_receipt"
        assert error.current_status == "completed"
        assert error.action == "complete"

    def test_overpayment_fields(self):
        error = exc.OverpaymentError("purchase_invoice", "inv-1", Decimal("50.00"), Decimal("0.00"))

        assert error.amount == Decimal("50.00")
        assert error.outstanding == Decimal("0.00")

    def test_hierarchy(self):
        assert issubclass(exc.InvalidInputError, exc.ValidationError)
        assert issubclass(exc.InsufficientStockError, exc.StockError)
        assert issubclass(exc.AlreadyCompletedError, exc.WorkflowError)
        assert issubclass(exc.OverpaymentError, exc.BalanceError)
        assert issubclass(exc.OptimisticLockError, exc.ConcurrencyError)
