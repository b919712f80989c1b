"""
Typed Exception Hierarchy for the Supply Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and money errors must be handled precisely. Callers (the API layer,
batch jobs, tests) catch by type and read structured attributes; they never
parse message strings.

Every exception:
  1. Is a subclass of SupplyKernelError (catch-all for the core)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes set in __init__

Example:
    try:
        ledger.reserve(warehouse_id, product_id, None, 80, actor_id)
    except InsufficientStockError as e:
        api_response(code=e.code, requested=e.requested, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SupplyKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidInputError
    |
    +-- NotFoundError
    |
    +-- StockError
    |   +-- NegativeStockError
    |   +-- InsufficientStockError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- AlreadyCompletedError
    |   +-- DuplicateInvoiceError
    |   +-- IdempotencyConflictError
    |
    +-- BalanceError
    |   +-- OverpaymentError
    |   +-- CreditLimitExceededError
    |
    +-- PricingError
    |   +-- PriceSetError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Validation   | INVALID_INPUT             | Malformed / out-of-range input, pre-write
Lookup       | NOT_FOUND                 | Document or stock position missing
Stock        | NEGATIVE_STOCK            | Physical < 0 or physical < reserved
             | INSUFFICIENT_STOCK        | Reservation exceeds available quantity
Workflow     | INVALID_TRANSITION        | Action not allowed from current status
             | ALREADY_COMPLETED         | GRN / payment completed a second time
             | DUPLICATE_INVOICE         | Second live invoice for the same GRN
             | IDEMPOTENCY_CONFLICT      | Same key reused with a different payload
Balance      | OVERPAYMENT               | Payment would exceed outstanding balance
             | CREDIT_LIMIT_EXCEEDED     | Credit would exceed the customer's limit
Pricing      | PRICE_SET_INVALID         | Price set breaks the one-standard rule
Concurrency  | OPTIMISTIC_LOCK_CONFLICT  | Caller's version is stale
Immutability | IMMUTABILITY_VIOLATION    | Update/delete of an append-only record

===============================================================================
PROPAGATION
===============================================================================

All of these are terminal: the core never clamps, floors, or "fixes" a
request, and never retries internally.  Services roll back the whole
transaction before re-raising, so a caller that sees one of these errors
can rely on nothing having been written.
"""

from decimal import Decimal


class SupplyKernelError(Exception):
    """
    Base exception for all supply kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SUPPLY_KERNEL_ERROR"


# Validation exceptions


class ValidationError(SupplyKernelError):
    """Base exception for input validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidInputError(ValidationError):
    """Malformed or out-of-range input. Always raised before any write."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} ({value!r}): {reason}")


# Lookup exceptions


class NotFoundError(SupplyKernelError):
    """Referenced document or stock position does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: object):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# Stock exceptions


class StockError(SupplyKernelError):
    """Base exception for stock invariant violations."""

    code: str = "STOCK_ERROR"


class NegativeStockError(StockError):
    """
    Operation would leave physical stock below zero or below the
    reserved quantity (available would go negative).
    """

    code: str = "NEGATIVE_STOCK"

    def __init__(
        self,
        stock_key: str,
        resulting_physical: int,
        resulting_reserved: int,
    ):
        self.stock_key = stock_key
        self.resulting_physical = resulting_physical
        self.resulting_reserved = resulting_reserved
        super().__init__(
            f"Stock {stock_key} would become physical={resulting_physical}, "
            f"reserved={resulting_reserved}"
        )


class InsufficientStockError(StockError):
    """Reservation or outbound movement exceeds available quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, stock_key: str, requested: int, available: int):
        self.stock_key = stock_key
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock at {stock_key}: requested {requested}, "
            f"available {available}"
        )


# Workflow exceptions


class WorkflowError(SupplyKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested action is not a legal transition from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        document_type: str,
        document_id: object,
        current_status: str,
        action: str,
    ):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"{document_type} {document_id} cannot '{action}' "
            f"from status '{current_status}'"
        )


class AlreadyCompletedError(WorkflowError):
    """Completion requested for a document that is already completed."""

    code: str = "ALREADY_COMPLETED"

    def __init__(self, document_type: str, document_id: object):
        self.document_type = document_type
        self.document_id = str(document_id)
        super().__init__(f"{document_type} {document_id} is already completed")


class DuplicateInvoiceError(WorkflowError):
    """A non-cancelled invoice already exists for the goods receipt."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, goods_receipt_id: object, existing_invoice_id: object | None = None):
        self.goods_receipt_id = str(goods_receipt_id)
        self.existing_invoice_id = (
            str(existing_invoice_id) if existing_invoice_id is not None else None
        )
        super().__init__(
            f"Goods receipt {goods_receipt_id} already has invoice "
            f"{existing_invoice_id}"
        )


class IdempotencyConflictError(WorkflowError):
    """Idempotency key reused with a payload that differs from the original."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_id: object):
        self.idempotency_key = idempotency_key
        self.existing_id = str(existing_id)
        super().__init__(
            f"Idempotency key {idempotency_key!r} already used by {existing_id} "
            "with a different payload"
        )


# Balance exceptions


class BalanceError(SupplyKernelError):
    """Base exception for financial balance invariant violations."""

    code: str = "BALANCE_ERROR"


class OverpaymentError(BalanceError):
    """Payment would push the paid amount above the document total."""

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        document_type: str,
        document_id: object,
        amount: Decimal,
        outstanding: Decimal,
    ):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Payment of {amount} exceeds outstanding {outstanding} "
            f"on {document_type} {document_id}"
        )


class CreditLimitExceededError(BalanceError):
    """New credit would exceed the customer's credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, customer_id: object, requested: Decimal, available: Decimal):
        self.customer_id = str(customer_id)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Customer {customer_id} requested credit {requested}, "
            f"available {available}"
        )


# Pricing exceptions


class PricingError(SupplyKernelError):
    """Base exception for price configuration errors."""

    code: str = "PRICING_ERROR"


class PriceSetError(PricingError):
    """A variant's price set would violate a structural rule."""

    code: str = "PRICE_SET_INVALID"

    def __init__(self, variant_ref: str, reason: str):
        self.variant_ref = variant_ref
        self.reason = reason
        super().__init__(f"Invalid price set for {variant_ref}: {reason}")


# Concurrency exceptions


class ConcurrencyError(SupplyKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: object,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Immutability exceptions


class ImmutabilityError(SupplyKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Stock movements and domain event records are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
