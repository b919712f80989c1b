"""
Configuration Schema (``supply_config.schema``).

Typed settings for each module.  Field defaults are the behavior the core
ships with; deployments override them through YAML (see
``supply_config.loader``).  Settings only tune policy knobs (numbering,
tolerances, payment terms); they can never switch off a kernel invariant
(see ``supply_kernel.invariants``).

Every settings class validates itself in ``__post_init__``: an invalid
value logs a warning and raises ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from supply_kernel.logging_config import get_logger

logger = get_logger("config.schema")


def _reject(section: str, key: str, value: Any, reason: str) -> None:
    logger.warning(
        "config_value_invalid",
        extra={"section": section, "key": key, "value": str(value), "reason": reason},
    )
    raise ValueError(f"{section}.{key}={value!r}: {reason}")


def _check_prefix(section: str, key: str, value: str) -> None:
    if not value or not value.replace("_", "").isalnum():
        _reject(section, key, value, "prefix must be a non-empty alphanumeric code")


@dataclass(frozen=True)
class InventorySettings:
    """Inventory ledger settings."""

    default_location: str = ""
    # Cap on lines in one multi-item transfer; bounds the rows one call locks.
    max_transfer_lines: int = 100

    def __post_init__(self) -> None:
        if self.max_transfer_lines < 1:
            _reject("inventory", "max_transfer_lines", self.max_transfer_lines, "must be >= 1")

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            default_location=str(data.get("default_location", "")),
            max_transfer_lines=int(data.get("max_transfer_lines", 100)),
        )


@dataclass(frozen=True)
class ProcurementSettings:
    """Purchase order and goods receipt settings."""

    po_number_prefix: str = "PO"
    grn_number_prefix: str = "GRN"
    # Percentage above the ordered quantity that may be received; 0 = none.
    over_receipt_tolerance_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        _check_prefix("procurement", "po_number_prefix", self.po_number_prefix)
        _check_prefix("procurement", "grn_number_prefix", self.grn_number_prefix)
        if not Decimal("0") <= self.over_receipt_tolerance_percent <= Decimal("100"):
            _reject(
                "procurement",
                "over_receipt_tolerance_percent",
                self.over_receipt_tolerance_percent,
                "must be between 0 and 100",
            )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            po_number_prefix=str(data.get("po_number_prefix", "PO")),
            grn_number_prefix=str(data.get("grn_number_prefix", "GRN")),
            over_receipt_tolerance_percent=Decimal(
                str(data.get("over_receipt_tolerance_percent", "0"))
            ),
        )


@dataclass(frozen=True)
class PayablesSettings:
    """Purchase invoice and supplier payment settings."""

    invoice_number_prefix: str = "INV"
    payment_number_prefix: str = "PAY"
    default_payment_terms_days: int = 30
    # Payment method -> reference fields that must be non-empty.
    required_reference_fields: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: {"cheque": ("cheque_number",)}
    )

    def __post_init__(self) -> None:
        _check_prefix("payables", "invoice_number_prefix", self.invoice_number_prefix)
        _check_prefix("payables", "payment_number_prefix", self.payment_number_prefix)
        if self.default_payment_terms_days < 0:
            _reject(
                "payables",
                "default_payment_terms_days",
                self.default_payment_terms_days,
                "must be >= 0",
            )
        allowed = {"reference_number", "bank_name", "cheque_number", "transaction_id"}
        for method, fields_ in self.required_reference_fields.items():
            unknown = set(fields_) - allowed
            if unknown:
                _reject(
                    "payables",
                    f"required_reference_fields.{method}",
                    sorted(unknown),
                    f"unknown reference fields; allowed: {sorted(allowed)}",
                )

    def required_fields_for(self, method: str) -> tuple[str, ...]:
        return tuple(self.required_reference_fields.get(method, ()))

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        required = data.get("required_reference_fields")
        kwargs: dict[str, Any] = {
            "invoice_number_prefix": str(data.get("invoice_number_prefix", "INV")),
            "payment_number_prefix": str(data.get("payment_number_prefix", "PAY")),
            "default_payment_terms_days": int(data.get("default_payment_terms_days", 30)),
        }
        if required is not None:
            kwargs["required_reference_fields"] = {
                str(method): tuple(fields_ or ()) for method, fields_ in required.items()
            }
        return cls(**kwargs)


@dataclass(frozen=True)
class CreditSettings:
    """Customer credit tracker settings."""

    period_number_prefix: str = "CRD"
    default_credit_days: int = 30

    def __post_init__(self) -> None:
        _check_prefix("credit", "period_number_prefix", self.period_number_prefix)
        if self.default_credit_days < 0:
            _reject("credit", "default_credit_days", self.default_credit_days, "must be >= 0")

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            period_number_prefix=str(data.get("period_number_prefix", "CRD")),
            default_credit_days=int(data.get("default_credit_days", 30)),
        )


@dataclass(frozen=True)
class SupplyConfig:
    """Complete runtime configuration."""

    inventory: InventorySettings = field(default_factory=InventorySettings)
    procurement: ProcurementSettings = field(default_factory=ProcurementSettings)
    payables: PayablesSettings = field(default_factory=PayablesSettings)
    credit: CreditSettings = field(default_factory=CreditSettings)
    checksum: str = ""

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()
