"""
Price resolution - choose the effective price for a variant.

A product variant may carry several concurrently valid price records of
different types (standard, sale, bulk, wholesale, retail, promotional),
each with an optional validity window ``[valid_from, valid_until)``.

Resolution rule:
    1. Keep the records whose window contains ``at`` (open ends allowed).
    2. Pick the requested type.  If several records of that type are valid,
       the one with the latest ``valid_from`` wins (an open start counts as
       earliest); ties break on ``price_id`` for determinism.
    3. If the requested type has no valid record, fall back to ``standard``.
    4. If no standard record is valid either, raise NotFoundError.

Structural rule (checked on mutation, never at read time):
    Exactly one ``standard`` record exists per variant; amounts are
    non-negative; ``amount <= mrp`` when an MRP (list price) is present;
    ``valid_from < valid_until`` when both are present.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

from supply_engines.tracer import traced_engine
from supply_kernel.exceptions import NotFoundError, PriceSetError
from supply_kernel.logging_config import get_logger

logger = get_logger("engines.price_resolution")

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class PriceType(str, Enum):
    """Kinds of price a variant may carry."""

    STANDARD = "standard"
    SALE = "sale"
    BULK = "bulk"
    WHOLESALE = "wholesale"
    RETAIL = "retail"
    PROMOTIONAL = "promotional"


@dataclass(frozen=True)
class PriceRecord:
    """One price for a variant."""

    price_type: PriceType
    amount: Decimal
    mrp: Decimal | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    price_id: UUID | None = None

    def is_valid_at(self, at: datetime) -> bool:
        if self.valid_from is not None and at < self.valid_from:
            return False
        if self.valid_until is not None and at >= self.valid_until:
            return False
        return True


def _recency_key(record: PriceRecord) -> tuple[datetime, str]:
    return (record.valid_from or _EARLIEST, str(record.price_id or ""))


@traced_engine("pricing.resolve", "1.0", fingerprint_fields=("price_type", "at"))
def resolve_price(
    records: Iterable[PriceRecord],
    price_type: PriceType | str,
    at: datetime,
    variant_ref: str = "variant",
) -> PriceRecord:
    """Return the effective price of ``price_type`` at ``at``."""
    requested = PriceType(price_type)
    valid = [r for r in records if r.is_valid_at(at)]

    for candidate_type in (requested, PriceType.STANDARD):
        matches = [r for r in valid if r.price_type == candidate_type]
        if matches:
            chosen = max(matches, key=_recency_key)
            if candidate_type != requested:
                logger.debug(
                    "price_type_fallback",
                    extra={
                        "variant_ref": variant_ref,
                        "requested": requested.value,
                        "resolved": candidate_type.value,
                    },
                )
            return chosen

    raise NotFoundError("Price", f"{variant_ref}:{requested.value}@{at.isoformat()}")


def validate_price_set(records: Iterable[PriceRecord], variant_ref: str = "variant") -> None:
    """
    Check the structural rules for a variant's complete price set.

    Raises:
        PriceSetError: on the first violated rule.
    """
    records = list(records)
    standard_count = sum(1 for r in records if r.price_type == PriceType.STANDARD)
    if standard_count != 1:
        raise PriceSetError(
            variant_ref,
            f"exactly one standard price is required, found {standard_count}",
        )
    for r in records:
        if r.amount < 0:
            raise PriceSetError(variant_ref, f"{r.price_type.value} price is negative")
        if r.mrp is not None:
            if r.mrp < 0:
                raise PriceSetError(variant_ref, f"{r.price_type.value} MRP is negative")
            if r.amount > r.mrp:
                raise PriceSetError(
                    variant_ref,
                    f"{r.price_type.value} price {r.amount} exceeds MRP {r.mrp}",
                )
        if (
            r.valid_from is not None
            and r.valid_until is not None
            and r.valid_from >= r.valid_until
        ):
            raise PriceSetError(
                variant_ref,
                f"{r.price_type.value} price window is empty",
            )
