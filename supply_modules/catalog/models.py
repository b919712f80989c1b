"""
Catalog Domain Models.

Persisted price records and tax rates, as frozen DTOs.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from supply_engines.price_resolution import PriceRecord, PriceType


@dataclass(frozen=True)
class Price:
    """One price of a product variant."""
    id: UUID
    product_id: UUID
    variant_id: UUID | None
    price_type: PriceType
    amount: Decimal
    mrp: Decimal | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None

    def to_record(self) -> PriceRecord:
        return PriceRecord(
            price_type=self.price_type,
            amount=self.amount,
            mrp=self.mrp,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            price_id=self.id,
        )


@dataclass(frozen=True)
class TaxRate:
    """A named tax percentage that document lines may apply."""
    id: UUID
    code: str
    name: str
    rate: Decimal
    is_active: bool = True
