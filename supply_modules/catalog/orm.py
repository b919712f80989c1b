"""
Module: supply_modules.catalog.orm
Responsibility: SQLAlchemy ORM persistence models for variant prices and
    tax rates.

Architecture position: Modules > Catalog > ORM.  Products and variants are
    owned outside the core and referenced by UUID with NO foreign keys.

Invariants enforced:
    - Monetary fields use ExactDecimal (2 places) -- never float.
    - Tax rate codes are unique.
    - The structural rules of a variant's price set (exactly one standard
      price, amount <= mrp, non-empty windows) are checked by
      CatalogService before every flush, not by constraints.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from supply_kernel.db.base import TrackedBase
from supply_kernel.db.types import ExactDecimal, Money, UTCDateTime


class ProductPriceModel(TrackedBase):
    """
    ORM model for one price record of a product variant.

    Maps to: supply_modules.catalog.models.Price (frozen dataclass).
    """

    __tablename__ = "product_prices"

    __table_args__ = (
        Index("idx_product_price_variant", "product_id", "variant_key"),
    )

    product_id: Mapped[UUID] = mapped_column(nullable=False)
    variant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    variant_key: Mapped[str] = mapped_column(String(36), nullable=False, default="")

    # PriceType enum stored as string
    price_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    mrp: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)

    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen Price DTO."""
        from supply_engines.price_resolution import PriceType
        from supply_modules.catalog.models import Price
        return Price(
            id=self.id,
            product_id=self.product_id,
            variant_id=self.variant_id,
            price_type=PriceType(self.price_type),
            amount=self.amount,
            mrp=self.mrp,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
        )

    def __repr__(self) -> str:
        return f"<ProductPriceModel {self.product_id}/{self.variant_key or '-'} {self.price_type}={self.amount}>"


class TaxRateModel(TrackedBase):
    """
    ORM model for a tax rate.

    Maps to: supply_modules.catalog.models.TaxRate (frozen dataclass).
    """

    __tablename__ = "tax_rates"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    rate: Mapped[Decimal] = mapped_column(ExactDecimal(scale=4), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        """Convert ORM model to frozen TaxRate DTO."""
        from supply_modules.catalog.models import TaxRate
        return TaxRate(
            id=self.id,
            code=self.code,
            name=self.name,
            rate=self.rate,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<TaxRateModel {self.code} {self.rate}%>"
