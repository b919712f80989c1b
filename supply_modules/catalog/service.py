"""
Catalog Service (``supply_modules.catalog.service``).

Responsibility
--------------
Maintains the persisted price set of every product variant and the table
of tax rates, and resolves the effective price of a variant through the
pure ``supply_engines.price_resolution`` engine.

Invariants
----------
- A variant's price set satisfies ``validate_price_set`` after every
  committed mutation: exactly one standard price, amounts within MRP,
  non-empty validity windows.  The check runs on the complete resulting
  set before the flush, so an invalid set is never written.
- Mutations of one variant's price set are serialized on a document lock
  (``price-set:<product>:<variant>``).
- Tax rates are between 0 and 100 with at most 4 decimal places; codes are
  unique.  Deactivated rates stay readable.

Failure Modes
-------------
- ``PriceSetError``: mutation would break the price-set rules (including
  removal of the standard price).
- ``InvalidInputError``: malformed amount, rate or code.
- ``NotFoundError``: unknown price id, tax code, or no resolvable price.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supply_engines.price_resolution import PriceType, resolve_price, validate_price_set
from supply_kernel.domain.clock import Clock
from supply_kernel.domain.values import (
    HUNDRED,
    round_quantity,
    to_choice,
    to_money,
    to_non_negative_decimal,
)
from supply_kernel.exceptions import InvalidInputError, NotFoundError
from supply_kernel.logging_config import get_logger
from supply_kernel.services.base import BaseService
from supply_kernel.services.event_publisher import EventBus, EventPublisher
from supply_kernel.services.keyed_locks import DOCUMENT_LOCKS
from supply_modules.catalog.models import Price, TaxRate
from supply_modules.catalog.orm import ProductPriceModel, TaxRateModel

logger = get_logger("modules.catalog.service")

_UNSET = object()


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _variant_key(variant_id: UUID | None) -> str:
    return str(variant_id) if variant_id is not None else ""


def _price_type(value: PriceType | str) -> PriceType:
    return to_choice(PriceType, value, "price_type")


class CatalogService(BaseService):
    """Price sets and tax rates."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        publisher: EventPublisher | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, event_bus, publisher, auto_commit)

    # =========================================================================
    # Prices
    # =========================================================================

    @staticmethod
    def _price_set_lock(product_id: UUID, variant_id: UUID | None) -> str:
        return f"price-set:{product_id}:{_variant_key(variant_id) or '-'}"

    def _load_price_set(self, product_id: UUID, variant_id: UUID | None) -> list[ProductPriceModel]:
        return list(
            self._session.execute(
                select(ProductPriceModel)
                .where(
                    ProductPriceModel.product_id == product_id,
                    ProductPriceModel.variant_key == _variant_key(variant_id),
                )
                .order_by(ProductPriceModel.price_type, ProductPriceModel.valid_from)
                .with_for_update()
            ).scalars()
        )

    def _load_price(self, price_id: UUID) -> ProductPriceModel:
        model = self._session.get(ProductPriceModel, price_id)
        if model is None:
            raise NotFoundError("Price", price_id)
        return model

    @staticmethod
    def _check_set(models: list[ProductPriceModel], product_id: UUID, variant_id: UUID | None) -> None:
        validate_price_set(
            [m.to_dto().to_record() for m in models],
            variant_ref=f"{product_id}/{_variant_key(variant_id) or '-'}",
        )

    def add_price(
        self,
        product_id: UUID,
        variant_id: UUID | None,
        price_type: PriceType | str,
        amount: Decimal,
        actor_id: UUID,
        mrp: Decimal | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
    ) -> Price:
        """
        Add a price record to a variant's price set.

        The first price of a variant must be its standard price.

        Raises:
            PriceSetError: resulting set breaks the price-set rules.
        """
        kind = _price_type(price_type)
        value = to_money(amount, "amount")
        list_price = to_money(mrp, "mrp") if mrp is not None else None

        self._end_read_transaction()
        with DOCUMENT_LOCKS.hold([self._price_set_lock(product_id, variant_id)]):
            with self._unit_of_work("add_price", actor_id):
                existing = self._load_price_set(product_id, variant_id)
                model = ProductPriceModel(
                    product_id=product_id,
                    variant_id=variant_id,
                    variant_key=_variant_key(variant_id),
                    price_type=kind.value,
                    amount=value,
                    mrp=list_price,
                    valid_from=_as_utc(valid_from),
                    valid_until=_as_utc(valid_until),
                    created_by_id=actor_id,
                )
                self._check_set([*existing, model], product_id, variant_id)
                self._session.add(model)
                self._session.flush()
                logger.info(
                    "price_added",
                    extra={
                        "price_id": str(model.id),
                        "product_id": str(product_id),
                        "variant_id": str(variant_id) if variant_id else None,
                        "price_type": kind.value,
                        "amount": str(value),
                    },
                )
                return model.to_dto()

    def update_price(
        self,
        price_id: UUID,
        actor_id: UUID,
        amount: Decimal | None = None,
        mrp: Decimal | None | object = _UNSET,
        valid_from: datetime | None | object = _UNSET,
        valid_until: datetime | None | object = _UNSET,
    ) -> Price:
        """
        Change fields of a price record.

        ``mrp``, ``valid_from`` and ``valid_until`` may be set to None to
        clear them; omitted fields are left unchanged.  The price type of a
        record never changes.
        """
        new_amount = to_money(amount, "amount") if amount is not None else None
        new_mrp = mrp
        if mrp is not _UNSET and mrp is not None:
            new_mrp = to_money(mrp, "mrp")

        self._end_read_transaction()
        current = self._session.get(ProductPriceModel, price_id)
        if current is None:
            raise NotFoundError("Price", price_id)
        product_id, variant_id = current.product_id, current.variant_id
        self._end_read_transaction()

        with DOCUMENT_LOCKS.hold([self._price_set_lock(product_id, variant_id)]):
            with self._unit_of_work("update_price", actor_id):
                models = self._load_price_set(product_id, variant_id)
                model = next((m for m in models if m.id == price_id), None)
                if model is None:
                    raise NotFoundError("Price", price_id)
                if new_amount is not None:
                    model.amount = new_amount
                if new_mrp is not _UNSET:
                    model.mrp = new_mrp
                if valid_from is not _UNSET:
                    model.valid_from = _as_utc(valid_from)
                if valid_until is not _UNSET:
                    model.valid_until = _as_utc(valid_until)
                model.updated_by_id = actor_id
                self._check_set(models, product_id, variant_id)
                self._session.flush()
                logger.info(
                    "price_updated",
                    extra={"price_id": str(price_id), "amount": str(model.amount)},
                )
                return model.to_dto()

    def remove_price(self, price_id: UUID, actor_id: UUID) -> None:
        """
        Delete a price record.

        Raises:
            PriceSetError: the record is the variant's standard price.
        """
        self._end_read_transaction()
        current = self._session.get(ProductPriceModel, price_id)
        if current is None:
            raise NotFoundError("Price", price_id)
        product_id, variant_id = current.product_id, current.variant_id
        self._end_read_transaction()

        with DOCUMENT_LOCKS.hold([self._price_set_lock(product_id, variant_id)]):
            with self._unit_of_work("remove_price", actor_id):
                models = self._load_price_set(product_id, variant_id)
                model = next((m for m in models if m.id == price_id), None)
                if model is None:
                    raise NotFoundError("Price", price_id)
                self._check_set([m for m in models if m.id != price_id], product_id, variant_id)
                self._session.delete(model)
                self._session.flush()
                logger.info(
                    "price_removed",
                    extra={"price_id": str(price_id), "price_type": model.price_type},
                )

    def list_prices(self, product_id: UUID, variant_id: UUID | None = None) -> list[Price]:
        self._begin_read_transaction()
        models = self._session.execute(
            select(ProductPriceModel)
            .where(
                ProductPriceModel.product_id == product_id,
                ProductPriceModel.variant_key == _variant_key(variant_id),
            )
            .order_by(ProductPriceModel.price_type, ProductPriceModel.valid_from)
        ).scalars()
        prices = [m.to_dto() for m in models]
        self._end_read_transaction()
        return prices

    def resolve_price(
        self,
        product_id: UUID,
        variant_id: UUID | None,
        price_type: PriceType | str = PriceType.STANDARD,
        at: datetime | None = None,
    ) -> Price:
        """
        Effective price of ``price_type`` at ``at`` (default: now).

        Falls back to the standard price when the requested type has no
        valid record.

        Raises:
            NotFoundError: not even a standard price is valid at ``at``.
        """
        kind = _price_type(price_type)
        when = _as_utc(at) or self._clock.now()
        prices = {p.id: p for p in self.list_prices(product_id, variant_id)}
        record = resolve_price(
            [p.to_record() for p in prices.values()],
            kind,
            when,
            variant_ref=f"{product_id}/{_variant_key(variant_id) or '-'}",
        )
        return prices[record.price_id]

    # =========================================================================
    # Tax rates
    # =========================================================================

    @staticmethod
    def _validate_rate(rate: Decimal) -> Decimal:
        value = to_non_negative_decimal(rate, "rate")
        if value > HUNDRED:
            raise InvalidInputError("rate", rate, "must not exceed 100")
        if value != round_quantity(value):
            raise InvalidInputError("rate", rate, "has more than 4 decimal places")
        return round_quantity(value)

    def _load_tax_rate(self, code: str, for_update: bool = False) -> TaxRateModel:
        stmt = select(TaxRateModel).where(TaxRateModel.code == code)
        if for_update:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise NotFoundError("TaxRate", code)
        return model

    def create_tax_rate(self, code: str, name: str, rate: Decimal, actor_id: UUID) -> TaxRate:
        """
        Raises:
            InvalidInputError: empty code/name, rate out of range, duplicate code.
        """
        code = (code or "").strip()
        if not code:
            raise InvalidInputError("code", code, "must not be empty")
        if not (name or "").strip():
            raise InvalidInputError("name", name, "must not be empty")
        value = self._validate_rate(rate)

        with self._unit_of_work("create_tax_rate", actor_id):
            model = TaxRateModel(code=code, name=name.strip(), rate=value, created_by_id=actor_id)
            savepoint = self._session.begin_nested()
            try:
                self._session.add(model)
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                raise InvalidInputError("code", code, "already exists") from None
            logger.info("tax_rate_created", extra={"code": code, "rate": str(value)})
            return model.to_dto()

    def update_tax_rate(
        self,
        code: str,
        actor_id: UUID,
        name: str | None = None,
        rate: Decimal | None = None,
    ) -> TaxRate:
        value = self._validate_rate(rate) if rate is not None else None
        with self._unit_of_work("update_tax_rate", actor_id):
            model = self._load_tax_rate(code, for_update=True)
            if name is not None:
                if not name.strip():
                    raise InvalidInputError("name", name, "must not be empty")
                model.name = name.strip()
            if value is not None:
                model.rate = value
            model.updated_by_id = actor_id
            self._session.flush()
            logger.info("tax_rate_updated", extra={"code": code, "rate": str(model.rate)})
            return model.to_dto()

    def deactivate_tax_rate(self, code: str, actor_id: UUID) -> TaxRate:
        with self._unit_of_work("deactivate_tax_rate", actor_id):
            model = self._load_tax_rate(code, for_update=True)
            model.is_active = False
            model.updated_by_id = actor_id
            self._session.flush()
            logger.info("tax_rate_deactivated", extra={"code": code})
            return model.to_dto()

    def get_tax_rate(self, code: str) -> TaxRate:
        self._begin_read_transaction()
        try:
            return self._load_tax_rate(code).to_dto()
        finally:
            self._end_read_transaction()

    def list_tax_rates(self, active_only: bool = True) -> list[TaxRate]:
        stmt = select(TaxRateModel).order_by(TaxRateModel.code)
        if active_only:
            stmt = stmt.where(TaxRateModel.is_active.is_(True))
        self._begin_read_transaction()
        rates = [m.to_dto() for m in self._session.execute(stmt).scalars()]
        self._end_read_transaction()
        return rates
