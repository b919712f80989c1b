"""
Module: supply_kernel.db.types
Responsibility: Column types for exact money and quantity storage and for
    timezone-aware timestamps, identical across PostgreSQL and SQLite.
Architecture position: Kernel > DB.  May be imported by models/ and module
    ORM files.  MUST NOT import from services/, selectors/ or outer layers.

Invariants enforced:
    - No floats anywhere in storage.  ``ExactDecimal`` uses NUMERIC on
      PostgreSQL and a canonical decimal string on SQLite (whose NUMERIC
      affinity would otherwise store REAL values).
    - Values are quantized half-up to the column scale on the way in and
      re-quantized on the way out, so a stored 52.5 always reads back as
      Decimal("52.50").
    - Timestamps always come back timezone-aware in UTC.

Failure modes:
    - ``decimal.InvalidOperation`` if a non-numeric value is bound.

Audit relevance:
    Recomputing a document's totals from its stored lines must be
    byte-identical to the stored totals; that only holds if storage never
    passes through binary floating point.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Fixed-scale decimal column.

    Contract:
        Accepts and returns ``Decimal``.  ``scale`` is the number of
        fractional digits kept; ``precision`` the total digits.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, scale: int = 2, precision: int = 18):
        super().__init__()
        self.scale = scale
        self.precision = precision
        self._quantum = Decimal(1).scaleb(-scale)

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(
            Numeric(self.precision, self.scale, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        quantized = Decimal(value).quantize(self._quantum, rounding=ROUND_HALF_UP)
        if dialect.name == "sqlite":
            return str(quantized)
        return quantized

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value)).quantize(self._quantum, rounding=ROUND_HALF_UP)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalised to UTC.

    Naive values are interpreted as UTC (SQLite returns naive values for
    ``CURRENT_TIMESTAMP`` server defaults).
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def Money() -> ExactDecimal:
    """Money column: 18 digits, 2 decimal places."""
    return ExactDecimal(scale=2, precision=18)


def LineQuantity() -> ExactDecimal:
    """Document line quantity / percentage column: 4 decimal places."""
    return ExactDecimal(scale=4, precision=18)
