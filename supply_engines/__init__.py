"""
Module: supply_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  The canonical import surface for supply_modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import supply_kernel (values, exceptions, logging) and sibling
    engine modules.  MUST NOT import supply_modules or supply_config.

Invariants enforced:
    - Purity: engines never read the clock.  Dates ("as of", "at") are
      explicit parameters supplied by services.
    - Decimal-only arithmetic; floats are converted through ``str``.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``supply_engines.tracer``), emitting SUPPLY_ENGINE_TRACE debug records.
"""

from supply_engines.balance_status import BalanceStatus, derive_balance_status, outstanding
from supply_engines.price_resolution import (
    PriceRecord,
    PriceType,
    resolve_price,
    validate_price_set,
)
from supply_engines.pricing import (
    DocumentTotals,
    LineComputation,
    LineInput,
    compute_document_totals,
    compute_line,
    compute_line_for,
    round2,
)
from supply_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BalanceStatus",
    "derive_balance_status",
    "outstanding",
    "PriceRecord",
    "PriceType",
    "resolve_price",
    "validate_price_set",
    "DocumentTotals",
    "LineComputation",
    "LineInput",
    "compute_document_totals",
    "compute_line",
    "compute_line_for",
    "round2",
    "compute_input_fingerprint",
    "traced_engine",
]
