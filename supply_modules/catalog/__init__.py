"""
Catalog Module (``supply_modules.catalog``).

Persisted price sets (multi-type prices with validity windows) and tax
rates.  Price selection itself is the pure
``supply_engines.price_resolution`` engine; this module stores the records
and enforces the price-set rules on every mutation.
"""

from supply_modules.catalog.models import Price, TaxRate
from supply_modules.catalog.service import CatalogService

__all__ = ["CatalogService", "Price", "TaxRate"]
