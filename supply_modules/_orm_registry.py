"""
Module ORM Registry (``supply_modules._orm_registry``).

Responsibility
--------------
Ensure the kernel's and every module's SQLAlchemy ORM models are imported
so that ``Base.metadata`` contains their table definitions before tables
are created, and that append-only listeners are attached to every model
that opted in with ``@append_only``.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``supply_modules``
packages and from ``supply_kernel``.  The kernel reaches it only lazily,
from inside ``create_tables()``.

Usage
-----
``create_tables()`` and ``tests/conftest.py`` call
``import_all_orm_models()``; scripts that need the schema call
``create_all_tables()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``supply_modules.*.orm`` module (idempotent).

    Kernel tables are registered first; module tables reference each
    other (GRN -> PO, invoice -> GRN) but never the other way round.
    """
    import supply_kernel.models  # noqa: F401
    import supply_kernel.services.sequence_service  # noqa: F401  # sequence_counters table
    # fmt: off
    import supply_modules.inventory.orm  # noqa: F401
    import supply_modules.catalog.orm  # noqa: F401
    import supply_modules.procurement.orm  # noqa: F401
    import supply_modules.payables.orm  # noqa: F401
    import supply_modules.credit.orm  # noqa: F401
    # fmt: on
    from supply_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()


def create_all_tables() -> None:
    """Create kernel + all module ORM tables on the initialized engine.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from supply_kernel.db.engine import create_tables

    create_tables()
