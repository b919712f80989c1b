"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock movement history is the audit trail behind every stock figure:
the reconciliation check (sum of movement deltas == physical quantity) is
only meaningful if movements can never be edited or removed.  The same
holds for recorded domain events, which downstream consumers may replay.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here raise ImmutabilityViolationError, so
the flush aborts and the surrounding transaction rolls back.

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable           | Registered by
--------------------|--------------------------|------------------------------
StockMovement       | ALWAYS (from creation)   | supply_modules.inventory.orm
DomainEventRecord   | ALWAYS (from creation)   | supply_kernel.models.event_log

Models opt in with the ``@append_only("EntityName")`` class decorator;
``register_immutability_listeners()`` then attaches the listeners to every
opted-in model.  Bulk ``update()`` / ``delete()`` statements bypass mapper
events; no code in this repository issues them against protected tables.
"""

from sqlalchemy import event

from supply_kernel.exceptions import ImmutabilityViolationError
from supply_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# model class -> entity type name
_APPEND_ONLY_MODELS: dict[type, str] = {}
_registered = False


def append_only(entity_type: str):
    """Class decorator marking an ORM model as append-only."""

    def decorator(cls):
        _APPEND_ONLY_MODELS[cls] = entity_type
        if _registered:
            _attach(cls)
        return cls

    return decorator


def _entity_type_of(target) -> str:
    for cls, name in _APPEND_ONLY_MODELS.items():
        if isinstance(target, cls):
            return name
    return type(target).__name__


def _reject_update(mapper, connection, target):
    entity_type = _entity_type_of(target)
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be modified",
    )


def _reject_delete(mapper, connection, target):
    entity_type = _entity_type_of(target)
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be deleted",
    )


def _attach(cls) -> None:
    if not event.contains(cls, "before_update", _reject_update):
        event.listen(cls, "before_update", _reject_update)
    if not event.contains(cls, "before_delete", _reject_delete):
        event.listen(cls, "before_delete", _reject_delete)


def register_immutability_listeners() -> None:
    """Register enforcement listeners on every append-only model (idempotent)."""
    global _registered
    _registered = True
    for cls in _APPEND_ONLY_MODELS:
        _attach(cls)
    logger.debug(
        "immutability_listeners_registered",
        extra={"models": sorted(_APPEND_ONLY_MODELS.values())},
    )


def unregister_immutability_listeners() -> None:
    """Remove enforcement listeners. FOR TESTING ONLY."""
    global _registered
    _registered = False
    for cls in _APPEND_ONLY_MODELS:
        if event.contains(cls, "before_update", _reject_update):
            event.remove(cls, "before_update", _reject_update)
        if event.contains(cls, "before_delete", _reject_delete):
            event.remove(cls, "before_delete", _reject_delete)


def protected_entity_types() -> tuple[str, ...]:
    """Names of all registered append-only entity types."""
    return tuple(sorted(_APPEND_ONLY_MODELS.values()))
