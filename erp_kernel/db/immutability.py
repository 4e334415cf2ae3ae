"""
ORM-level immutability enforcement for the stock movement journal.

Movements are the audit trail behind every inventory quantity: once written
they are never edited or removed.  Corrections are new movements.

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent:

    session.flush()
         |
         v
    [before_update] --> _reject_movement_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_movement_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

``SqlRepository`` already refuses ``update``/``delete`` on the movement
collection; these listeners also catch code that reaches the ORM directly.

Usage:

    from erp_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once, after tables are created

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from erp_kernel.exceptions import ImmutabilityViolationError
from erp_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockMovement",
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockMovement",
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_movement_update(mapper, connection, target):
    """Stock movements are immutable from creation."""
    _reject(target, "UPDATE", "Stock movements are immutable and cannot be modified")


def _reject_movement_delete(mapper, connection, target):
    """Stock movements cannot be deleted."""
    _reject(target, "DELETE", "Stock movements cannot be deleted")


def register_immutability_listeners():
    """Register the movement listeners.  Safe to call more than once."""
    from erp_kernel.models.inventory import StockMovementModel

    if not event.contains(StockMovementModel, "before_update", _reject_movement_update):
        event.listen(StockMovementModel, "before_update", _reject_movement_update)
    if not event.contains(StockMovementModel, "before_delete", _reject_movement_delete):
        event.listen(StockMovementModel, "before_delete", _reject_movement_delete)

    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the movement listeners.

    WARNING: Only use this in tests that need to bypass the guard.
    """
    from erp_kernel.models.inventory import StockMovementModel

    _safe_remove_listener(StockMovementModel, "before_update", _reject_movement_update)
    _safe_remove_listener(StockMovementModel, "before_delete", _reject_movement_delete)
