"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here enforce two rules:

    session.flush()
         |
         v
    [before_update] --> _check_snapshot_update() -------> ImmutabilityViolationError
         |         +--> _check_notes_append_only() ----+
         v
    SQL sent to database (only if checks pass)

Entity              | Rule
--------------------|---------------------------------------------------------
EVMSnapshotModel    | Never updated.  Re-analysis writes a new snapshot row.
BudgetModel         | ``notes`` may only grow: new value must start with old.
TransactionModel    | same as BudgetModel
CashFlowModel       | same as BudgetModel

Snapshot DELETE is permitted: it is the explicit admin action exposed by
``SnapshotStore.delete``.

Usage:

    from program_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once, at startup

Tests that need to seed a deliberately inconsistent row may call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from program_kernel.exceptions import ImmutabilityViolationError
from program_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered = False


def _check_snapshot_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "EVMSnapshot",
            "entity_id": target.snapshot_id,
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="EVMSnapshot",
        entity_id=target.snapshot_id,
        reason="snapshots are frozen at creation",
    )


def _check_notes_append_only(mapper, connection, target):
    history = get_history(target, "notes")
    if not history.added or not history.deleted:
        return

    old = history.deleted[0] or ""
    new = history.added[0] or ""
    if new.startswith(old):
        return

    entity_type = type(target).__name__.removesuffix("Model")
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": target.row_id,
            "operation": "UPDATE",
            "field": "notes",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=target.row_id,
        reason="notes are append-only",
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    global _registered
    if _registered:
        return

    from program_kernel.models import (
        BudgetModel,
        CashFlowModel,
        EVMSnapshotModel,
        TransactionModel,
    )

    event.listen(EVMSnapshotModel, "before_update", _check_snapshot_update)
    for model in (BudgetModel, TransactionModel, CashFlowModel):
        event.listen(model, "before_update", _check_notes_append_only)
    _registered = True


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    global _registered
    if not _registered:
        return

    from program_kernel.models import (
        BudgetModel,
        CashFlowModel,
        EVMSnapshotModel,
        TransactionModel,
    )

    event.remove(EVMSnapshotModel, "before_update", _check_snapshot_update)
    for model in (BudgetModel, TransactionModel, CashFlowModel):
        event.remove(model, "before_update", _check_notes_append_only)
    _registered = False
