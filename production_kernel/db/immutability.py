"""
ORM-level append-only enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  These listeners refuse changes the kernel never makes itself:

Entity            | Rule
------------------|-------------------------------------------------------
TargetEvent       | Never updated.  Changes are delete + create (new id).
ProductionEntry   | Identity fields (day, hour, line, style, stage) frozen;
                  | quantities and notes may be corrected.
StyleBalance      | Never deleted.  Totals change only via the ledger.
AppliedDelta      | Never updated or deleted.

Listeners are registered by db.engine.create_tables(engine) and can be removed
in tests that need to write invalid rows on purpose.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from production_kernel.exceptions import ImmutabilityViolationError
from production_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

ENTRY_IDENTITY_FIELDS = ("calendar_day", "hour_index", "line_code", "style_code", "stage")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=reason
    )


def _check_target_event_update(mapper, connection, target):
    _blocked(
        "TargetEvent",
        str(target.id),
        "UPDATE",
        "Target events are never updated; delete and re-create instead",
    )


def _check_production_entry_update(mapper, connection, target):
    changed = [f for f in ENTRY_IDENTITY_FIELDS if get_history(target, f).has_changes()]
    if changed:
        _blocked(
            "ProductionEntry",
            str(target.id),
            "UPDATE",
            f"Identity field(s) {changed} cannot change once recorded",
            fields=changed,
        )


def _check_style_balance_delete(mapper, connection, target):
    _blocked(
        "StyleBalance",
        str(target.style_code),
        "DELETE",
        "Ledger rows are never deleted",
    )


def _check_applied_delta_update(mapper, connection, target):
    _blocked(
        "AppliedDelta",
        f"{target.event_id}/{target.direction}",
        "UPDATE",
        "Applied delta records are immutable",
    )


def _check_applied_delta_delete(mapper, connection, target):
    _blocked(
        "AppliedDelta",
        f"{target.event_id}/{target.direction}",
        "DELETE",
        "Applied delta records cannot be deleted",
    )


def _listeners():
    from production_kernel.models import (
        AppliedDeltaModel,
        ProductionEntryModel,
        StyleBalanceModel,
        TargetEventModel,
    )

    return (
        (TargetEventModel, "before_update", _check_target_event_update),
        (ProductionEntryModel, "before_update", _check_production_entry_update),
        (StyleBalanceModel, "before_delete", _check_style_balance_delete),
        (AppliedDeltaModel, "before_update", _check_applied_delta_update),
        (AppliedDeltaModel, "before_delete", _check_applied_delta_delete),
    )


def register_immutability_listeners() -> None:
    """Register all listeners.  Safe to call more than once."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove all listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
