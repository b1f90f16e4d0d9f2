"""
ORM-level immutability enforcement for the provenance ledger.

Listeners fire before SQLAlchemy sends UPDATE/DELETE statements for:

Entity            | When immutable              | Allowed change
------------------|-----------------------------|-------------------------------
Batch             | once status is closed       | none
BatchSourceLink   | always                      | none
LotBatchLink      | always                      | none
LotDepletion      | always                      | none
Lot               | always                      | available_quantity only

Lot.available_quantity is decremented with a Core UPDATE by the inventory
ledger, which does not pass through these listeners; any ORM-level change
to a lot's composition columns is rejected.

The listeners are registered when ``src.models`` is imported.
"""

import logging

from sqlalchemy import event
from sqlalchemy.orm import object_session
from sqlalchemy.orm.attributes import get_history

from src.services.exceptions import ImmutabilityViolation

from .batch import Batch, BatchSourceLink
from .enums import BatchStatus
from .lot import Lot, LotBatchLink
from .lot_depletion import LotDepletion

logger = logging.getLogger("coop_trace.models.immutability")

LOT_COMPOSITION_FIELDS = ("lot_code", "product_id", "quantity", "unit_cost")


def _blocked(entity: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity, "entity_id": entity_id, "operation": operation},
    )
    raise ImmutabilityViolation(entity, entity_id, reason)


def _check_batch_update(mapper, connection, target):
    """
    Block updates to a batch that was already closed before this flush.

    The closing update itself (processing -> closed) is allowed. A batch
    marked dirty only through a collection (a new lot link) is not updated.
    """
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    status_history = get_history(target, "status")
    was_closed = BatchStatus.CLOSED.value in (status_history.deleted or ())
    still_closed = (
        not status_history.has_changes()
        and target.status == BatchStatus.CLOSED.value
    )
    if was_closed or still_closed:
        _blocked("Batch", target.id, "UPDATE", "closed batches cannot be modified")


def _check_batch_delete(mapper, connection, target):
    if target.status == BatchStatus.CLOSED.value:
        _blocked("Batch", target.id, "DELETE", "closed batches cannot be deleted")


def _append_only(entity: str):
    def _check_update(mapper, connection, target):
        _blocked(entity, target.id, "UPDATE", "records are append-only")

    def _check_delete(mapper, connection, target):
        _blocked(entity, target.id, "DELETE", "records are append-only")

    return _check_update, _check_delete


def _check_lot_update(mapper, connection, target):
    for field in LOT_COMPOSITION_FIELDS:
        if get_history(target, field).has_changes():
            _blocked("Lot", target.id, "UPDATE", f"{field} is fixed at creation")


def _check_lot_delete(mapper, connection, target):
    _blocked("Lot", target.id, "DELETE", "lots cannot be deleted")


_LEDGER_CHECKS = {
    BatchSourceLink: _append_only("BatchSourceLink"),
    LotBatchLink: _append_only("LotBatchLink"),
    LotDepletion: _append_only("LotDepletion"),
}


def register_immutability_listeners():
    """Register all immutability listeners. Safe to call more than once."""
    pairs = [
        (Batch, "before_update", _check_batch_update),
        (Batch, "before_delete", _check_batch_delete),
        (Lot, "before_update", _check_lot_update),
        (Lot, "before_delete", _check_lot_delete),
    ]
    for model in (BatchSourceLink, LotBatchLink, LotDepletion):
        check_update, check_delete = _LEDGER_CHECKS[model]
        pairs.append((model, "before_update", check_update))
        pairs.append((model, "before_delete", check_delete))

    for target, name, fn in pairs:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
