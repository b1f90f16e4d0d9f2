"""
Inventory Ledger Service - depletion of lot stock as sales occur.

deplete() is the only writer of Lot.available_quantity. The check and the
decrement are one conditional UPDATE:

    UPDATE lots
       SET available_quantity = available_quantity - :q
     WHERE id = :lot_id AND available_quantity >= :q

Zero affected rows means the lot did not have enough stock at the moment
of the update, so two concurrent sales can never both succeed when their
combined quantity exceeds what is available. There is no restock; new
stock always arrives as a new lot.

Each successful depletion appends a LotDepletion row in the same
transaction. A caller-supplied idempotency key makes sale submission safe
to retry.
"""

import logging
from contextlib import nullcontext
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models import Lot, LotDepletion
from src.services.database import session_scope
from src.services.dto import DepletionRecord, LotRecord
from src.services.exceptions import (
    IdempotencyKeyReused,
    InsufficientStock,
    InvalidQuantity,
    NotFoundError,
    ValidationError,
)
from src.services.lot_service import get_lot
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.datetime_utils import as_utc
from src.utils.validators import parse_weight

logger = get_service_logger(__name__)

MAX_KEY_LENGTH = 100


def _depletion_record(row: LotDepletion) -> DepletionRecord:
    return DepletionRecord(
        id=row.id,
        lot_id=row.lot_id,
        quantity=row.quantity,
        balance_after=row.balance_after,
        sale_reference=row.sale_reference,
        idempotency_key=row.idempotency_key,
        created_at=as_utc(row.created_at),
    )


def deplete(
    lot_id: int,
    quantity,
    *,
    idempotency_key: Optional[str] = None,
    sale_reference: Optional[str] = None,
    session: Optional[Session] = None,
) -> LotRecord:
    """
    Reduce a lot's available quantity by ``quantity`` kg.

    Called by the Sales component, usually inside its own transaction via
    ``session=``.

    Args:
        lot_id: Lot being sold from
        quantity: Weight sold, kg (> 0)
        idempotency_key: Optional key; a replay of the same key, lot and
            quantity returns the current lot without depleting again
        sale_reference: Optional sale/invoice reference stored on the ledger
        session: Optional database session (uses session_scope if not provided)

    Returns:
        LotRecord reflecting the new available quantity

    Raises:
        InvalidQuantity: If quantity is not a positive number
        NotFoundError: If the lot does not exist
        InsufficientStock: If quantity exceeds available_quantity (nothing changes)
        IdempotencyKeyReused: If the key was used for a different lot or quantity
    """
    try:
        qty = parse_weight(quantity, "quantity")
    except ValueError:
        raise InvalidQuantity("quantity", quantity, "must be a valid number")
    if qty <= 0:
        log_operation(
            logger,
            "deplete",
            "invalid_quantity",
            level=logging.WARNING,
            lot_id=lot_id,
            quantity=str(qty),
        )
        raise InvalidQuantity("quantity", qty)

    for field, value in (("idempotency_key", idempotency_key), ("sale_reference", sale_reference)):
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{field}: Must be a string", field=field, value=value)

    if idempotency_key is not None:
        idempotency_key = idempotency_key.strip() or None
    if idempotency_key is not None and len(idempotency_key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"idempotency_key: Must be {MAX_KEY_LENGTH} characters or fewer",
            field="idempotency_key",
        )

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if idempotency_key is not None:
            previous = session.scalars(
                select(LotDepletion).where(LotDepletion.idempotency_key == idempotency_key)
            ).first()
            if previous is not None:
                if previous.lot_id == lot_id and previous.quantity == qty:
                    log_operation(
                        logger,
                        "deplete",
                        "idempotent_replay",
                        lot_id=lot_id,
                        depletion_id=previous.id,
                    )
                    return get_lot(lot_id, session=session)
                log_operation(
                    logger,
                    "deplete",
                    "idempotency_key_reused",
                    level=logging.WARNING,
                    lot_id=lot_id,
                    idempotency_key=idempotency_key,
                )
                raise IdempotencyKeyReused(idempotency_key)

        if session.scalar(select(Lot.id).where(Lot.id == lot_id)) is None:
            raise NotFoundError("Lot", lot_id)

        result = session.execute(
            update(Lot)
            .where(Lot.id == lot_id, Lot.available_quantity >= qty)
            .values(available_quantity=func.round(Lot.available_quantity - qty, 3))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            available = session.scalar(select(Lot.available_quantity).where(Lot.id == lot_id))
            log_operation(
                logger,
                "deplete",
                "insufficient_stock",
                level=logging.WARNING,
                lot_id=lot_id,
                requested=str(qty),
                available=str(available),
            )
            raise InsufficientStock(lot_id, qty, available)

        lot = session.scalars(
            select(Lot).where(Lot.id == lot_id).execution_options(populate_existing=True)
        ).one()

        session.add(
            LotDepletion(
                lot_id=lot_id,
                quantity=qty,
                balance_after=lot.available_quantity,
                sale_reference=sale_reference,
                idempotency_key=idempotency_key,
            )
        )
        try:
            session.flush()
        except IntegrityError as e:
            if idempotency_key is not None and "idempotency_key" in str(e.orig):
                raise IdempotencyKeyReused(idempotency_key) from e
            raise

        log_operation(
            logger,
            "deplete",
            "success",
            lot_id=lot_id,
            quantity=str(qty),
            balance_after=str(lot.available_quantity),
            sale_reference=sale_reference,
        )
        return get_lot(lot_id, session=session)


def get_depletion_history(lot_id: int, session: Optional[Session] = None) -> List[DepletionRecord]:
    """
    Depletions of a lot, oldest first.

    Raises:
        NotFoundError: If the lot does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.scalar(select(Lot.id).where(Lot.id == lot_id)) is None:
            raise NotFoundError("Lot", lot_id)
        rows = session.scalars(
            select(LotDepletion).where(LotDepletion.lot_id == lot_id).order_by(LotDepletion.id)
        ).all()
        return [_depletion_record(r) for r in rows]
