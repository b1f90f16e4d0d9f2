"""
Provenance Service - resolves a lot back to its batches and farmers.

Three hops, each a set-valued query keyed by identity:

    batches      = {b : (lot, b) in lot_batches}
    transactions = {t : (b, t) in batch_sources, b in batches}
    farmers      = {farmer(t) : t in transactions}, collapsed by farmer id

Results are sorted by id, so the same stored links always produce the
same result whatever order the rows come back in.

This is a reporting path. A broken chain (lot without batch links, batch
without sources, transaction whose farmer is gone) is logged as a
DataIntegrityError and the resolver returns whatever it could resolve,
with ``complete=False``.
"""

import logging
from contextlib import nullcontext
from typing import Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, selectinload

from src.models import Batch, BatchSourceLink, Farmer, Lot, LotBatchLink, PurchaseTransaction
from src.services.batch_service import batch_record
from src.services.database import session_scope
from src.services.dto import ProvenanceResult
from src.services.exceptions import DataIntegrityError, NotFoundError
from src.services.logging_utils import get_service_logger, log_operation
from src.services.master_data_service import farmer_summary

logger = get_service_logger(__name__)


def _integrity_gap(lot_id: int, message: str, **details) -> None:
    """Log a broken provenance link without raising."""
    error = DataIntegrityError(message, lot_id=lot_id, **details)
    log_operation(
        logger,
        "resolve_provenance",
        "integrity_gap",
        level=logging.ERROR,
        error_kind=error.kind,
        detail=error.message,
        lot_id=lot_id,
        **details,
    )


def resolve_provenance(lot_id: int, session: Optional[Session] = None) -> ProvenanceResult:
    """
    Resolve the batches, purchase transactions and farmers behind a lot.

    Read-only. All three hops run in one session so a lot is never seen
    without the links committed with it.

    Args:
        lot_id: Lot to resolve
        session: Optional database session (uses session_scope if not provided)

    Returns:
        ProvenanceResult with batches and farmers ordered by id

    Raises:
        NotFoundError: If the lot does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.scalar(select(Lot.id).where(Lot.id == lot_id)) is None:
            raise NotFoundError("Lot", lot_id)

        complete = True

        # Hop 1: lot -> batches
        batch_ids: Set[int] = set(
            session.scalars(select(LotBatchLink.batch_id).where(LotBatchLink.lot_id == lot_id)).all()
        )
        if not batch_ids:
            _integrity_gap(lot_id, f"Lot {lot_id} has no linked batches")
            return ProvenanceResult(
                lot_id=lot_id, batches=(), farmers=(), purchase_transaction_ids=(), complete=False
            )

        batches = session.scalars(
            select(Batch)
            .options(selectinload(Batch.sources))
            .where(Batch.id.in_(batch_ids))
            .order_by(Batch.id)
        ).all()
        for batch in batches:
            if not batch.is_closed:
                complete = False
                _integrity_gap(
                    lot_id,
                    f"Batch {batch.id} is linked to a lot but is {batch.status}",
                    batch_id=batch.id,
                )

        # Hop 2: batches -> purchase transactions
        source_rows = session.execute(
            select(BatchSourceLink.batch_id, BatchSourceLink.purchase_transaction_id).where(
                BatchSourceLink.batch_id.in_(batch_ids)
            )
        ).all()
        transaction_ids: Set[int] = {txn_id for _, txn_id in source_rows}
        for batch_id in sorted(batch_ids - {batch_id for batch_id, _ in source_rows}):
            complete = False
            _integrity_gap(lot_id, f"Batch {batch_id} has no source transactions", batch_id=batch_id)

        # Hop 3: transactions -> farmers, collapsed by farmer id
        farmer_ids: Set[int] = set()
        if transaction_ids:
            farmer_ids = set(
                session.scalars(
                    select(PurchaseTransaction.farmer_id).where(
                        PurchaseTransaction.id.in_(transaction_ids)
                    )
                ).all()
            )
        farmers = []
        if farmer_ids:
            farmers = session.scalars(
                select(Farmer)
                .options(joinedload(Farmer.group))
                .where(Farmer.id.in_(farmer_ids))
                .order_by(Farmer.id)
            ).all()
        missing_farmers = farmer_ids - {f.id for f in farmers}
        for farmer_id in sorted(missing_farmers):
            complete = False
            _integrity_gap(lot_id, f"Farmer {farmer_id} not found", farmer_id=farmer_id)

        result = ProvenanceResult(
            lot_id=lot_id,
            batches=tuple(batch_record(b) for b in batches),
            farmers=tuple(farmer_summary(f) for f in farmers),
            purchase_transaction_ids=tuple(sorted(transaction_ids)),
            complete=complete,
        )
        log_operation(
            logger,
            "resolve_provenance",
            "success" if complete else "degraded",
            level=logging.DEBUG,
            lot_id=lot_id,
            batch_count=len(result.batches),
            farmer_count=len(result.farmers),
        )
        return result
