"""
Batch Service - lifecycle and costing of production batches.

This module provides functions for:
- Opening a batch from completed purchase transactions (harvest receipts)
- Advancing a batch OPEN -> PROCESSING -> CLOSED
- Computing the batch unit cost at closure
- Appending processing log entries while a batch is still running
- Querying batches, their sources, yield and remaining allocatable output

Closure is terminal. Output weight, finished product, quality summary and
unit cost are written exactly once; a closed batch rejects any further
advance with BatchAlreadyClosed and its unit cost is never recomputed.

Unit cost:
    unit_cost = sum(linked purchase amounts) / total_output_weight
    where total_output_weight = output_weight + reject_weight
"""

import logging
from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from src.models import (
    Batch,
    BatchSourceLink,
    BatchStatus,
    LotBatchLink,
    ProcessingLog,
    ProcessType,
    Product,
    PurchaseTransaction,
    Shelter,
)
from src.services.database import session_scope
from src.services.dto import (
    AllocatableBatch,
    BatchClosure,
    BatchRecord,
    BatchYield,
    ClosedBatchRecord,
    OpenBatchRecord,
    ProcessingLogRecord,
    PurchaseTransactionRecord,
    QualitySummary,
)
from src.services.exceptions import (
    BatchAlreadyClosed,
    BatchNotClosed,
    DuplicateBatchCode,
    EmptyBatch,
    InvalidOutputWeight,
    NotFoundError,
    SourceAlreadyAssigned,
    SourceNotEligible,
    ValidationError,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.services.master_data_service import purchase_transaction_record
from src.utils.constants import (
    BATCH_CODE_PREFIX,
    CODE_SEQUENCE_WIDTH,
    MAX_BATCH_CODE_LENGTH,
    PURCHASE_STATUS_COMPLETED,
    ROUNDING,
)
from src.utils.datetime_utils import as_utc, roman_month, utc_now
from src.utils.validators import (
    parse_weight,
    quantize_money,
    quantize_unit_cost,
    quantize_weight,
    sanitize_notes,
    to_decimal,
    validate_code,
)

logger = get_service_logger(__name__)


# =============================================================================
# Record conversion
# =============================================================================


def batch_record(batch: Batch) -> BatchRecord:
    """
    Convert a Batch row to its typed record.

    Closed batches become ClosedBatchRecord (output and unit cost present);
    open and processing batches become OpenBatchRecord.
    """
    source_ids = tuple(sorted(s.purchase_transaction_id for s in batch.sources))

    if batch.is_closed:
        return ClosedBatchRecord(
            id=batch.id,
            batch_code=batch.batch_code,
            status=batch.status,
            input_product_id=batch.input_product_id,
            product_id=batch.product_id,
            shelter_id=batch.shelter_id,
            total_input_weight=batch.total_input_weight,
            total_input_cost=batch.total_input_cost,
            total_output_weight=batch.total_output_weight,
            reject_weight=batch.reject_weight or Decimal("0"),
            unit_cost=batch.unit_cost,
            started_at=as_utc(batch.started_at),
            closed_at=as_utc(batch.closed_at),
            quality=QualitySummary(
                moisture_percent=batch.qc_moisture_percent,
                bean_count=batch.qc_bean_count,
                waste_percent=batch.qc_waste_percent,
                grade=batch.qc_grade,
                notes=batch.qc_notes,
            ),
            source_transaction_ids=source_ids,
            notes=batch.notes,
        )

    return OpenBatchRecord(
        id=batch.id,
        batch_code=batch.batch_code,
        status=batch.status,
        input_product_id=batch.input_product_id,
        shelter_id=batch.shelter_id,
        total_input_weight=batch.total_input_weight,
        total_input_cost=batch.total_input_cost,
        started_at=as_utc(batch.started_at),
        processing_started_at=as_utc(batch.processing_started_at),
        source_transaction_ids=source_ids,
        notes=batch.notes,
    )


def _processing_log_record(entry: ProcessingLog) -> ProcessingLogRecord:
    return ProcessingLogRecord(
        id=entry.id,
        batch_id=entry.batch_id,
        process_type=entry.process_type,
        log_date=as_utc(entry.log_date),
        temperature=entry.temperature,
        humidity=entry.humidity,
        notes=entry.notes,
    )


def _load_batch(session: Session, batch_id: int, for_update: bool = False) -> Batch:
    stmt = select(Batch).where(Batch.id == batch_id).options(selectinload(Batch.sources))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    batch = session.scalars(stmt).first()
    if batch is None:
        raise NotFoundError("Batch", batch_id)
    return batch


# =============================================================================
# Batch codes
# =============================================================================


def generate_batch_code(
    shelter_id: int,
    product_id: int,
    moment: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> str:
    """
    Generate the next batch code for a shelter, product and month.

    Format: Batch.<ShelterCode>.<SkuPrefix>.<RomanMonth>.<Year>.<Seq>
    e.g. "Batch.SH01.KB.XII.2025.004". The sequence counts existing codes
    with the same prefix.

    Raises:
        NotFoundError: If the shelter or product does not exist
    """
    moment = moment or utc_now()
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        shelter = session.get(Shelter, shelter_id)
        if shelter is None:
            raise NotFoundError("Shelter", shelter_id)
        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)

        shelter_code = shelter.code or f"SH{shelter.id:02d}"
        prefix = ".".join(
            [
                BATCH_CODE_PREFIX,
                shelter_code,
                product.code_prefix,
                roman_month(moment),
                str(moment.year),
            ]
        ) + "."

        existing = set(
            session.scalars(
                select(Batch.batch_code).where(Batch.batch_code.like(prefix + "%"))
            ).all()
        )
        seq = len(existing) + 1
        while f"{prefix}{seq:0{CODE_SEQUENCE_WIDTH}d}" in existing:
            seq += 1
        return f"{prefix}{seq:0{CODE_SEQUENCE_WIDTH}d}"


# =============================================================================
# Lifecycle
# =============================================================================


def open_batch(
    product_id: int,
    shelter_id: int,
    purchase_transaction_ids: Iterable[int],
    *,
    notes: Optional[str] = None,
    batch_code: Optional[str] = None,
    session: Optional[Session] = None,
) -> OpenBatchRecord:
    """
    Open a production batch fed by completed purchase transactions.

    Every source must be a completed purchase of the batch's raw product at
    the same shelter and must not already feed another batch.

    Args:
        product_id: Raw product being processed
        shelter_id: Shelter running the batch
        purchase_transaction_ids: Harvest receipts that make up the input mass
        notes: Optional free-text notes
        batch_code: Explicit code; generated when omitted
        session: Optional database session (uses session_scope if not provided)

    Returns:
        OpenBatchRecord in status "open"

    Raises:
        EmptyBatch: If no purchase transactions are given
        NotFoundError: If the product, shelter or a transaction does not exist
        SourceNotEligible: If a transaction is not completed or mismatches
        SourceAlreadyAssigned: If a transaction already feeds a batch
        DuplicateBatchCode: If an explicit batch code is taken
    """
    source_ids = sorted(set(purchase_transaction_ids))
    if not source_ids:
        log_operation(logger, "open_batch", "empty_batch", level=logging.WARNING)
        raise EmptyBatch()

    try:
        notes = sanitize_notes(notes)
    except ValueError as e:
        raise ValidationError(str(e), field="notes")

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if session.get(Shelter, shelter_id) is None:
            raise NotFoundError("Shelter", shelter_id)

        txns = session.scalars(
            select(PurchaseTransaction)
            .where(PurchaseTransaction.id.in_(source_ids))
            .order_by(PurchaseTransaction.id)
        ).all()
        found = {t.id for t in txns}
        for txn_id in source_ids:
            if txn_id not in found:
                raise NotFoundError("PurchaseTransaction", txn_id)

        for txn in txns:
            reason = None
            if txn.status != PURCHASE_STATUS_COMPLETED:
                reason = f"status is {txn.status}"
            elif txn.product_id != product_id:
                reason = f"product {txn.product_id} does not match batch product {product_id}"
            elif txn.shelter_id != shelter_id:
                reason = f"shelter {txn.shelter_id} does not match batch shelter {shelter_id}"
            if reason is not None:
                log_operation(
                    logger,
                    "open_batch",
                    "source_not_eligible",
                    level=logging.WARNING,
                    purchase_transaction_id=txn.id,
                    reason=reason,
                )
                raise SourceNotEligible(txn.id, reason)

        assigned = session.execute(
            select(BatchSourceLink.purchase_transaction_id, BatchSourceLink.batch_id)
            .where(BatchSourceLink.purchase_transaction_id.in_(source_ids))
            .order_by(BatchSourceLink.purchase_transaction_id)
        ).first()
        if assigned is not None:
            log_operation(
                logger,
                "open_batch",
                "source_already_assigned",
                level=logging.WARNING,
                purchase_transaction_id=assigned[0],
                batch_id=assigned[1],
            )
            raise SourceAlreadyAssigned(assigned[0], assigned[1])

        if batch_code is None:
            batch_code = generate_batch_code(shelter_id, product_id, session=session)
        else:
            valid, message = validate_code(batch_code, MAX_BATCH_CODE_LENGTH, "batch_code")
            if not valid:
                raise ValidationError(message, field="batch_code", value=batch_code)
            batch_code = batch_code.strip()
            taken = session.scalars(
                select(Batch.id).where(Batch.batch_code == batch_code)
            ).first()
            if taken is not None:
                raise DuplicateBatchCode(batch_code)

        total_weight = quantize_weight(sum((t.quantity for t in txns), Decimal("0")))
        total_cost = quantize_money(sum((t.total_amount for t in txns), Decimal("0")))

        batch = Batch(
            batch_code=batch_code,
            input_product_id=product_id,
            shelter_id=shelter_id,
            status=BatchStatus.OPEN.value,
            total_input_weight=total_weight,
            total_input_cost=total_cost,
            notes=notes,
        )
        session.add(batch)
        for txn in txns:
            batch.sources.append(
                BatchSourceLink(
                    purchase_transaction_id=txn.id,
                    quantity_used=txn.quantity,
                    amount=txn.total_amount,
                )
            )
        session.flush()

        log_operation(
            logger,
            "open_batch",
            "success",
            batch_id=batch.id,
            batch_code=batch.batch_code,
            source_count=len(txns),
            total_input_weight=str(total_weight),
        )
        return batch_record(batch)


def _parse_closure_weight(batch_id: int, field: str, value) -> Decimal:
    try:
        return parse_weight(value, field)
    except ValueError:
        raise InvalidOutputWeight(batch_id, field, value, "must be a valid number")


def _close(session: Session, batch: Batch, closure: Optional[BatchClosure]) -> None:
    if closure is None:
        raise InvalidOutputWeight(
            batch.id, "output_weight", None, "is required to close a batch"
        )

    output_weight = _parse_closure_weight(batch.id, "output_weight", closure.output_weight)
    if output_weight <= 0:
        raise InvalidOutputWeight(
            batch.id, "output_weight", output_weight, "must be greater than zero"
        )
    reject_weight = _parse_closure_weight(batch.id, "reject_weight", closure.reject_weight)
    if reject_weight < 0:
        raise InvalidOutputWeight(
            batch.id, "reject_weight", reject_weight, "must be zero or greater"
        )

    product_id = closure.product_id or batch.input_product_id
    if session.get(Product, product_id) is None:
        raise NotFoundError("Product", product_id)

    input_cost = sum((s.amount for s in batch.sources), Decimal("0"))
    total_output = output_weight + reject_weight

    quality = closure.quality or QualitySummary()
    batch.product_id = product_id
    batch.total_input_cost = quantize_money(input_cost)
    batch.total_output_weight = total_output
    batch.reject_weight = reject_weight
    batch.unit_cost = quantize_unit_cost(input_cost / total_output)
    batch.qc_moisture_percent = (
        to_decimal(quality.moisture_percent, "moisture_percent")
        if quality.moisture_percent is not None
        else None
    )
    batch.qc_bean_count = quality.bean_count
    batch.qc_waste_percent = (
        to_decimal(quality.waste_percent, "waste_percent")
        if quality.waste_percent is not None
        else None
    )
    batch.qc_grade = quality.grade
    batch.qc_notes = sanitize_notes(quality.notes)
    batch.closed_at = utc_now()
    batch.status = BatchStatus.CLOSED.value


def advance_batch(
    batch_id: int,
    closure: Optional[BatchClosure] = None,
    session: Optional[Session] = None,
) -> BatchRecord:
    """
    Advance a batch one step: OPEN -> PROCESSING -> CLOSED.

    The batch row is locked for the duration of the transition. Moving to
    PROCESSING needs no data; closing needs a BatchClosure with a positive
    output weight.

    Args:
        batch_id: Batch to advance
        closure: Output, reject weight, finished product and quality (closing only)
        session: Optional database session (uses session_scope if not provided)

    Returns:
        OpenBatchRecord after OPEN -> PROCESSING, ClosedBatchRecord after closing

    Raises:
        NotFoundError: If the batch does not exist
        BatchAlreadyClosed: If the batch is already closed
        InvalidOutputWeight: If closing without a positive output weight
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batch = _load_batch(session, batch_id, for_update=True)
        current = batch.batch_status

        if current is BatchStatus.CLOSED:
            log_operation(
                logger,
                "advance_batch",
                "already_closed",
                level=logging.WARNING,
                batch_id=batch_id,
            )
            raise BatchAlreadyClosed(batch_id)

        if current is BatchStatus.OPEN:
            batch.status = BatchStatus.PROCESSING.value
            batch.processing_started_at = utc_now()
        else:
            try:
                _close(session, batch, closure)
            except InvalidOutputWeight as e:
                log_operation(
                    logger,
                    "advance_batch",
                    "invalid_output_weight",
                    level=logging.WARNING,
                    batch_id=batch_id,
                    field=e.details.get("field"),
                )
                raise
            except ValueError as e:
                raise ValidationError(str(e), batch_id=batch_id)

        session.flush()
        log_operation(
            logger,
            "advance_batch",
            "success",
            batch_id=batch_id,
            from_status=current.value,
            to_status=batch.status,
            unit_cost=str(batch.unit_cost) if batch.unit_cost is not None else None,
        )
        return batch_record(batch)


# =============================================================================
# Processing logs
# =============================================================================


def add_processing_log(
    batch_id: int,
    process_type: str,
    *,
    temperature=None,
    humidity=None,
    notes: Optional[str] = None,
    log_date: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> ProcessingLogRecord:
    """
    Append a processing log entry to a batch that is not closed.

    Raises:
        NotFoundError: If the batch does not exist
        BatchAlreadyClosed: If the batch is closed
        ValidationError: If the process type or a reading is invalid
    """
    try:
        stage = ProcessType(str(process_type).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown process type '{process_type}'", field="process_type", value=process_type
        )
    try:
        temperature = to_decimal(temperature, "temperature") if temperature is not None else None
        humidity = to_decimal(humidity, "humidity") if humidity is not None else None
        notes = sanitize_notes(notes)
    except ValueError as e:
        raise ValidationError(str(e))

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batch = _load_batch(session, batch_id)
        if batch.is_closed:
            raise BatchAlreadyClosed(batch_id)

        entry = ProcessingLog(
            batch_id=batch_id,
            process_type=stage.value,
            log_date=log_date or utc_now(),
            temperature=temperature,
            humidity=humidity,
            notes=notes,
        )
        session.add(entry)
        session.flush()
        log_operation(
            logger,
            "add_processing_log",
            "success",
            batch_id=batch_id,
            process_type=stage.value,
        )
        return _processing_log_record(entry)


def list_processing_logs(
    batch_id: int, session: Optional[Session] = None
) -> List[ProcessingLogRecord]:
    """Processing log entries for a batch, oldest first."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        _load_batch(session, batch_id)
        entries = session.scalars(
            select(ProcessingLog)
            .where(ProcessingLog.batch_id == batch_id)
            .order_by(ProcessingLog.log_date, ProcessingLog.id)
        ).all()
        return [_processing_log_record(e) for e in entries]


# =============================================================================
# Queries
# =============================================================================


def allocated_weights(session: Session, batch_ids: Iterable[int]) -> Dict[int, Decimal]:
    """
    Sum of weight already allocated to lots, per batch.

    Batches without links map to Decimal("0").
    """
    ids = sorted(set(batch_ids))
    totals = {batch_id: Decimal("0") for batch_id in ids}
    if not ids:
        return totals
    rows = session.execute(
        select(LotBatchLink.batch_id, func.sum(LotBatchLink.weight_contributed))
        .where(LotBatchLink.batch_id.in_(ids))
        .group_by(LotBatchLink.batch_id)
    ).all()
    for batch_id, total in rows:
        totals[batch_id] = quantize_weight(to_decimal(total, "weight_contributed"))
    return totals


def get_batch(batch_id: int, session: Optional[Session] = None) -> BatchRecord:
    """
    Get a batch by id.

    Raises:
        NotFoundError: If the batch does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return batch_record(_load_batch(session, batch_id))


def list_batches(
    status: Optional[str] = None,
    product_id: Optional[int] = None,
    session: Optional[Session] = None,
) -> List[BatchRecord]:
    """
    List batches ordered by id, optionally filtered.

    Args:
        status: "open", "processing" or "closed"
        product_id: Matches the finished product for closed batches and the
            raw input product otherwise
    """
    if status is not None:
        try:
            status = BatchStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown batch status '{status}'", field="status", value=status)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        stmt = select(Batch).options(selectinload(Batch.sources)).order_by(Batch.id)
        if status is not None:
            stmt = stmt.where(Batch.status == status)
        if product_id is not None:
            stmt = stmt.where(
                (Batch.product_id == product_id)
                | ((Batch.product_id.is_(None)) & (Batch.input_product_id == product_id))
            )
        return [batch_record(b) for b in session.scalars(stmt).all()]


def list_allocatable_batches(
    product_id: int, session: Optional[Session] = None
) -> List[AllocatableBatch]:
    """
    Closed batches of a finished product that still have output to allocate.

    Returns:
        AllocatableBatch entries ordered by batch id, remaining weight > 0
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batches = session.scalars(
            select(Batch)
            .options(selectinload(Batch.sources))
            .where(Batch.status == BatchStatus.CLOSED.value, Batch.product_id == product_id)
            .order_by(Batch.id)
        ).all()
        allocated = allocated_weights(session, [b.id for b in batches])

        result = []
        for batch in batches:
            remaining = quantize_weight(batch.total_output_weight - allocated[batch.id])
            if remaining > 0:
                result.append(
                    AllocatableBatch(
                        batch=batch_record(batch),
                        allocated_weight=allocated[batch.id],
                        remaining_weight=remaining,
                    )
                )
        return result


def get_batch_yield(batch_id: int, session: Optional[Session] = None) -> BatchYield:
    """
    Weight loss and yield of a closed batch.

    yield_percent = total_output_weight / total_input_weight * 100,
    rounded to two decimals.

    Raises:
        NotFoundError: If the batch does not exist
        BatchNotClosed: If the batch has no output yet
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batch = _load_batch(session, batch_id)
        if not batch.is_closed:
            raise BatchNotClosed(batch_id, batch.status)

        yield_percent = (
            batch.total_output_weight / batch.total_input_weight * 100
        ).quantize(Decimal("0.01"), rounding=ROUNDING)
        return BatchYield(
            batch_id=batch.id,
            total_input_weight=batch.total_input_weight,
            total_output_weight=batch.total_output_weight,
            weight_loss=quantize_weight(batch.total_input_weight - batch.total_output_weight),
            yield_percent=yield_percent,
        )


def get_batch_sources(
    batch_id: int, session: Optional[Session] = None
) -> List[PurchaseTransactionRecord]:
    """Purchase transactions feeding a batch, ordered by id."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        _load_batch(session, batch_id)
        txns = session.scalars(
            select(PurchaseTransaction)
            .join(BatchSourceLink, BatchSourceLink.purchase_transaction_id == PurchaseTransaction.id)
            .where(BatchSourceLink.batch_id == batch_id)
            .order_by(PurchaseTransaction.id)
        ).all()
        return [purchase_transaction_record(t) for t in txns]
