"""
Lot Service - consolidation of closed batches into sellable lots.

This module provides functions for:
- Creating a lot from allocations of closed batch output
- Computing the lot's contribution-weighted unit cost
- Reporting how much of a batch is still allocatable
- Generating lot codes and suggesting sale prices
- Lot lookups by id and by public lot code

Allocation accounting:
    For every batch, the sum of weight_contributed over its lot links
    never exceeds total_output_weight. create_lot locks the batch rows it
    allocates from (SELECT ... FOR UPDATE, ordered by id; on SQLite the
    transaction itself holds the write lock) before reading the allocated
    totals, and inserts the lot and its links in the same transaction.

Weighted-average cost:
    unit_cost = sum(weight_i * batch_unit_cost_i) / sum(weight_i)

Example:
    500 kg at 15000 + 300 kg at 16000 -> 800 kg at 15375
"""

import logging
from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from src.models import Batch, BatchStatus, Lot, LotBatchLink, Product
from src.services.batch_service import allocated_weights
from src.services.database import session_scope
from src.services.dto import (
    BatchAllocation,
    LotAllocationRecord,
    LotRecord,
    PaginatedResult,
    PaginationParams,
    SalePriceSuggestion,
)
from src.services.exceptions import (
    BatchNotClosed,
    BatchNotEligible,
    DuplicateLotCode,
    EmptyLot,
    InvalidQuantity,
    NotFoundError,
    OverAllocated,
    ValidationError,
)
from src.services.logging_utils import get_service_logger, log_operation
from src.utils.config import get_config
from src.utils.constants import CODE_SEQUENCE_WIDTH, LOT_CODE_PREFIX, MAX_LOT_CODE_LENGTH
from src.utils.datetime_utils import as_utc, utc_now
from src.utils.validators import (
    parse_weight,
    quantize_price,
    quantize_unit_cost,
    quantize_weight,
    to_decimal,
    validate_code,
)

logger = get_service_logger(__name__)


# =============================================================================
# Record conversion
# =============================================================================


def lot_record(lot: Lot) -> LotRecord:
    """Convert a Lot row (with its batch links) to a LotRecord."""
    allocations = tuple(
        LotAllocationRecord(
            batch_id=link.batch_id,
            batch_code=link.batch.batch_code,
            weight_contributed=link.weight_contributed,
            batch_unit_cost=link.batch.unit_cost,
        )
        for link in sorted(lot.batch_links, key=lambda l: l.batch_id)
    )
    return LotRecord(
        id=lot.id,
        lot_code=lot.lot_code,
        product_id=lot.product_id,
        quantity=lot.quantity,
        available_quantity=lot.available_quantity,
        unit_cost=lot.unit_cost,
        created_at=as_utc(lot.created_at),
        allocations=allocations,
    )


def _lot_query():
    return select(Lot).options(selectinload(Lot.batch_links).selectinload(LotBatchLink.batch))


# =============================================================================
# Allocation parsing
# =============================================================================


def _coerce_allocation(item: Any) -> BatchAllocation:
    """Accept BatchAllocation instances or mappings from JSON bodies."""
    if isinstance(item, BatchAllocation):
        batch_id, weight = item.batch_id, item.weight
    elif isinstance(item, dict):
        batch_id = item.get("batch_id", item.get("batchId"))
        weight = item.get("weight")
    else:
        raise ValidationError("Allocation must have batch_id and weight", value=repr(item))

    if batch_id is None or isinstance(batch_id, bool):
        raise ValidationError("Allocation batch_id is required", field="batch_id")
    try:
        batch_id = int(batch_id)
    except (TypeError, ValueError):
        raise ValidationError("Allocation batch_id must be an integer", field="batch_id", value=batch_id)

    try:
        weight = parse_weight(weight, "weight")
    except ValueError:
        raise InvalidQuantity("weight", weight, "must be a valid number")
    if weight < 0:
        raise InvalidQuantity("weight", weight, "must be zero or greater")
    return BatchAllocation(batch_id=batch_id, weight=weight)


def merge_allocations(allocations: Iterable[Any]) -> Dict[int, Decimal]:
    """
    Merge allocations by batch id, summing weights.

    Zero-weight entries are dropped. Returns batch_id -> weight in
    ascending batch id order.

    Raises:
        ValidationError: If an allocation is malformed
        InvalidQuantity: If a weight is not a number or is negative
    """
    merged: Dict[int, Decimal] = {}
    for item in allocations or ():
        allocation = _coerce_allocation(item)
        if allocation.weight == 0:
            continue
        merged[allocation.batch_id] = merged.get(allocation.batch_id, Decimal("0")) + allocation.weight
    return dict(sorted(merged.items()))


def weighted_unit_cost(contributions: Iterable) -> Decimal:
    """
    Contribution-weighted average of unit costs.

    Args:
        contributions: (weight, unit_cost) pairs with a positive total weight

    Returns:
        Unit cost quantized to four decimal places

    Example:
        >>> weighted_unit_cost([(Decimal("500"), Decimal("15000")), (Decimal("300"), Decimal("16000"))])
        Decimal('15375.0000')
    """
    total_weight = Decimal("0")
    total_cost = Decimal("0")
    for weight, unit_cost in contributions:
        total_weight += weight
        total_cost += weight * unit_cost
    return quantize_unit_cost(total_cost / total_weight)


# =============================================================================
# Lot codes
# =============================================================================


def generate_lot_code(year: Optional[int] = None, session: Optional[Session] = None) -> str:
    """
    Generate the next lot code for a year: LOT-<year>-<seq>.

    Example:
        "LOT-2025-007"
    """
    year = year or utc_now().year
    prefix = f"{LOT_CODE_PREFIX}-{year}-"

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        existing = set(
            session.scalars(select(Lot.lot_code).where(Lot.lot_code.like(prefix + "%"))).all()
        )
        seq = len(existing) + 1
        while f"{prefix}{seq:0{CODE_SEQUENCE_WIDTH}d}" in existing:
            seq += 1
        return f"{prefix}{seq:0{CODE_SEQUENCE_WIDTH}d}"


# =============================================================================
# Consolidation
# =============================================================================


def create_lot(
    lot_code: Optional[str],
    product_id: int,
    allocations: Iterable[Any],
    session: Optional[Session] = None,
) -> LotRecord:
    """
    Create a lot from closed batch output.

    Validation, in order:
        1. every batch exists, is closed and produced ``product_id``
           (BatchNotEligible)
        2. every weight fits the batch's remaining allocatable output
           (OverAllocated)
        3. the lot code is unused (DuplicateLotCode)

    The lot, its batch links and the allocation check commit together;
    on any error nothing is written.

    Args:
        lot_code: Public lot code; generated when None
        product_id: Finished product sold from the lot
        allocations: BatchAllocation items or {"batch_id", "weight"} mappings;
            repeated batch ids are merged
        session: Optional database session (uses session_scope if not provided)

    Returns:
        LotRecord with available_quantity equal to quantity

    Raises:
        EmptyLot: If there are no allocations or the total weight is zero
        NotFoundError: If the product does not exist
        BatchNotEligible: If a batch is missing, not closed or another product
        OverAllocated: If a weight exceeds the batch's remaining output
        DuplicateLotCode: If the lot code is taken
    """
    merged = merge_allocations(allocations)
    if not merged:
        log_operation(
            logger, "create_lot", "empty_lot", level=logging.WARNING, lot_code=lot_code
        )
        raise EmptyLot("no batch allocations with a positive weight")

    if lot_code is not None:
        valid, message = validate_code(lot_code, MAX_LOT_CODE_LENGTH, "lot_code")
        if not valid:
            raise ValidationError(message, field="lot_code", value=lot_code)
        lot_code = lot_code.strip()

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.get(Product, product_id) is None:
            raise NotFoundError("Product", product_id)

        batches = {
            b.id: b
            for b in session.scalars(
                select(Batch)
                .where(Batch.id.in_(list(merged)))
                .order_by(Batch.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).all()
        }

        for batch_id in merged:
            batch = batches.get(batch_id)
            reason = None
            if batch is None:
                reason = "batch does not exist"
            elif batch.status != BatchStatus.CLOSED.value:
                reason = f"status is {batch.status}"
            elif batch.product_id != product_id:
                reason = f"batch produced product {batch.product_id}, not {product_id}"
            if reason is not None:
                log_operation(
                    logger,
                    "create_lot",
                    "batch_not_eligible",
                    level=logging.WARNING,
                    batch_id=batch_id,
                    reason=reason,
                )
                raise BatchNotEligible(batch_id, reason)

        allocated = allocated_weights(session, merged)
        for batch_id, weight in merged.items():
            remaining = quantize_weight(batches[batch_id].total_output_weight - allocated[batch_id])
            if weight > remaining:
                log_operation(
                    logger,
                    "create_lot",
                    "over_allocated",
                    level=logging.WARNING,
                    batch_id=batch_id,
                    requested=str(weight),
                    remaining=str(remaining),
                )
                raise OverAllocated(batch_id, weight, remaining)

        if lot_code is None:
            lot_code = generate_lot_code(session=session)
        elif session.scalars(select(Lot.id).where(Lot.lot_code == lot_code)).first() is not None:
            log_operation(
                logger, "create_lot", "duplicate_lot_code", level=logging.WARNING, lot_code=lot_code
            )
            raise DuplicateLotCode(lot_code)

        quantity = quantize_weight(sum(merged.values(), Decimal("0")))
        unit_cost = weighted_unit_cost(
            (weight, batches[batch_id].unit_cost) for batch_id, weight in merged.items()
        )

        lot = Lot(
            lot_code=lot_code,
            product_id=product_id,
            quantity=quantity,
            available_quantity=quantity,
            unit_cost=unit_cost,
        )
        session.add(lot)
        for batch_id, weight in merged.items():
            lot.batch_links.append(LotBatchLink(batch_id=batch_id, weight_contributed=weight))

        try:
            session.flush()
        except IntegrityError as e:
            if "lot_code" in str(e.orig):
                raise DuplicateLotCode(lot_code) from e
            raise

        log_operation(
            logger,
            "create_lot",
            "success",
            lot_id=lot.id,
            lot_code=lot.lot_code,
            quantity=str(quantity),
            unit_cost=str(unit_cost),
            batch_ids=list(merged),
        )
        return lot_record(lot)


def remaining_allocatable(batch_id: int, session: Optional[Session] = None) -> Decimal:
    """
    Output of a closed batch not yet allocated to any lot.

    remaining = total_output_weight - sum(weight_contributed)

    Raises:
        NotFoundError: If the batch does not exist
        BatchNotClosed: If the batch has no output yet
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batch = session.get(Batch, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        if not batch.is_closed:
            raise BatchNotClosed(batch_id, batch.status)
        allocated = allocated_weights(session, [batch_id])[batch_id]
        return quantize_weight(batch.total_output_weight - allocated)


# =============================================================================
# Queries
# =============================================================================


def get_lot(lot_id: int, session: Optional[Session] = None) -> LotRecord:
    """
    Get a lot by id.

    Raises:
        NotFoundError: If the lot does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot = session.scalars(_lot_query().where(Lot.id == lot_id)).first()
        if lot is None:
            raise NotFoundError("Lot", lot_id)
        return lot_record(lot)


def get_lot_by_code(lot_code: str, session: Optional[Session] = None) -> LotRecord:
    """
    Get a lot by its public code.

    Raises:
        NotFoundError: If no lot has this code
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot = session.scalars(_lot_query().where(Lot.lot_code == lot_code)).first()
        if lot is None:
            raise NotFoundError("Lot", lot_code)
        return lot_record(lot)


def list_lots(
    available_only: bool = False,
    product_id: Optional[int] = None,
    pagination: Optional[PaginationParams] = None,
    session: Optional[Session] = None,
) -> PaginatedResult[LotRecord]:
    """
    List lots, newest first.

    Args:
        available_only: Only lots with available_quantity > 0
        product_id: Only lots of this product
        pagination: Page and page size; defaults to the first 50

    Returns:
        PaginatedResult of LotRecord
    """
    pagination = pagination or PaginationParams()

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        filters = []
        if available_only:
            filters.append(Lot.available_quantity > 0)
        if product_id is not None:
            filters.append(Lot.product_id == product_id)

        total = session.scalar(select(func.count(Lot.id)).where(*filters))
        lots = session.scalars(
            _lot_query()
            .where(*filters)
            .order_by(Lot.created_at.desc(), Lot.id.desc())
            .offset(pagination.offset())
            .limit(pagination.per_page)
        ).all()

        return PaginatedResult(
            items=[lot_record(lot) for lot in lots],
            total=total or 0,
            page=pagination.page,
            per_page=pagination.per_page,
        )


def suggest_sale_price(
    lot_id: int, margin=None, session: Optional[Session] = None
) -> SalePriceSuggestion:
    """
    Suggested sale price per kg for a lot.

    suggested_price = unit_cost * (1 + margin), rounded to a whole
    currency unit. The default margin comes from configuration.

    Raises:
        NotFoundError: If the lot does not exist
        ValidationError: If the margin is negative or not a number
    """
    if margin is None:
        margin = get_config().sale_margin
    try:
        margin = to_decimal(margin, "margin")
    except ValueError as e:
        raise ValidationError(str(e), field="margin", value=margin)
    if margin < 0:
        raise ValidationError("margin: Must be zero or greater", field="margin", value=margin)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot = session.get(Lot, lot_id)
        if lot is None:
            raise NotFoundError("Lot", lot_id)
        return SalePriceSuggestion(
            lot_id=lot.id,
            unit_cost=lot.unit_cost,
            margin=margin,
            suggested_price=quantize_price(lot.unit_cost * (1 + margin)),
        )
