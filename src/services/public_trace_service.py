"""
Public Trace Service - sanitized lot view for the public verification page.

Buyers scan a QR code carrying the lot code and see where the product
came from. The view is built from the lot and its resolved provenance and
carries no unit cost, price, available quantity or internal ids.

Integrity gaps in the chain never fail the page: whatever farmers could
be resolved are shown.
"""

import logging
from contextlib import nullcontext
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload, selectinload

from src.models import Lot
from src.services.database import session_scope
from src.services.dto import BatchRecord, PublicFarmer, PublicQuality, PublicTraceView
from src.services.exceptions import NotFoundError
from src.services.logging_utils import get_service_logger, log_operation
from src.services.provenance_service import resolve_provenance
from src.utils.config import get_config
from src.utils.constants import DEFAULT_FARMER_GROUP, MIXED_GRADE, ROUNDING
from src.utils.datetime_utils import as_utc

logger = get_service_logger(__name__)

PERCENT_PRECISION = Decimal("0.01")


def _weighted(values: List, weights: List[Decimal], precision: Decimal) -> Optional[Decimal]:
    """Weighted mean over the entries that have a value, or None."""
    pairs = [(Decimal(str(v)), w) for v, w in zip(values, weights) if v is not None]
    total_weight = sum((w for _, w in pairs), Decimal("0"))
    if not pairs or total_weight == 0:
        return None
    return (sum(v * w for v, w in pairs) / total_weight).quantize(precision, rounding=ROUNDING)


def summarize_quality(
    batches: List[BatchRecord], contributions: Dict[int, Decimal]
) -> PublicQuality:
    """
    Contribution-weighted quality summary across a lot's batches.

    The grade is reported only when every batch carries the same grade;
    differing grades give "Mixed".
    """
    weights = [contributions.get(b.id, Decimal("0")) for b in batches]
    qualities = [getattr(b, "quality", None) for b in batches]

    def field(name):
        return [getattr(q, name) if q is not None else None for q in qualities]

    grades = {g for g in field("grade") if g}
    grade = None
    if len(grades) == 1 and all(field("grade")):
        grade = grades.pop()
    elif grades:
        grade = MIXED_GRADE

    return PublicQuality(
        moisture_percent=_weighted(field("moisture_percent"), weights, PERCENT_PRECISION),
        bean_count=_weighted(field("bean_count"), weights, Decimal("1")),
        waste_percent=_weighted(field("waste_percent"), weights, PERCENT_PRECISION),
        grade=grade,
    )


def public_trace(lot_code: str, session: Optional[Session] = None) -> PublicTraceView:
    """
    Public, sanitized trace of a lot.

    Args:
        lot_code: Public lot code printed on the product
        session: Optional database session (uses session_scope if not provided)

    Returns:
        PublicTraceView

    Raises:
        NotFoundError: If no lot has this code
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        lot = session.scalars(
            select(Lot)
            .options(joinedload(Lot.product), selectinload(Lot.batch_links))
            .where(Lot.lot_code == (lot_code or "").strip())
        ).first()
        if lot is None:
            log_operation(
                logger, "public_trace", "not_found", level=logging.WARNING, lot_code=lot_code
            )
            raise NotFoundError("Lot", lot_code)

        provenance = resolve_provenance(lot.id, session=session)
        contributions = {link.batch_id: link.weight_contributed for link in lot.batch_links}

        farmers = tuple(
            PublicFarmer(
                name=f.name,
                group_name=f.group_name or DEFAULT_FARMER_GROUP,
                village=f.village,
                district=f.district,
            )
            for f in provenance.farmers
        )
        regions = tuple(
            sorted({f.district or f.village for f in provenance.farmers if f.district or f.village})
        )

        view = PublicTraceView(
            lot_code=lot.lot_code,
            product_name=lot.product.name,
            total_weight=lot.quantity,
            produced_on=as_utc(lot.created_at).date().isoformat(),
            cooperative=get_config().cooperative_name,
            batch_count=len(provenance.batches),
            quality=summarize_quality(list(provenance.batches), contributions),
            farmers=farmers,
            regions=regions,
        )
        log_operation(
            logger,
            "public_trace",
            "success",
            lot_code=lot.lot_code,
            farmer_count=len(farmers),
            complete=provenance.complete,
        )
        return view
