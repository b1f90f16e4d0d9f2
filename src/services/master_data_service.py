"""
Master Data Service - read-only access to the cooperative's reference tables.

Products, shelters, farmers and purchase transactions are maintained by
the surrounding ERP. The traceability engine only reads them: purchase
amounts feed batch input cost, and farmers are the last hop of every
provenance chain.

All functions accept an optional ``session`` so they can run inside a
caller's transaction (e.g. while opening a batch).
"""

from contextlib import nullcontext
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from src.models import Farmer, Product, PurchaseTransaction, Shelter
from src.services.database import session_scope
from src.services.dto import (
    FarmerSummary,
    ProductRecord,
    PurchaseTransactionRecord,
    ShelterRecord,
)
from src.services.exceptions import NotFoundError


# =============================================================================
# Record conversion
# =============================================================================


def product_record(product: Product) -> ProductRecord:
    return ProductRecord(id=product.id, name=product.name, sku=product.sku, unit=product.unit)


def shelter_record(shelter: Shelter) -> ShelterRecord:
    return ShelterRecord(id=shelter.id, name=shelter.name, code=shelter.code)


def purchase_transaction_record(txn: PurchaseTransaction) -> PurchaseTransactionRecord:
    return PurchaseTransactionRecord(
        id=txn.id,
        transaction_code=txn.transaction_code,
        farmer_id=txn.farmer_id,
        product_id=txn.product_id,
        shelter_id=txn.shelter_id,
        quantity=txn.quantity,
        amount=txn.total_amount,
        status=txn.status,
    )


def farmer_summary(farmer: Farmer) -> FarmerSummary:
    return FarmerSummary(
        id=farmer.id,
        name=farmer.name,
        village=farmer.village,
        district=farmer.district,
        group_name=farmer.group.name if farmer.group is not None else None,
    )


# =============================================================================
# Lookups
# =============================================================================


def get_product(product_id: int, session: Optional[Session] = None) -> ProductRecord:
    """
    Get a product by id.

    Raises:
        NotFoundError: If the product does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product_record(product)


def get_shelter(shelter_id: int, session: Optional[Session] = None) -> ShelterRecord:
    """
    Get a shelter (collection/processing site) by id.

    Raises:
        NotFoundError: If the shelter does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        shelter = session.get(Shelter, shelter_id)
        if shelter is None:
            raise NotFoundError("Shelter", shelter_id)
        return shelter_record(shelter)


def get_purchase_transaction(
    purchase_transaction_id: int, session: Optional[Session] = None
) -> PurchaseTransactionRecord:
    """
    Get a purchase transaction (farmer harvest receipt) by id.

    Raises:
        NotFoundError: If the transaction does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        txn = session.get(PurchaseTransaction, purchase_transaction_id)
        if txn is None:
            raise NotFoundError("PurchaseTransaction", purchase_transaction_id)
        return purchase_transaction_record(txn)


def get_purchase_transactions(
    ids: Iterable[int], session: Optional[Session] = None
) -> List[PurchaseTransactionRecord]:
    """
    Get purchase transactions by id, ordered by id.

    Unknown ids are skipped; callers compare the result with their input
    when every id must resolve.
    """
    wanted = sorted(set(ids))
    if not wanted:
        return []
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        rows = session.scalars(
            select(PurchaseTransaction)
            .where(PurchaseTransaction.id.in_(wanted))
            .order_by(PurchaseTransaction.id)
        ).all()
        return [purchase_transaction_record(t) for t in rows]


def get_farmer(farmer_id: int, session: Optional[Session] = None) -> FarmerSummary:
    """
    Get a farmer with group name.

    Raises:
        NotFoundError: If the farmer does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        farmer = session.get(Farmer, farmer_id, options=[joinedload(Farmer.group)])
        if farmer is None:
            raise NotFoundError("Farmer", farmer_id)
        return farmer_summary(farmer)


def get_farmers(ids: Iterable[int], session: Optional[Session] = None) -> List[FarmerSummary]:
    """Get farmers by id, ordered by id. Unknown ids are skipped."""
    wanted = sorted(set(ids))
    if not wanted:
        return []
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        rows = session.scalars(
            select(Farmer)
            .options(joinedload(Farmer.group))
            .where(Farmer.id.in_(wanted))
            .order_by(Farmer.id)
        ).all()
        return [farmer_summary(f) for f in rows]
