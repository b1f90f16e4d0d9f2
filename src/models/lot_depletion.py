"""
LotDepletion model: append-only ledger of sales drawing down a lot.

Each row is written in the same transaction as the compare-and-set
decrement of Lot.available_quantity. The optional idempotency key lets
the Sales component retry a sale submission without depleting twice.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Index, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class LotDepletion(BaseModel):
    """
    One depletion of a lot.

    Attributes:
        lot_id: Lot depleted
        quantity: Weight sold, kg
        balance_after: available_quantity after this depletion
        sale_reference: Sales component's reference (invoice/sale code)
        idempotency_key: Caller-supplied key, unique when present
    """

    __tablename__ = "lot_depletions"

    updated_at = None

    lot_id = Column(Integer, ForeignKey("lots.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    balance_after = Column(Numeric(14, 3), nullable=False)
    sale_reference = Column(String(100), nullable=True)
    idempotency_key = Column(String(100), nullable=True, unique=True)

    lot = relationship("Lot", back_populates="depletions")

    __table_args__ = (
        Index("idx_lot_depletion_lot", "lot_id"),
        CheckConstraint("quantity > 0", name="ck_lot_depletion_quantity_positive"),
        CheckConstraint("balance_after >= 0", name="ck_lot_depletion_balance_non_negative"),
    )
