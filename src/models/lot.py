"""
Lot and LotBatchLink models for sellable inventory.

A Lot is a costed, sellable unit composed of output from one or more
closed batches. LotBatchLink records how much of each batch's output was
allocated to the lot. Both are written together by the lot consolidator;
afterwards only Lot.available_quantity changes (via the inventory ledger)
and the links are never edited or deleted.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    Index,
    Numeric,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Lot(BaseModel):
    """
    Sellable inventory lot.

    Attributes:
        lot_code: Unique public code printed on bags and QR labels
        product_id: Finished product sold from this lot
        quantity: Sum of contributed batch weights, kg (fixed at creation)
        available_quantity: Unsold weight, kg (0 <= available <= quantity)
        unit_cost: Contribution-weighted average of batch unit costs
    """

    __tablename__ = "lots"

    lot_code = Column(String(64), nullable=False, unique=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    available_quantity = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(16, 4), nullable=False)

    product = relationship("Product")
    batch_links = relationship(
        "LotBatchLink", back_populates="lot", order_by="LotBatchLink.batch_id"
    )
    depletions = relationship(
        "LotDepletion", back_populates="lot", order_by="LotDepletion.id"
    )

    __table_args__ = (
        Index("idx_lot_product_available", "product_id", "available_quantity"),
        CheckConstraint("quantity > 0", name="ck_lot_quantity_positive"),
        CheckConstraint(
            "available_quantity >= 0 AND available_quantity <= quantity",
            name="ck_lot_available_within_quantity",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_lot_unit_cost_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of lot."""
        return (
            f"Lot(id={self.id}, lot_code='{self.lot_code}', "
            f"quantity={self.quantity}, available={self.available_quantity})"
        )


class LotBatchLink(BaseModel):
    """
    Allocation of part of a batch's output to a lot.

    Append-only. For every batch, the sum of weight_contributed over its
    links never exceeds the batch's total_output_weight.
    """

    __tablename__ = "lot_batches"

    updated_at = None

    lot_id = Column(Integer, ForeignKey("lots.id", ondelete="RESTRICT"), nullable=False)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    weight_contributed = Column(Numeric(14, 3), nullable=False)

    lot = relationship("Lot", back_populates="batch_links")
    batch = relationship("Batch", back_populates="lot_links")

    __table_args__ = (
        Index("idx_lot_batch_batch", "batch_id"),
        UniqueConstraint("lot_id", "batch_id", name="uq_lot_batch"),
        CheckConstraint("weight_contributed > 0", name="ck_lot_batch_weight_positive"),
    )
