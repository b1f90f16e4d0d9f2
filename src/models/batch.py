"""
Batch and BatchSourceLink models for production runs.

A Batch is one production run that turns purchased raw harvest into a
weighable finished output. BatchSourceLink records which purchase
transactions fed the batch's input mass; those links are the first hop of
every provenance chain.

Batches move OPEN -> PROCESSING -> CLOSED. Output weight, finished product,
quality summary and unit cost are set exactly once, at closure. The check
constraint below keeps the two shapes apart at the database level: a
non-closed batch has no output figures, a closed batch always has a
positive output weight and a unit cost.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import BatchStatus
from src.utils.datetime_utils import utc_now


class Batch(BaseModel):
    """
    Production batch.

    Attributes:
        batch_code: Unique public code, e.g. "Batch.SH001.KB.XII.2025.001"
        input_product_id: Raw product that was processed
        product_id: Finished product produced (set at closure)
        shelter_id: Shelter where the batch ran
        status: open, processing or closed
        total_input_weight: Sum of source purchase quantities, kg
        total_input_cost: Sum of source purchase amounts
        total_output_weight: Output weight including rejects, kg (closed only)
        reject_weight: Portion of the output graded as reject, kg (closed only)
        unit_cost: total_input_cost / total_output_weight (closed only)
        qc_*: Quality summary captured at closure
    """

    __tablename__ = "batches"

    batch_code = Column(String(64), nullable=False, unique=True)

    input_product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=True)
    shelter_id = Column(Integer, ForeignKey("shelters.id", ondelete="RESTRICT"), nullable=False)

    status = Column(String(20), nullable=False, default=BatchStatus.OPEN.value)

    total_input_weight = Column(Numeric(14, 3), nullable=False)
    total_input_cost = Column(Numeric(16, 2), nullable=False)

    # Closure data
    total_output_weight = Column(Numeric(14, 3), nullable=True)
    reject_weight = Column(Numeric(14, 3), nullable=True)
    unit_cost = Column(Numeric(16, 4), nullable=True)

    # Quality summary captured at closure
    qc_moisture_percent = Column(Numeric(5, 2), nullable=True)
    qc_bean_count = Column(Integer, nullable=True)
    qc_waste_percent = Column(Numeric(5, 2), nullable=True)
    qc_grade = Column(String(50), nullable=True)
    qc_notes = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    input_product = relationship("Product", foreign_keys=[input_product_id])
    product = relationship("Product", foreign_keys=[product_id])
    shelter = relationship("Shelter")
    sources = relationship(
        "BatchSourceLink", back_populates="batch", order_by="BatchSourceLink.id"
    )
    processing_logs = relationship(
        "ProcessingLog", back_populates="batch", order_by="ProcessingLog.log_date"
    )
    lot_links = relationship("LotBatchLink", back_populates="batch")

    __table_args__ = (
        Index("idx_batch_status_product", "status", "product_id"),
        Index("idx_batch_shelter", "shelter_id"),
        CheckConstraint(
            "status IN ('open', 'processing', 'closed')", name="ck_batch_status"
        ),
        CheckConstraint("total_input_weight > 0", name="ck_batch_input_weight_positive"),
        CheckConstraint("total_input_cost >= 0", name="ck_batch_input_cost_non_negative"),
        CheckConstraint(
            "(status = 'closed' AND total_output_weight > 0 AND unit_cost IS NOT NULL "
            "AND product_id IS NOT NULL) "
            "OR (status != 'closed' AND total_output_weight IS NULL AND unit_cost IS NULL)",
            name="ck_batch_closure_shape",
        ),
        CheckConstraint(
            "reject_weight IS NULL OR (reject_weight >= 0 AND reject_weight < total_output_weight)",
            name="ck_batch_reject_weight",
        ),
    )

    @property
    def batch_status(self) -> BatchStatus:
        """Status as an enum member."""
        return BatchStatus(self.status)

    @property
    def is_closed(self) -> bool:
        return self.status == BatchStatus.CLOSED.value

    def __repr__(self) -> str:
        """String representation of batch."""
        return f"Batch(id={self.id}, batch_code='{self.batch_code}', status='{self.status}')"


class BatchSourceLink(BaseModel):
    """
    Purchase transaction feeding a batch.

    A purchase transaction can feed at most one batch; the unique
    constraint on purchase_transaction_id enforces it.

    Attributes:
        batch_id: Batch that consumed the material
        purchase_transaction_id: Source harvest receipt
        quantity_used: Weight taken from the receipt, kg
        amount: Cost carried into the batch from the receipt
    """

    __tablename__ = "batch_sources"

    updated_at = None

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    purchase_transaction_id = Column(
        Integer, ForeignKey("purchase_transactions.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_used = Column(Numeric(14, 3), nullable=False)
    amount = Column(Numeric(16, 2), nullable=False)

    batch = relationship("Batch", back_populates="sources")
    purchase_transaction = relationship("PurchaseTransaction")

    __table_args__ = (
        Index("idx_batch_source_batch", "batch_id"),
        UniqueConstraint("purchase_transaction_id", name="uq_batch_source_transaction"),
        CheckConstraint("quantity_used > 0", name="ck_batch_source_quantity_positive"),
    )
