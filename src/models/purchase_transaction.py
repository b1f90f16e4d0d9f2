"""
PurchaseTransaction model (reference data).

Each record is a harvest receipt: the cooperative bought a quantity of a
raw product from a farmer at a shelter. Purchase transactions are the
source end of every provenance chain and the cost basis of batches.
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
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.utils.datetime_utils import utc_now


class PurchaseTransaction(BaseModel):
    """
    Harvest purchase from a farmer.

    Attributes:
        transaction_code: Unique receipt code (e.g. "TRX-001")
        farmer_id: Farmer who sold the harvest
        product_id: Raw product bought
        shelter_id: Shelter that received it
        quantity: Weight bought, kg
        price_per_unit: Price per kg
        total_amount: quantity * price_per_unit
        status: draft, completed or cancelled; only completed ones feed batches
    """

    __tablename__ = "purchase_transactions"

    transaction_code = Column(String(50), nullable=False, unique=True)
    farmer_id = Column(Integer, ForeignKey("farmers.id", ondelete="RESTRICT"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    shelter_id = Column(Integer, ForeignKey("shelters.id", ondelete="RESTRICT"), nullable=False)

    quantity = Column(Numeric(14, 3), nullable=False)
    price_per_unit = Column(Numeric(16, 2), nullable=False)
    total_amount = Column(Numeric(16, 2), nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    transaction_date = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    notes = Column(Text, nullable=True)

    farmer = relationship("Farmer", back_populates="purchase_transactions")
    product = relationship("Product")
    shelter = relationship("Shelter")

    __table_args__ = (
        Index("idx_purchase_trx_farmer", "farmer_id"),
        Index("idx_purchase_trx_shelter_product", "shelter_id", "product_id"),
        CheckConstraint("quantity > 0", name="ck_purchase_trx_quantity_positive"),
        CheckConstraint("price_per_unit >= 0", name="ck_purchase_trx_price_non_negative"),
        CheckConstraint(
            "status IN ('draft', 'completed', 'cancelled')", name="ck_purchase_trx_status"
        ),
    )
