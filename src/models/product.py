"""
Product model (reference data).

Products are owned by the cooperative's master-data screens. This service
only reads them: raw products identify what a purchase transaction bought,
finished products identify what a batch produced and what a lot sells.
"""

from sqlalchemy import Column, String, Index

from .base import BaseModel


class Product(BaseModel):
    """
    Product master record.

    Attributes:
        name: Display name (e.g. "Biji Kakao Fermentasi")
        sku: Stock keeping code; the part before the first '-' is used in batch codes
        unit: Unit of measure for quantities (kg)
    """

    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    sku = Column(String(50), nullable=True, unique=True)
    unit = Column(String(20), nullable=False, default="kg")

    __table_args__ = (Index("idx_product_name", "name"),)

    @property
    def code_prefix(self) -> str:
        """Short product code used when generating batch codes."""
        if self.sku:
            return self.sku.split("-")[0]
        return "RAW"
