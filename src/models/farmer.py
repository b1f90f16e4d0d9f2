"""
Farmer and FarmerGroup models (reference data).

Farmers are maintained by the farmer directory screens. Provenance
resolution reads name, village, district and group to describe who grew
the material in a lot.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import BaseModel


class FarmerGroup(BaseModel):
    """A farmer group (kelompok tani)."""

    __tablename__ = "farmer_groups"

    name = Column(String(200), nullable=False)

    farmers = relationship("Farmer", back_populates="group")


class Farmer(BaseModel):
    """
    Farmer directory record.

    Attributes:
        name: Farmer's full name
        village: Village (desa)
        district: District (kecamatan/kabupaten)
        group_id: Optional farmer group
    """

    __tablename__ = "farmers"

    name = Column(String(200), nullable=False)
    village = Column(String(200), nullable=True)
    district = Column(String(200), nullable=True)
    group_id = Column(
        Integer, ForeignKey("farmer_groups.id", ondelete="SET NULL"), nullable=True
    )

    group = relationship("FarmerGroup", back_populates="farmers")
    purchase_transactions = relationship("PurchaseTransaction", back_populates="farmer")

    __table_args__ = (Index("idx_farmer_group", "group_id"),)
