"""
Database models package.

This package contains all SQLAlchemy ORM models for the lot traceability
engine. Reference tables (products, shelters, farmers, purchase
transactions) mirror the cooperative's master data and are read-only here.
"""

from .base import Base, BaseModel
from .enums import BatchStatus, ProcessType

# Reference data
from .product import Product
from .shelter import Shelter
from .farmer import Farmer, FarmerGroup
from .purchase_transaction import PurchaseTransaction

# Production and inventory
from .batch import Batch, BatchSourceLink
from .processing_log import ProcessingLog
from .lot import Lot, LotBatchLink
from .lot_depletion import LotDepletion

from .immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "Base",
    "BaseModel",
    "BatchStatus",
    "ProcessType",
    # Reference data
    "Product",
    "Shelter",
    "Farmer",
    "FarmerGroup",
    "PurchaseTransaction",
    # Production and inventory
    "Batch",
    "BatchSourceLink",
    "ProcessingLog",
    "Lot",
    "LotBatchLink",
    "LotDepletion",
    "register_immutability_listeners",
]
