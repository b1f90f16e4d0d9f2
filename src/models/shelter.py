"""
Shelter model (reference data).

A shelter is a collection and processing point where purchased harvest is
gathered and where production batches run.
"""

from sqlalchemy import Column, String

from .base import BaseModel


class Shelter(BaseModel):
    """
    Shelter master record.

    Attributes:
        name: Display name
        code: Short code used in batch codes (e.g. "SH001")
    """

    __tablename__ = "shelters"

    name = Column(String(200), nullable=False)
    code = Column(String(20), nullable=True, unique=True)
