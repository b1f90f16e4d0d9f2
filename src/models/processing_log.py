"""
ProcessingLog model for batch processing observations.

Operators record fermentation turns, drying days and similar stages while
a batch is open or processing. Entries are informational; they do not
affect weights or cost.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.utils.datetime_utils import utc_now


class ProcessingLog(BaseModel):
    """
    One processing observation on a batch.

    Attributes:
        batch_id: Batch observed
        process_type: ProcessType value
        log_date: When the observation was made
        temperature: Degrees Celsius, optional
        humidity: Relative humidity percent, optional
        notes: Free text
    """

    __tablename__ = "processing_logs"

    updated_at = None

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    process_type = Column(String(30), nullable=False)
    log_date = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    temperature = Column(Numeric(5, 2), nullable=True)
    humidity = Column(Numeric(5, 2), nullable=True)
    notes = Column(Text, nullable=True)

    batch = relationship("Batch", back_populates="processing_logs")

    __table_args__ = (Index("idx_processing_log_batch", "batch_id", "log_date"),)
