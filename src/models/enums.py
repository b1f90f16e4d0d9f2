"""
Enumerations for production batches.

This module contains enums used across batch-related models:
- BatchStatus: Lifecycle state of a production batch
- ProcessType: Processing stage recorded in a batch's processing log
"""

from enum import Enum
from typing import Optional


class BatchStatus(str, Enum):
    """
    Production batch lifecycle status.

    Batches only move forward: OPEN -> PROCESSING -> CLOSED.
    CLOSED is terminal; output weight and unit cost are fixed at closure.

    Values:
        OPEN: Input material assigned, processing not started
        PROCESSING: Fermentation/drying/sorting in progress
        CLOSED: Output weighed and costed; eligible for lots
    """

    OPEN = "open"
    PROCESSING = "processing"
    CLOSED = "closed"

    @property
    def next_status(self) -> Optional["BatchStatus"]:
        """The status this one advances to, or None when terminal."""
        if self is BatchStatus.OPEN:
            return BatchStatus.PROCESSING
        if self is BatchStatus.PROCESSING:
            return BatchStatus.CLOSED
        return None


class ProcessType(str, Enum):
    """
    Processing stage recorded against a batch.

    Values:
        FERMENTATION: Box or heap fermentation
        DRYING: Sun or mechanical drying
        SORTING: Grading and removal of defects
        PACKING: Bagging of finished output
        OTHER: Catch-all; use notes for specifics
    """

    FERMENTATION = "FERMENTATION"
    DRYING = "DRYING"
    SORTING = "SORTING"
    PACKING = "PACKING"
    OTHER = "OTHER"
