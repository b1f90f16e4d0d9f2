"""Data Transfer Objects for the service layer.

Services return these frozen records rather than ORM instances, so
callers never depend on lazy loading or on a session staying open.

Batches are modelled as two variants: ``OpenBatchRecord`` for batches that
are open or processing (no output figures exist yet) and
``ClosedBatchRecord`` where output weight, finished product and unit cost
are required. ``BatchRecord`` is the union of both.

Also contains the pagination DTOs used by list operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, Tuple, TypeVar, Union

T = TypeVar("T")


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class BatchAllocation:
    """Request to allocate ``weight`` kg of a closed batch's output to a lot."""

    batch_id: int
    weight: Decimal


@dataclass(frozen=True)
class QualitySummary:
    """Quality-control figures captured when a batch closes.

    All fields are optional; the public trace shows whichever were recorded.
    """

    moisture_percent: Optional[Decimal] = None
    bean_count: Optional[int] = None
    waste_percent: Optional[Decimal] = None
    grade: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class BatchClosure:
    """Data required to move a batch from processing to closed.

    Attributes:
        output_weight: Main finished output, kg (must be > 0)
        reject_weight: Reject grade output, kg (counted in total output)
        product_id: Finished product; defaults to the batch's input product
        quality: Optional QC summary
    """

    output_weight: Decimal
    reject_weight: Decimal = Decimal("0")
    product_id: Optional[int] = None
    quality: Optional[QualitySummary] = None


# =============================================================================
# Reference data records
# =============================================================================


@dataclass(frozen=True)
class ProductRecord:
    id: int
    name: str
    sku: Optional[str]
    unit: str


@dataclass(frozen=True)
class ShelterRecord:
    id: int
    name: str
    code: Optional[str]


@dataclass(frozen=True)
class PurchaseTransactionRecord:
    id: int
    transaction_code: str
    farmer_id: int
    product_id: int
    shelter_id: int
    quantity: Decimal
    amount: Decimal
    status: str


@dataclass(frozen=True, order=True)
class FarmerSummary:
    """Farmer as shown in provenance results. Identity is ``id``."""

    id: int
    name: str
    village: Optional[str] = field(default=None, compare=False)
    district: Optional[str] = field(default=None, compare=False)
    group_name: Optional[str] = field(default=None, compare=False)


# =============================================================================
# Batch records
# =============================================================================


@dataclass(frozen=True)
class OpenBatchRecord:
    """A batch that is open or processing; it has no output yet."""

    id: int
    batch_code: str
    status: str
    input_product_id: int
    shelter_id: int
    total_input_weight: Decimal
    total_input_cost: Decimal
    started_at: datetime
    processing_started_at: Optional[datetime] = None
    source_transaction_ids: Tuple[int, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class ClosedBatchRecord:
    """A closed batch: output weight, finished product and unit cost are fixed."""

    id: int
    batch_code: str
    status: str
    input_product_id: int
    product_id: int
    shelter_id: int
    total_input_weight: Decimal
    total_input_cost: Decimal
    total_output_weight: Decimal
    reject_weight: Decimal
    unit_cost: Decimal
    started_at: datetime
    closed_at: datetime
    quality: QualitySummary = QualitySummary()
    source_transaction_ids: Tuple[int, ...] = ()
    notes: Optional[str] = None


BatchRecord = Union[OpenBatchRecord, ClosedBatchRecord]


@dataclass(frozen=True)
class AllocatableBatch:
    """A closed batch with output still available for lots."""

    batch: ClosedBatchRecord
    allocated_weight: Decimal
    remaining_weight: Decimal


@dataclass(frozen=True)
class BatchYield:
    """Processing yield of a closed batch."""

    batch_id: int
    total_input_weight: Decimal
    total_output_weight: Decimal
    weight_loss: Decimal
    yield_percent: Decimal


@dataclass(frozen=True)
class ProcessingLogRecord:
    id: int
    batch_id: int
    process_type: str
    log_date: datetime
    temperature: Optional[Decimal] = None
    humidity: Optional[Decimal] = None
    notes: Optional[str] = None


# =============================================================================
# Lot records
# =============================================================================


@dataclass(frozen=True)
class LotAllocationRecord:
    """How much of one batch a lot holds."""

    batch_id: int
    batch_code: str
    weight_contributed: Decimal
    batch_unit_cost: Decimal


@dataclass(frozen=True)
class LotRecord:
    id: int
    lot_code: str
    product_id: int
    quantity: Decimal
    available_quantity: Decimal
    unit_cost: Decimal
    created_at: datetime
    allocations: Tuple[LotAllocationRecord, ...] = ()


@dataclass(frozen=True)
class DepletionRecord:
    id: int
    lot_id: int
    quantity: Decimal
    balance_after: Decimal
    sale_reference: Optional[str]
    idempotency_key: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class SalePriceSuggestion:
    lot_id: int
    unit_cost: Decimal
    margin: Decimal
    suggested_price: Decimal


# =============================================================================
# Provenance and public trace
# =============================================================================


@dataclass(frozen=True)
class ProvenanceResult:
    """Resolved chain for a lot.

    Batches are ordered by id and farmers by farmer id, so two resolutions
    of the same stored links compare equal regardless of join order.
    ``complete`` is False when any integrity gap was logged.
    """

    lot_id: int
    batches: Tuple[ClosedBatchRecord, ...]
    farmers: Tuple[FarmerSummary, ...]
    purchase_transaction_ids: Tuple[int, ...] = ()
    complete: bool = True


@dataclass(frozen=True)
class PublicFarmer:
    name: str
    group_name: str
    village: Optional[str]
    district: Optional[str]


@dataclass(frozen=True)
class PublicQuality:
    moisture_percent: Optional[Decimal] = None
    bean_count: Optional[Decimal] = None
    waste_percent: Optional[Decimal] = None
    grade: Optional[str] = None


@dataclass(frozen=True)
class PublicTraceView:
    """Sanitized, public projection of a lot. Holds no costs, prices or ids."""

    lot_code: str
    product_name: str
    total_weight: Decimal
    produced_on: str
    cooperative: str
    batch_count: int
    quality: PublicQuality
    farmers: Tuple[PublicFarmer, ...]
    regions: Tuple[str, ...]


# =============================================================================
# Pagination
# =============================================================================


@dataclass
class PaginationParams:
    """Pagination parameters for list operations.

    Attributes:
        page: Page number (1-indexed, default 1)
        per_page: Items per page (default 50, max 1000)

    Raises:
        ValueError: If page < 1, per_page < 1, or per_page > 1000
    """

    page: int = 1
    per_page: int = 50

    def __post_init__(self) -> None:
        """Validate pagination parameters."""
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.per_page < 1:
            raise ValueError("per_page must be >= 1")
        if self.per_page > 1000:
            raise ValueError("per_page must be <= 1000")

    def offset(self) -> int:
        """SQL OFFSET value: (page - 1) * per_page.

        Examples:
            >>> PaginationParams(page=3, per_page=25).offset()
            50
        """
        return (self.page - 1) * self.per_page


@dataclass
class PaginatedResult(Generic[T]):
    """Generic paginated result container.

    Attributes:
        items: List of items for this page
        total: Total number of items across all pages
        page: Current page number (1-indexed)
        per_page: Items per page
    """

    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        """Total number of pages (minimum 1, even for empty results).

        Examples:
            >>> PaginatedResult(items=[], total=101, page=1, per_page=50).pages
            3
        """
        if self.total == 0:
            return 1
        return (self.total + self.per_page - 1) // self.per_page

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1
