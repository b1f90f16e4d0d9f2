"""Service layer exception classes for the lot traceability engine.

Every error carries a machine-readable ``kind`` and the quantities or
fields involved, so a caller can render an actionable message such as
"Batch already fully allocated, 0 kg remaining".

Exception Hierarchy:
    TraceabilityError (base)
    ├── ValidationError        400  caller input malformed or precondition unmet
    │   ├── BatchNotEligible
    │   ├── BatchNotClosed
    │   ├── BatchAlreadyClosed
    │   ├── EmptyLot
    │   ├── EmptyBatch
    │   ├── InvalidOutputWeight
    │   ├── InvalidQuantity
    │   └── SourceNotEligible
    ├── ConflictError          409  concurrent-state conflict, retry with fresh state
    │   ├── OverAllocated
    │   ├── InsufficientStock
    │   ├── DuplicateLotCode
    │   ├── DuplicateBatchCode
    │   ├── SourceAlreadyAssigned
    │   └── IdempotencyKeyReused
    ├── NotFoundError          404  unknown batch, lot, lot code or reference row
    └── DataIntegrityError     500  broken provenance chain or immutability breach
        └── ImmutabilityViolation

Mutating operations raise these and roll back. Read paths log
DataIntegrityError instead of raising it.
"""

from decimal import Decimal
from typing import Any, Dict


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class TraceabilityError(Exception):
    """Base exception for all service layer errors.

    Args:
        message: Human readable description
        **details: Offending ids, fields and quantities
    """

    kind = "TraceabilityError"
    http_status = 500

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body for API responses."""
        rv = {key: _jsonable(value) for key, value in self.details.items()}
        rv["error"] = self.kind
        rv["message"] = self.message
        rv["success"] = False
        return rv


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(TraceabilityError):
    """Raised when input is malformed or a precondition is unmet."""

    kind = "ValidationError"
    http_status = 400


class BatchNotEligible(ValidationError):
    """Raised when a batch cannot be allocated to a lot.

    Example:
        >>> raise BatchNotEligible(7, "status is processing")
        BatchNotEligible: Batch 7 is not eligible for this lot: status is processing
    """

    kind = "BatchNotEligible"

    def __init__(self, batch_id: int, reason: str):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id} is not eligible for this lot: {reason}",
            batch_id=batch_id,
            reason=reason,
        )


class BatchNotClosed(ValidationError):
    """Raised when an operation needs a closed batch."""

    kind = "BatchNotClosed"

    def __init__(self, batch_id: int, status: str):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id} is {status}, not closed", batch_id=batch_id, status=status
        )


class BatchAlreadyClosed(ValidationError):
    """Raised when a closed batch is advanced or modified."""

    kind = "BatchAlreadyClosed"

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id} is closed; corrections require a new batch", batch_id=batch_id
        )


class EmptyLot(ValidationError):
    """Raised when a lot would have no batches or zero quantity."""

    kind = "EmptyLot"

    def __init__(self, reason: str = "no batch allocations"):
        super().__init__(f"Cannot create an empty lot: {reason}", reason=reason)


class EmptyBatch(ValidationError):
    """Raised when a batch is opened without source transactions."""

    kind = "EmptyBatch"

    def __init__(self):
        super().__init__("A batch needs at least one purchase transaction as input")


class InvalidOutputWeight(ValidationError):
    """Raised when closing a batch without a positive output weight."""

    kind = "InvalidOutputWeight"

    def __init__(self, batch_id: int, field: str, value: Any, reason: str):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id}: {field} {reason}",
            batch_id=batch_id,
            field=field,
            value=value,
        )


class InvalidQuantity(ValidationError):
    """Raised when a quantity or weight is missing, non-numeric or not positive."""

    kind = "InvalidQuantity"

    def __init__(self, field: str, value: Any, reason: str = "must be greater than zero"):
        super().__init__(f"{field} {reason}", field=field, value=value)


class SourceNotEligible(ValidationError):
    """Raised when a purchase transaction cannot feed the batch being opened."""

    kind = "SourceNotEligible"

    def __init__(self, purchase_transaction_id: int, reason: str):
        self.purchase_transaction_id = purchase_transaction_id
        super().__init__(
            f"Purchase transaction {purchase_transaction_id} cannot feed this batch: {reason}",
            purchase_transaction_id=purchase_transaction_id,
            reason=reason,
        )


# =============================================================================
# Conflict errors
# =============================================================================


class ConflictError(TraceabilityError):
    """Raised when current state conflicts with the request; retry with fresh state."""

    kind = "ConflictError"
    http_status = 409


class OverAllocated(ConflictError):
    """Raised when an allocation exceeds a batch's remaining output.

    Example:
        >>> raise OverAllocated(3, Decimal("100"), Decimal("0"))
        OverAllocated: Batch 3 has 0 kg remaining; requested 100 kg
    """

    kind = "OverAllocated"

    def __init__(self, batch_id: int, requested: Decimal, remaining: Decimal):
        self.batch_id = batch_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Batch {batch_id} has {remaining} kg remaining; requested {requested} kg",
            batch_id=batch_id,
            requested=requested,
            remaining=remaining,
        )


class InsufficientStock(ConflictError):
    """Raised when a depletion exceeds a lot's available quantity."""

    kind = "InsufficientStock"

    def __init__(self, lot_id: int, requested: Decimal, available: Decimal):
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Lot {lot_id} has {available} kg available; requested {requested} kg",
            lot_id=lot_id,
            requested=requested,
            available=available,
        )


class DuplicateLotCode(ConflictError):
    """Raised when a lot code is already in use."""

    kind = "DuplicateLotCode"

    def __init__(self, lot_code: str):
        self.lot_code = lot_code
        super().__init__(f"Lot code '{lot_code}' already exists", lot_code=lot_code)


class DuplicateBatchCode(ConflictError):
    """Raised when a batch code is already in use."""

    kind = "DuplicateBatchCode"

    def __init__(self, batch_code: str):
        self.batch_code = batch_code
        super().__init__(f"Batch code '{batch_code}' already exists", batch_code=batch_code)


class SourceAlreadyAssigned(ConflictError):
    """Raised when a purchase transaction already feeds another batch."""

    kind = "SourceAlreadyAssigned"

    def __init__(self, purchase_transaction_id: int, batch_id: int):
        self.purchase_transaction_id = purchase_transaction_id
        self.batch_id = batch_id
        super().__init__(
            f"Purchase transaction {purchase_transaction_id} already feeds batch {batch_id}",
            purchase_transaction_id=purchase_transaction_id,
            batch_id=batch_id,
        )


class IdempotencyKeyReused(ConflictError):
    """Raised when an idempotency key is replayed with a different request."""

    kind = "IdempotencyKeyReused"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Idempotency key '{idempotency_key}' was already used for a different depletion",
            idempotency_key=idempotency_key,
        )


# =============================================================================
# Lookup and integrity errors
# =============================================================================


class NotFoundError(TraceabilityError):
    """Raised when a batch, lot, lot code or reference row does not exist.

    Example:
        >>> raise NotFoundError("Lot", 99)
        NotFoundError: Lot 99 not found
    """

    kind = "NotFound"
    http_status = 404

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found", entity=entity, key=key)


class DataIntegrityError(TraceabilityError):
    """Raised (or, on read paths, logged) when stored data breaks an invariant."""

    kind = "DataIntegrityError"
    http_status = 500


class ImmutabilityViolation(DataIntegrityError):
    """Raised by ORM listeners when append-only or closed records are modified."""

    kind = "ImmutabilityViolation"

    def __init__(self, entity: str, entity_id: Any, reason: str):
        super().__init__(
            f"{entity} {entity_id}: {reason}", entity=entity, entity_id=entity_id
        )
