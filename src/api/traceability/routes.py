"""JSON endpoints for batches, lots, depletion and provenance."""

from typing import Any, Dict, Optional

from flask import jsonify, request

from src.api.traceability import traceability_bp
from src.services import (
    batch_service,
    inventory_ledger_service,
    lot_service,
    provenance_service,
)
from src.services.dto import BatchClosure, PaginationParams, QualitySummary
from src.services.dto_utils import to_jsonable
from src.services.exceptions import ValidationError


# =============================================================================
# Request helpers
# =============================================================================


def _body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _field(body: Dict[str, Any], name: str, camel: Optional[str] = None, default=None):
    """Read a field by snake_case name, falling back to its camelCase alias."""
    if name in body:
        return body[name]
    if camel is not None and camel in body:
        return body[camel]
    return default


def _int(value, name: str, required: bool = True) -> Optional[int]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{name}: This field is required", field=name)
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name}: Must be an integer", field=name, value=value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name}: Must be an integer", field=name, value=value)


def _closure(body: Dict[str, Any]) -> Optional[BatchClosure]:
    output_weight = _field(body, "output_weight", "outputWeight")
    if output_weight is None:
        return None
    quality = _field(body, "quality", default={}) or {}
    return BatchClosure(
        output_weight=output_weight,
        reject_weight=_field(body, "reject_weight", "rejectWeight", default="0"),
        product_id=_int(_field(body, "product_id", "productId"), "product_id", required=False),
        quality=QualitySummary(
            moisture_percent=_field(quality, "moisture_percent", "moisturePercent"),
            bean_count=_int(
                _field(quality, "bean_count", "beanCount"), "bean_count", required=False
            ),
            waste_percent=_field(quality, "waste_percent", "wastePercent"),
            grade=_field(quality, "grade"),
            notes=_field(quality, "notes"),
        ),
    )


# =============================================================================
# Batches
# =============================================================================


@traceability_bp.route("/batches", methods=["POST"])
def open_batch():
    body = _body()
    sources = _field(body, "purchase_transaction_ids", "inputs", default=[])
    if not isinstance(sources, list):
        raise ValidationError("purchase_transaction_ids must be a list", field="purchase_transaction_ids")
    batch = batch_service.open_batch(
        _int(_field(body, "product_id", "productId"), "product_id"),
        _int(_field(body, "shelter_id", "shelterId"), "shelter_id"),
        [_int(s, "purchase_transaction_id") for s in sources],
        notes=_field(body, "notes"),
        batch_code=_field(body, "batch_code", "batchCode"),
    )
    return jsonify(to_jsonable(batch)), 201


@traceability_bp.route("/batches", methods=["GET"])
def list_batches():
    batches = batch_service.list_batches(
        status=request.args.get("status") or None,
        product_id=_int(request.args.get("product_id"), "product_id", required=False),
    )
    return jsonify(to_jsonable(batches))


@traceability_bp.route("/batches/allocatable", methods=["GET"])
def list_allocatable_batches():
    product_id = _int(request.args.get("product_id"), "product_id")
    return jsonify(to_jsonable(batch_service.list_allocatable_batches(product_id)))


@traceability_bp.route("/batches/<int:batch_id>", methods=["GET"])
def get_batch(batch_id):
    return jsonify(to_jsonable(batch_service.get_batch(batch_id)))


@traceability_bp.route("/batches/<int:batch_id>/advance", methods=["POST"])
def advance_batch(batch_id):
    body = request.get_json(silent=True) or {}
    batch = batch_service.advance_batch(batch_id, _closure(body))
    return jsonify(to_jsonable(batch))


@traceability_bp.route("/advanceBatch", methods=["POST"])
def advance_batch_by_body():
    body = _body()
    batch_id = _int(_field(body, "batch_id", "batchId"), "batch_id")
    batch = batch_service.advance_batch(batch_id, _closure(body))
    return jsonify(to_jsonable(batch))


@traceability_bp.route("/batches/<int:batch_id>/logs", methods=["POST"])
def add_processing_log(batch_id):
    body = _body()
    entry = batch_service.add_processing_log(
        batch_id,
        _field(body, "process_type", "processType"),
        temperature=_field(body, "temperature"),
        humidity=_field(body, "humidity"),
        notes=_field(body, "notes"),
    )
    return jsonify(to_jsonable(entry)), 201


@traceability_bp.route("/batches/<int:batch_id>/logs", methods=["GET"])
def list_processing_logs(batch_id):
    return jsonify(to_jsonable(batch_service.list_processing_logs(batch_id)))


@traceability_bp.route("/batches/<int:batch_id>/yield", methods=["GET"])
def get_batch_yield(batch_id):
    return jsonify(to_jsonable(batch_service.get_batch_yield(batch_id)))


# =============================================================================
# Lots
# =============================================================================


def _create_lot():
    body = _body()
    allocations = _field(body, "allocations", default=[])
    if not isinstance(allocations, list):
        raise ValidationError("allocations must be a list", field="allocations")
    lot = lot_service.create_lot(
        _field(body, "lot_code", "lotCode"),
        _int(_field(body, "product_id", "productId"), "product_id"),
        allocations,
    )
    return jsonify(to_jsonable(lot)), 201


@traceability_bp.route("/lots", methods=["POST"])
def create_lot():
    return _create_lot()


@traceability_bp.route("/createLot", methods=["POST"])
def create_lot_rpc():
    return _create_lot()


@traceability_bp.route("/lots", methods=["GET"])
def list_lots():
    try:
        pagination = PaginationParams(
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
    except ValueError as e:
        raise ValidationError(str(e))

    result = lot_service.list_lots(
        available_only=request.args.get("available_only", "").lower() in ("1", "true", "yes"),
        product_id=_int(request.args.get("product_id"), "product_id", required=False),
        pagination=pagination,
    )
    return jsonify(
        {
            "items": to_jsonable(result.items),
            "total": result.total,
            "page": result.page,
            "per_page": result.per_page,
            "pages": result.pages,
            "has_next": result.has_next,
            "has_prev": result.has_prev,
        }
    )


@traceability_bp.route("/lots/<int:lot_id>", methods=["GET"])
def get_lot(lot_id):
    return jsonify(to_jsonable(lot_service.get_lot(lot_id)))


@traceability_bp.route("/lots/<int:lot_id>/price", methods=["GET"])
def suggest_sale_price(lot_id):
    suggestion = lot_service.suggest_sale_price(lot_id, margin=request.args.get("margin") or None)
    return jsonify(to_jsonable(suggestion))


# =============================================================================
# Depletion
# =============================================================================


def _deplete(lot_id: int, body: Dict[str, Any]):
    lot = inventory_ledger_service.deplete(
        lot_id,
        _field(body, "quantity"),
        idempotency_key=_field(body, "idempotency_key", "idempotencyKey")
        or request.headers.get("Idempotency-Key"),
        sale_reference=_field(body, "sale_reference", "saleReference"),
    )
    return jsonify(to_jsonable(lot))


@traceability_bp.route("/lots/<int:lot_id>/deplete", methods=["POST"])
def deplete_lot(lot_id):
    return _deplete(lot_id, _body())


@traceability_bp.route("/depleteLot", methods=["POST"])
def deplete_lot_rpc():
    body = _body()
    return _deplete(_int(_field(body, "lot_id", "lotId"), "lot_id"), body)


@traceability_bp.route("/lots/<int:lot_id>/depletions", methods=["GET"])
def depletion_history(lot_id):
    return jsonify(to_jsonable(inventory_ledger_service.get_depletion_history(lot_id)))


# =============================================================================
# Provenance
# =============================================================================


@traceability_bp.route("/lotProvenance/<int:lot_id>", methods=["GET"])
def lot_provenance(lot_id):
    return jsonify(to_jsonable(provenance_service.resolve_provenance(lot_id)))
