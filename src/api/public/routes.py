from flask import jsonify

from src.api.public import public_bp
from src.services.dto_utils import to_jsonable
from src.services.public_trace_service import public_trace


@public_bp.route("/publicTrace/<lot_code>", methods=["GET"])
def trace(lot_code):
    """Sanitized lot view for buyers; 404 for unknown lot codes."""
    return jsonify(to_jsonable(public_trace(lot_code)))
