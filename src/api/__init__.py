"""
HTTP surface for the lot traceability engine.

Exposes the batch registry, lot consolidator, inventory ledger and
provenance resolver as JSON endpoints under /api, and the public trace
page under /publicTrace. Authentication is enforced by the surrounding
application.
"""

import logging
from typing import Optional

from flask import Flask, jsonify

from src.services.exceptions import TraceabilityError
from src.services.logging_utils import configure_logging
from src.utils.config import get_config


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory."""
    app = Flask(__name__)

    # 1. Configuration
    config = get_config(config_name)
    app.config["COOP_TRACE_ENV"] = config.environment
    app.config["TESTING"] = config.is_testing
    app.json.sort_keys = False

    # 2. Logging
    configure_logging(config.log_level)

    # 3. Blueprints
    register_blueprints(app)

    # 4. Error handlers
    register_error_handlers(app)

    return app


def register_blueprints(app: Flask) -> None:
    from src.api.traceability import traceability_bp
    app.register_blueprint(traceability_bp, url_prefix="/api")

    from src.api.public import public_bp
    app.register_blueprint(public_bp)


def register_error_handlers(app: Flask) -> None:
    logger = logging.getLogger("coop_trace.api")

    @app.errorhandler(TraceabilityError)
    def handle_traceability_error(e):
        if e.http_status >= 500:
            logger.error(f"{e.kind}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "NotFound", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "MethodNotAllowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_server_error(e):
        original = getattr(e, "original_exception", None)
        logger.error(f"Unhandled error: {original or e!r}")
        return (
            jsonify({"success": False, "error": "InternalError", "message": "Internal server error"}),
            500,
        )
