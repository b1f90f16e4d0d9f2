from flask import Blueprint

# url_prefix is set when the blueprint is registered in create_app
traceability_bp = Blueprint("traceability", __name__)

from . import routes  # noqa: E402,F401
