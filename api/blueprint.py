from flask import Blueprint

from api.companies import companies_bp


def create_api_blueprint() -> Blueprint:
    """Create the main API blueprint and register resource blueprints.

    Keep this as the single registration point to avoid double-registering routes.
    """
    api_bp = Blueprint("api", __name__)

    api_bp.register_blueprint(companies_bp)

    return api_bp
