import os
import time
from typing import Any, Mapping, Optional

from flask import Flask, jsonify, request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from werkzeug.exceptions import HTTPException

import db
from api.blueprint import create_api_blueprint
from api.companies import SERVICE_EXTENSION
from api.schemas.api_responses import REQUEST_ID_HEADER, current_request_id, fail
from api.services.company_service import CompanyService, CompanyServiceError
from api.services.company_store import CompanyStore, SqlAlchemyCompanyStore
from api.services.response_cache import ResponseCache
from config import Config, configure_logging
from logging_utils import configure_app_logging, get_logger
from utils.vies_client import VatVerifier, ViesVatVerifier


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize DB schema on `bind` (default: `db.engine`).

    Kept out of default startup path to minimize app spin-up time.
    """

    import models  # noqa: F401  (registers tables on Base.metadata)

    db.Base.metadata.create_all(bind=bind if bind is not None else db.engine)


DB_ENGINE_EXTENSION = "company_registry_db_engine"


def _database(app: Flask) -> tuple[Engine, sessionmaker]:
    """Engine and session factory for `app.config["DATABASE_URL"]`.

    An empty URL, or the one `db` was built from, reuses the module-level engine.
    """

    url = str(app.config.get("DATABASE_URL") or "").strip()
    if not url or url == db.SQLALCHEMY_DATABASE_URL:
        return db.engine, db.SessionLocal
    engine = db.make_engine(url)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_app(
    test_config: Optional[Mapping[str, Any]] = None,
    *,
    store: Optional[CompanyStore] = None,
    verifier: Optional[VatVerifier] = None,
    cache: Optional[ResponseCache] = None,
) -> Flask:
    app = Flask(__name__)

    # Defaults from file, then environment overrides, then explicit overrides.
    app.config.from_pyfile("settings.py")
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Configure unified app logging (UTC timestamps, per-file logs, daily rotation)
    configure_app_logging(app.config.get("LOG_LEVEL", "INFO"))
    logger = get_logger(__name__)
    configure_logging(app.logger, app.config.get("LOG_LEVEL", "INFO"))

    # One cache per app instance; a fresh app starts with empty caches.
    if cache is None:
        cache = ResponseCache(
            ttl_seconds=app.config.get("CACHE_TTL_SECONDS", 0),
            enabled=app.config.get("ENABLE_CACHE", True),
        )
    engine, session_factory = _database(app)
    app.extensions[DB_ENGINE_EXTENSION] = engine
    if store is None:
        store = SqlAlchemyCompanyStore(session_factory)
    if verifier is None:
        verifier = ViesVatVerifier(
            url=app.config.get("VIES_URL"),
            timeout_s=app.config.get("VIES_TIMEOUT_S"),
        )
    app.extensions[SERVICE_EXTENSION] = CompanyService(store, verifier, cache)

    # --- slow request logging (opt-in by threshold; default 250ms) ---
    # Set to "0" to disable.
    slow_ms = int(os.getenv("SLOW_REQUEST_MS", "250") or "250")

    @app.before_request
    def _start_timer():
        if slow_ms > 0:
            request.environ["_req_start_ns"] = time.perf_counter_ns()

    @app.after_request
    def _finish_request(resp):
        rid = current_request_id()
        if rid:
            resp.headers.setdefault(REQUEST_ID_HEADER, rid)

        if slow_ms <= 0:
            return resp

        start_ns = request.environ.get("_req_start_ns")
        if not start_ns:
            return resp

        elapsed_ms = (time.perf_counter_ns() - int(start_ns)) / 1_000_000.0
        if elapsed_ms >= slow_ms:
            # Keep it compact and stable for grepping.
            logger.warning(
                "SLOW_REQUEST ms=%.1f status=%s method=%s path=%s query=%s",
                elapsed_ms,
                getattr(resp, "status_code", "?"),
                request.method,
                request.path,
                request.query_string.decode("utf-8", errors="replace"),
            )
        return resp

    app.register_blueprint(create_api_blueprint())

    # Error handlers
    @app.errorhandler(CompanyServiceError)
    def service_error(err: CompanyServiceError):
        return (
            jsonify(fail(err.message, code=err.code, details=err.details)),
            err.status_code,
        )

    @app.errorhandler(HTTPException)
    def http_error(err: HTTPException):
        code = (err.name or "error").lower().replace(" ", "_")
        return jsonify(fail(err.description or err.name, code=code)), err.code

    @app.errorhandler(Exception)
    def server_error(err: Exception):
        logger.exception("Unhandled server error")
        return jsonify(fail("Internal server error", code="internal_error")), 500

    # Optional: initialize tables on startup only when explicitly requested.
    if os.getenv("INIT_DB_ON_STARTUP", "0") == "1":
        logger.info("INIT_DB_ON_STARTUP=1; initializing database schema")
        init_db(engine)

    return app


# NOTE: Do not instantiate the Flask app at import time.
# Tests patch the DB engine/sessionmaker before calling create_app().
app: Flask | None = None


if __name__ == "__main__":
    app = create_app()
    init_db(app.extensions[DB_ENGINE_EXTENSION])
    get_logger(__name__).info("Starting Flask app")
    app.run(debug=True, use_reloader=False, threaded=True)
