# educomm/main.py
import logging
import time

from flask import Flask, g, jsonify, request

from educomm.config import Config
from educomm.database import close_db, engine
from educomm.models import Base
from educomm.blueprints.admin import admin_bp
from educomm.blueprints.carts import carts_bp
from educomm.blueprints.common import GATEWAY_EXTENSION_KEY
from educomm.blueprints.orders import orders_bp
from educomm.blueprints.payment import payment_bp
from educomm.observability import (
    configure_logging,
    increment_counter,
    observe_latency,
    check_database_health,
)
from educomm.observability.logging_config import ensure_request_id
from educomm.services.payment_gateway import StripeGateway

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(carts_bp)
app.register_blueprint(orders_bp)
app.register_blueprint(payment_bp)
app.register_blueprint(admin_bp)
app.extensions[GATEWAY_EXTENSION_KEY] = StripeGateway()

logger = logging.getLogger(__name__)


def init_database():
    """Initialize database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)


init_database()


@app.before_request
def before_request_logging():
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    labels = {
        "method": request.method,
        "endpoint": request.endpoint or request.path,
        "status": str(response.status_code),
    }
    started = getattr(g, "request_started_at", None)
    if started is not None:
        observe_latency("http_request_latency_ms", (time.perf_counter() - started) * 1000, labels=labels)
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers[Config.REQUEST_ID_HEADER] = request_id
    if response.status_code >= 500:
        increment_counter("http_errors_total", labels=labels)
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    return response


@app.teardown_appcontext
def teardown_db(exception):
    try:
        close_db(exception)
    except RuntimeError:
        # Outside of an application context during tests
        pass


@app.errorhandler(500)
def internal_error(error):
    original = getattr(error, "original_exception", None)
    logger.error("Unhandled error: %s", original or error, exc_info=original)
    return jsonify({"error": "Internal server error"}), 500


@app.route("/health", methods=["GET"])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code
