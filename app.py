import os
import logging
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, g, jsonify
from dotenv import load_dotenv

from config import PaymentSettings, _env_bool
from controllers.payments import payments_bp
from controllers.webhook import webhook_bp
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY
from services.payments import registry as payments_registry

# --- Load .env exactly once, here ---
load_dotenv()

SERVICE_NAME = "Eventer Payment API"


def _configure_logging(app: Flask) -> None:
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.getenv("LOG_DIR") or os.path.join(
            os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # read-only filesystem etc.: fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def create_app(test_config: dict | None = None):
    app = Flask(__name__)

    APP_ENV = os.getenv("APP_ENV", "development").lower()
    app.config.from_mapping(
        APP_ENV=APP_ENV,
        CORS_ORIGINS=os.getenv("CORS_ORIGINS", "*"),
        METRICS_ENABLED=_env_bool("METRICS_ENABLED", True),
    )
    if test_config:
        app.config.update(test_config)

    _configure_logging(app)

    # ---- Payments ----
    settings = PaymentSettings.from_mapping(app.config)
    if not settings.key_configured and app.config["APP_ENV"] == "production":
        raise RuntimeError(
            "STRIPE_SECRET_KEY must be set in production (.env)")
    app.config["PAYMENT_SETTINGS"] = settings
    payments_registry.init_app(app, settings)

    if settings.key_configured:
        app.logger.info("Stripe key configured: Yes (length: %d)",
                        len(settings.secret_key))
    else:
        app.logger.warning("Stripe key configured: No")

    # ---- Blueprints ----
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Prometheus
    if app.config["METRICS_ENABLED"]:
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(404)
    def not_found(e):
        app.logger.warning("404 %s %s", request.method, request.path)
        return jsonify(error="Not found", path=request.path), 404

    @app.errorhandler(405)
    def not_allowed(e):
        app.logger.warning("405 %s %s", request.method, request.path)
        return jsonify(error="Method not allowed", path=request.path), 405

    @app.errorhandler(500)
    def server_error(e):
        # Flask has already logged the traceback of the original exception
        return jsonify(error="Internal server error"), 500

    # ---- CORS ----
    # mobile and web clients call this API directly from other origins

    @app.before_request
    def _preflight():
        if request.method == "OPTIONS":
            return app.response_class(status=204)

    @app.after_request
    def _cors(resp):
        resp.headers["Access-Control-Allow-Origin"] = app.config["CORS_ORIGINS"]
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, Stripe-Signature"
        resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        return resp

    # ---- Routes ----
    @app.get("/")
    def root():
        return jsonify(
            service=SERVICE_NAME,
            status="running",
            endpoints=[
                "/create-subscription",
                "/create-payment-intent",
                "/cancel-subscription",
                "/validate-promo",
                "/webhook",
                "/health",
            ],
        )

    @app.get("/health")
    def health():
        # Liveness only: no call to Stripe
        return jsonify(status="ok"), 200

    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _log_request(resp):
        ms = (time() - getattr(g, "_t0", time())) * 1000
        app.logger.info("%s %s %s %s %.1fms",
                        request.remote_addr, request.method, request.full_path, resp.status_code, ms)

        # --- Skip self-scrapes to keep series clean ---
        path = request.path or ""
        if path.startswith("/metrics"):
            return resp

        endpoint = (request.endpoint or "unknown").replace(".", "_")
        REQUEST_COUNT.labels(
            method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
        REQUEST_LATENCY.labels(
            endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        return resp

    return app


if __name__ == "__main__":
    # TIP: use APP_ENV=production STRIPE_SECRET_KEY=... when deploying
    app = create_app()
    port = app.config["PAYMENT_SETTINGS"].port
    app.logger.info("Eventer payment server running on port %d", port)
    app.run(host="0.0.0.0", port=port, threaded=True,
            debug=(app.config["APP_ENV"] != "production"))
