# adminpanel/__init__.py

from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv
import logging
import os

from adminpanel.errors import OTPError
from adminpanel.logging_setup import configure_logging

# ======================================================
# Load environment first
# ======================================================
load_dotenv()

log = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per hour"],
    storage_uri="memory://"
)


def create_app(test_config=None):
    app = Flask(__name__)

    # ==================================================
    # Security / Keys
    # ==================================================
    app.secret_key = os.getenv("SECRET_KEY", "REPLACE_WITH_A_SECURE_RANDOM_KEY")

    # ==================================================
    # OTP defaults (issuer/account go into otpauth:// URIs)
    # ==================================================
    app.config["OTP_ISSUER"] = os.getenv("OTP_ISSUER", "AdminPanel")
    app.config["OTP_ACCOUNT"] = os.getenv("OTP_ACCOUNT", "user@adminpanel.com")
    app.config["OTP_RATE_LIMIT"] = os.getenv("OTP_RATE_LIMIT", "60 per minute")

    # ==================================================
    # Rate Limiting + Logging
    # ==================================================
    app.config["RATELIMIT_ENABLED"] = os.getenv("RATELIMIT_ENABLED", "true").lower() != "false"
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")
    app.config["LOG_FORMAT"] = os.getenv("LOG_FORMAT", "console")

    if test_config:
        app.config.update(test_config)

    if not app.testing:
        configure_logging(app.config["LOG_LEVEL"], app.config["LOG_FORMAT"].lower() == "json")

    limiter.init_app(app)

    # ==================================================
    # Blueprints
    # ==================================================
    from adminpanel.routes.otp import otp_bp

    app.register_blueprint(otp_bp)

    # ==================================================
    # Error Handlers (always JSON)
    # ==================================================
    @app.errorhandler(OTPError)
    def handle_otp_error(exc):
        log.warning("otp_client_error", extra={"code": exc.code, "error": exc.message})
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({
            "success": False,
            "error": exc.description,
            "code": (exc.name or "error").upper().replace(" ", "_"),
        }), exc.code

    # ==================================================
    # Security Headers
    # ==================================================
    @app.after_request
    def apply_security_headers(response):
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response

    # ==================================================
    # Basic Routes
    # ==================================================
    @app.route("/")
    def home():
        return jsonify({"status": "ok"})

    @app.route("/status")
    def status():
        return jsonify({"status": "ok", "service": "adminpanel-otp"})

    return app
