# adminpanel/routes/otp.py

from flask import Blueprint, request, jsonify, current_app
from datetime import datetime, timezone
import base64
import io
import logging
import re
import time

from adminpanel import limiter
from adminpanel.errors import RequestValidationError
from adminpanel.totp import (
    ALGORITHM, DEFAULT_DIGITS, DEFAULT_PERIOD,
    current_otp, match_offset, generate_base32_secret,
    time_window, upcoming_codes, provisioning_uri,
)

log = logging.getLogger(__name__)

otp_bp = Blueprint("otp", __name__, url_prefix="/api/otp")

MIN_SECRET_LENGTH = 16
MIN_WINDOW, MAX_WINDOW = 1, 10
MIN_KEY_LENGTH, MAX_KEY_LENGTH, DEFAULT_KEY_LENGTH = 16, 64, 32

_TOKEN_RE = re.compile(r"[0-9]{6}")

SETUP_INSTRUCTIONS = {
    "setup": "Scan the QR code in an authenticator app or enter the secret manually",
    "apps": ["Google Authenticator", "Authy", "Microsoft Authenticator", "1Password"],
}


def _otp_rate_limit():
    return current_app.config["OTP_RATE_LIMIT"]


def _now() -> int:
    return int(time.time())


# ------------------------------------------------------
# Request parsing
# ------------------------------------------------------
def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _clean_secret(raw, errors: list):
    """Strip whitespace (authenticator apps group secrets in blocks of 4)."""
    if raw is None or raw == "":
        errors.append("Secret is required")
        return None
    if not isinstance(raw, str):
        errors.append("Secret must be a string")
        return None
    secret = re.sub(r"\s", "", raw)
    if len(secret) < MIN_SECRET_LENGTH:
        errors.append(f"Secret must be at least {MIN_SECRET_LENGTH} characters")
    return secret


def _parse_token(raw, errors: list):
    if raw is None or raw == "":
        errors.append("Token is required")
        return None
    if not isinstance(raw, str):
        errors.append("Token must be a string")
        return None
    if not _TOKEN_RE.fullmatch(raw):
        errors.append("Token must be 6 digits")
    return raw


def _parse_window(raw, errors: list) -> int:
    if raw is None:
        return 1
    if isinstance(raw, bool):
        errors.append(f"Window must be an integer from {MIN_WINDOW} to {MAX_WINDOW}")
        return 1
    try:
        window = int(raw)
    except (TypeError, ValueError):
        errors.append(f"Window must be an integer from {MIN_WINDOW} to {MAX_WINDOW}")
        return 1
    if not MIN_WINDOW <= window <= MAX_WINDOW:
        errors.append(f"Window must be an integer from {MIN_WINDOW} to {MAX_WINDOW}")
    return window


def _parse_key_length(raw) -> int:
    try:
        length = int(raw) if raw is not None else DEFAULT_KEY_LENGTH
    except (TypeError, ValueError):
        length = DEFAULT_KEY_LENGTH
    return max(MIN_KEY_LENGTH, min(MAX_KEY_LENGTH, length))


def _qr_png_base64(uri: str) -> str:
    import qrcode

    img = qrcode.make(uri)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _ok(data: dict):
    return jsonify({"success": True, "data": data})


# ------------------------------------------------------
# POST /api/otp/generate
# ------------------------------------------------------
@otp_bp.route("/generate", methods=["POST"])
@limiter.limit(_otp_rate_limit)
def generate():
    errors = []
    secret = _clean_secret(_payload().get("secret"), errors)
    if errors:
        raise RequestValidationError(errors)

    timestamp = _now()
    result = current_otp(secret, timestamp)

    log.info("otp_generated", extra={
        "secret_length": len(secret),
        "remaining_time": result["remaining_time"],
        "timestamp": timestamp,
    })

    return _ok({
        "otp": result["otp"],
        "validUntil": result["valid_until"],
        "remainingTime": result["remaining_time"],
        "period": result["period"],
        "algorithm": result["algorithm"],
        "digits": result["digits"],
    })


# ------------------------------------------------------
# POST /api/otp/validate
# ------------------------------------------------------
@otp_bp.route("/validate", methods=["POST"])
@limiter.limit(_otp_rate_limit)
def validate():
    payload = _payload()
    errors = []
    secret = _clean_secret(payload.get("secret"), errors)
    token = _parse_token(payload.get("token"), errors)
    window = _parse_window(payload.get("window"), errors)
    if errors:
        raise RequestValidationError(errors)

    timestamp = _now()
    matched = match_offset(secret, token, timestamp, window=window)

    data = {"valid": matched is not None, "timestamp": timestamp, "window": window}
    if matched is not None:
        data["matchedWindow"] = matched
        data["matchedTimestamp"] = timestamp + matched * DEFAULT_PERIOD
        log.info("otp_validation_succeeded", extra={
            "secret_length": len(secret),
            "matched_window": matched,
            "timestamp": timestamp,
        })
    else:
        log.warning("otp_validation_failed", extra={
            "secret_length": len(secret),
            "token": token[:2] + "****",
            "timestamp": timestamp,
        })

    return _ok(data)


# ------------------------------------------------------
# GET /api/otp/secret
# ------------------------------------------------------
@otp_bp.route("/secret", methods=["GET"])
@limiter.limit(_otp_rate_limit)
def new_secret():
    length = _parse_key_length(request.args.get("length"))
    secret = generate_base32_secret(length)

    issuer = current_app.config["OTP_ISSUER"]
    account = current_app.config["OTP_ACCOUNT"]
    uri = provisioning_uri(secret, issuer, account)

    data = {
        "secret": secret,
        "length": length,
        "qrCodeUrl": uri,
        "format": "Base32",
        "algorithm": ALGORITHM,
        "digits": DEFAULT_DIGITS,
        "period": DEFAULT_PERIOD,
        "instructions": SETUP_INSTRUCTIONS,
    }
    if request.args.get("qr", "").lower() in ("1", "true", "yes"):
        data["qrCode"] = _qr_png_base64(uri)

    log.info("otp_secret_generated", extra={"secret_length": length})
    return _ok(data)


# ------------------------------------------------------
# GET /api/otp/time-info
# ------------------------------------------------------
@otp_bp.route("/time-info", methods=["GET"])
@limiter.limit(_otp_rate_limit)
def time_info():
    info = time_window(_now())
    now = datetime.now(timezone.utc)
    return _ok({
        "timestamp": info["timestamp"],
        "currentWindow": info["current_window"],
        "windowStart": info["window_start"],
        "windowEnd": info["window_end"],
        "remainingTime": info["remaining_time"],
        "period": info["period"],
        "serverTime": now.isoformat(),
        "timezone": now.astimezone().tzname(),
    })


# ------------------------------------------------------
# POST /api/otp/test
# ------------------------------------------------------
@otp_bp.route("/test", methods=["POST"])
@limiter.limit(_otp_rate_limit)
def test_codes():
    errors = []
    secret = _clean_secret(_payload().get("secret"), errors)
    if errors:
        raise RequestValidationError(errors)

    timestamp = _now()
    codes = [
        {
            "otp": c["otp"],
            "window": c["window"],
            "timestamp": c["timestamp"],
            "windowStart": c["window_start"],
            "windowEnd": c["window_end"],
            "isCurrent": c["is_current"],
        }
        for c in upcoming_codes(secret, timestamp)
    ]
    return _ok({
        "timestamp": timestamp,
        "period": DEFAULT_PERIOD,
        "codes": codes,
        "note": "Use these codes for testing. The first one is valid now.",
    })


# ------------------------------------------------------
# GET /api/otp/docs
# ------------------------------------------------------
API_ENDPOINTS = [
    {
        "method": "POST",
        "path": "/api/otp/generate",
        "description": "Generate the current OTP code for a secret",
        "parameters": {"secret": "string (Base32, min 16 chars) - shared secret"},
        "response": {
            "otp": "string - 6-digit code",
            "validUntil": "number - Unix time the code expires",
            "remainingTime": "number - seconds until expiry",
            "period": "number - step length (30)",
            "algorithm": "string - HMAC algorithm (SHA1)",
            "digits": "number - code length (6)",
        },
    },
    {
        "method": "POST",
        "path": "/api/otp/validate",
        "description": "Check a code against a secret, tolerating clock skew",
        "parameters": {
            "secret": "string (Base32, min 16 chars) - shared secret",
            "token": "string - 6-digit code",
            "window": "number (1-10, optional) - steps accepted either side, default 1",
        },
        "response": {
            "valid": "boolean - validation result",
            "timestamp": "number - server time used",
            "window": "number - window used",
            "matchedWindow": "number - step offset that matched (only when valid)",
            "matchedTimestamp": "number - time of the matching step (only when valid)",
        },
    },
    {
        "method": "GET",
        "path": "/api/otp/secret",
        "description": "Generate a new shared secret",
        "parameters": {
            "length": "number (16-64, optional) - secret length in Base32 characters, default 32",
            "qr": "boolean (optional) - include a base64 PNG QR code",
        },
        "response": {
            "secret": "string - Base32 secret",
            "length": "number - secret length",
            "qrCodeUrl": "string - otpauth:// URI",
            "qrCode": "string - base64 PNG (only with qr=1)",
            "format": "string - Base32",
            "algorithm": "string - SHA1",
            "digits": "number - 6",
            "period": "number - 30",
            "instructions": "object - setup hints",
        },
    },
    {
        "method": "GET",
        "path": "/api/otp/time-info",
        "description": "Server time and the current step boundaries",
        "response": {
            "timestamp": "number - server Unix time",
            "currentWindow": "number - current step",
            "windowStart": "number - start of the current step",
            "windowEnd": "number - end of the current step",
            "remainingTime": "number - seconds until the step ends",
            "period": "number - 30",
            "serverTime": "string - ISO 8601 server time",
            "timezone": "string - server time zone",
        },
    },
    {
        "method": "POST",
        "path": "/api/otp/test",
        "description": "Codes for the current and next two steps, for debugging",
        "parameters": {"secret": "string (Base32) - shared secret"},
        "response": {
            "timestamp": "number - generation time",
            "period": "number - 30",
            "codes": "array - otp, window, timestamp, windowStart, windowEnd, isCurrent",
            "note": "string",
        },
    },
]

API_EXAMPLES = {
    "generate": {
        "request": {"secret": "JBSWY3DPEHPK3PXP"},
        "response": {
            "success": True,
            "data": {
                "otp": "123456",
                "validUntil": 1640995230,
                "remainingTime": 25,
                "period": 30,
                "algorithm": "SHA1",
                "digits": 6,
            },
        },
    },
    "validate": {
        "request": {"secret": "JBSWY3DPEHPK3PXP", "token": "123456", "window": 1},
        "response": {
            "success": True,
            "data": {
                "valid": True,
                "timestamp": 1640995205,
                "window": 1,
                "matchedWindow": 0,
                "matchedTimestamp": 1640995205,
            },
        },
    },
}


@otp_bp.route("/docs", methods=["GET"])
def docs():
    return _ok({
        "title": "OTP API",
        "endpoints": API_ENDPOINTS,
        "examples": API_EXAMPLES,
        "notes": [
            "All timestamps are Unix seconds",
            "Secrets are Base32 (A-Z, 2-7)",
            f"Codes are {DEFAULT_DIGITS} digits and change every {DEFAULT_PERIOD} seconds",
            "Use /time-info to check clock sync",
            "The validation window absorbs small clock differences",
        ],
    })
