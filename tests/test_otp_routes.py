import base64
import logging

import pytest

from adminpanel import create_app, limiter
from adminpanel.totp import generate_totp


def _post(client, path, payload):
    return client.post(path, json=payload)


# ------------------------------------------------------
# /api/otp/generate
# ------------------------------------------------------
def test_generate_returns_code_and_expiry(client, freeze_now, rfc_secret):
    freeze_now(59)
    res = _post(client, "/api/otp/generate", {"secret": rfc_secret})
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["data"] == {
        "otp": "287082",
        "validUntil": 60,
        "remainingTime": 1,
        "period": 30,
        "algorithm": "SHA1",
        "digits": 6,
    }


def test_generate_accepts_grouped_lowercase_secret(client, freeze_now, rfc_secret):
    freeze_now(59)
    grouped = " ".join(rfc_secret[i:i + 4] for i in range(0, len(rfc_secret), 4)).lower()
    res = _post(client, "/api/otp/generate", {"secret": grouped})
    assert res.status_code == 200
    assert res.get_json()["data"]["otp"] == "287082"


def test_generate_requires_secret(client):
    res = _post(client, "/api/otp/generate", {})
    assert res.status_code == 400
    body = res.get_json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"] == ["Secret is required"]


def test_generate_rejects_short_secret(client):
    res = _post(client, "/api/otp/generate", {"secret": "JBSWY3DP"})
    assert res.status_code == 400
    assert res.get_json()["code"] == "VALIDATION_ERROR"


def test_generate_rejects_non_base32_secret(client):
    res = _post(client, "/api/otp/generate", {"secret": "GEZDGNBVGY3TQOJ0GEZDGNBVGY3TQOJQ"})
    assert res.status_code == 400
    assert res.get_json()["code"] == "INVALID_SECRET"


def test_generate_without_json_body(client):
    res = client.post("/api/otp/generate", data="secret=abc")
    assert res.status_code == 400
    assert res.get_json()["details"] == ["Secret is required"]


# ------------------------------------------------------
# /api/otp/validate
# ------------------------------------------------------
def test_validate_current_code(client, freeze_now, rfc_secret):
    freeze_now(59)
    res = _post(client, "/api/otp/validate", {"secret": rfc_secret, "token": "287082"})
    assert res.status_code == 200
    assert res.get_json()["data"] == {
        "valid": True,
        "timestamp": 59,
        "window": 1,
        "matchedWindow": 0,
        "matchedTimestamp": 59,
    }


def test_validate_previous_step_within_window(client, freeze_now, rfc_secret):
    freeze_now(89)
    res = _post(client, "/api/otp/validate", {"secret": rfc_secret, "token": "287082"})
    data = res.get_json()["data"]
    assert data["valid"] is True
    assert data["matchedWindow"] == -1
    assert data["matchedTimestamp"] == 59


def test_validate_wrong_code(client, freeze_now, rfc_secret):
    freeze_now(1700000000)
    nearby = {generate_totp(rfc_secret, 1700000000 + i * 30) for i in (-1, 0, 1)}
    token = next(c for c in ("000000", "111111", "222222") if c not in nearby)

    res = _post(client, "/api/otp/validate", {"secret": rfc_secret, "token": token})
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["valid"] is False
    assert "matchedWindow" not in data


def test_validate_wider_window(client, freeze_now, rfc_secret):
    ts = 1700000000
    freeze_now(ts)
    token = generate_totp(rfc_secret, ts - 60)
    res = _post(client, "/api/otp/validate", {"secret": rfc_secret, "token": token, "window": "2"})
    data = res.get_json()["data"]
    assert data["valid"] is True
    assert data["window"] == 2
    assert data["matchedWindow"] == -2


@pytest.mark.parametrize("payload,detail", [
    ({"token": "123456"}, "Secret is required"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"}, "Token is required"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "token": "12345"}, "Token must be 6 digits"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "token": "12a456"}, "Token must be 6 digits"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "token": "123456", "window": 11},
     "Window must be an integer from 1 to 10"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "token": "123456", "window": "wide"},
     "Window must be an integer from 1 to 10"),
])
def test_validate_rejects_bad_input(client, payload, detail):
    res = _post(client, "/api/otp/validate", payload)
    assert res.status_code == 400
    body = res.get_json()
    assert body["code"] == "VALIDATION_ERROR"
    assert detail in body["details"]


def test_validate_malformed_secret_is_client_error(client):
    res = _post(client, "/api/otp/validate", {"secret": "AAAAAAAAAAAAAAA1", "token": "123456"})
    assert res.status_code == 400
    assert res.get_json()["code"] == "INVALID_SECRET"


def test_failed_validation_logs_masked_token(client, freeze_now, rfc_secret, caplog):
    freeze_now(1700000000)
    nearby = {generate_totp(rfc_secret, 1700000000 + i * 30) for i in (-1, 0, 1)}
    token = next(c for c in ("987654", "123456", "555555") if c not in nearby)

    with caplog.at_level(logging.INFO, logger="adminpanel.routes.otp"):
        _post(client, "/api/otp/validate", {"secret": rfc_secret, "token": token})

    records = [r for r in caplog.records if r.getMessage() == "otp_validation_failed"]
    assert len(records) == 1
    assert records[0].token == token[:2] + "****"
    assert records[0].secret_length == len(rfc_secret)
    assert all(rfc_secret not in r.getMessage() for r in caplog.records)


# ------------------------------------------------------
# /api/otp/secret
# ------------------------------------------------------
def test_new_secret_defaults(client):
    res = client.get("/api/otp/secret")
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert len(data["secret"]) == 32
    assert data["length"] == 32
    assert "=" not in data["secret"]
    assert data["format"] == "Base32"
    assert data["qrCodeUrl"].startswith(
        f"otpauth://totp/Test%20Panel:ops%40example.com?secret={data['secret']}&issuer=Test%20Panel"
    )
    assert "qrCode" not in data


def test_new_secrets_differ(client):
    first = client.get("/api/otp/secret").get_json()["data"]["secret"]
    second = client.get("/api/otp/secret").get_json()["data"]["secret"]
    assert first != second


@pytest.mark.parametrize("arg,expected", [("40", 40), ("8", 16), ("100", 64), ("abc", 32)])
def test_new_secret_length_is_clamped(client, arg, expected):
    data = client.get(f"/api/otp/secret?length={arg}").get_json()["data"]
    assert data["length"] == expected
    assert len(data["secret"]) == expected


def test_new_secret_with_qr_png(client):
    data = client.get("/api/otp/secret?qr=1").get_json()["data"]
    png = base64.b64decode(data["qrCode"])
    assert png.startswith(b"\x89PNG")


def test_generated_secret_is_usable(client, freeze_now):
    freeze_now(1700000000)
    secret = client.get("/api/otp/secret").get_json()["data"]["secret"]
    otp = _post(client, "/api/otp/generate", {"secret": secret}).get_json()["data"]["otp"]
    res = _post(client, "/api/otp/validate", {"secret": secret, "token": otp})
    assert res.get_json()["data"]["valid"] is True


# ------------------------------------------------------
# /api/otp/time-info, /api/otp/test, /api/otp/docs
# ------------------------------------------------------
def test_time_info(client, freeze_now):
    freeze_now(1700000005)
    data = client.get("/api/otp/time-info").get_json()["data"]
    assert data["timestamp"] == 1700000005
    assert data["currentWindow"] == 1700000005 // 30
    assert data["windowStart"] == 1699999980
    assert data["windowEnd"] == 1700000010
    assert data["remainingTime"] == 5
    assert data["period"] == 30
    assert data["serverTime"]


def test_test_codes(client, freeze_now, rfc_secret):
    freeze_now(59)
    res = _post(client, "/api/otp/test", {"secret": rfc_secret})
    data = res.get_json()["data"]
    assert [c["otp"] for c in data["codes"]] == [
        "287082",
        generate_totp(rfc_secret, 89),
        generate_totp(rfc_secret, 119),
    ]
    assert data["codes"][0]["isCurrent"] is True
    assert data["codes"][2]["windowEnd"] == 120


def test_test_codes_requires_secret(client):
    assert _post(client, "/api/otp/test", {}).status_code == 400


def test_docs(client):
    data = client.get("/api/otp/docs").get_json()["data"]
    paths = {e["path"] for e in data["endpoints"]}
    assert "/api/otp/generate" in paths
    assert "/api/otp/validate" in paths


# ------------------------------------------------------
# App-level behaviour
# ------------------------------------------------------
def test_health(client):
    assert client.get("/").get_json() == {"status": "ok"}
    assert client.get("/status").status_code == 200


def test_security_headers(client):
    res = client.get("/status")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "DENY"
    assert res.headers["Cache-Control"] == "no-store"


def test_not_found_is_json(client):
    res = client.get("/api/otp/nope")
    assert res.status_code == 404
    body = res.get_json()
    assert body["success"] is False
    assert body["code"] == "NOT_FOUND"


def test_method_not_allowed_is_json(client):
    res = client.get("/api/otp/generate")
    assert res.status_code == 405
    assert res.get_json()["success"] is False


def test_rate_limit():
    app = create_app({
        "TESTING": True,
        "RATELIMIT_ENABLED": True,
        "OTP_RATE_LIMIT": "2 per minute",
    })
    with app.app_context():
        limiter.reset()
    client = app.test_client()

    assert client.get("/api/otp/time-info").status_code == 200
    assert client.get("/api/otp/time-info").status_code == 200
    res = client.get("/api/otp/time-info")
    assert res.status_code == 429
    assert res.get_json()["success"] is False

    with app.app_context():
        limiter.reset()


@pytest.mark.parametrize("payload,detail", [
    ({"secret": 12345, "token": "123456"}, "Secret must be a string"),
    ({"secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", "token": 123456}, "Token must be a string"),
])
def test_validate_rejects_non_string_fields(client, payload, detail):
    res = _post(client, "/api/otp/validate", payload)
    assert res.status_code == 400
    assert res.get_json()["details"] == [detail]


def test_new_secret_includes_setup_instructions(client):
    data = client.get("/api/otp/secret").get_json()["data"]
    assert data["instructions"]["setup"]
    assert "Google Authenticator" in data["instructions"]["apps"]


def test_docs_describe_each_endpoint(client):
    data = client.get("/api/otp/docs").get_json()["data"]
    for endpoint in data["endpoints"]:
        assert endpoint["description"]
        assert endpoint["response"]
    validate = next(e for e in data["endpoints"] if e["path"] == "/api/otp/validate")
    assert set(validate["parameters"]) == {"secret", "token", "window"}
    assert data["examples"]["generate"]["request"] == {"secret": "JBSWY3DPEHPK3PXP"}
