import pytest

from adminpanel import create_app

RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"  # b32("12345678901234567890")


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "RATELIMIT_ENABLED": False,
        "OTP_ISSUER": "Test Panel",
        "OTP_ACCOUNT": "ops@example.com",
    })
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def freeze_now(monkeypatch):
    """Pin the clock the OTP routes read."""
    def _freeze(ts: int):
        monkeypatch.setattr("adminpanel.routes.otp._now", lambda: ts)
    return _freeze


@pytest.fixture()
def rfc_secret():
    return RFC_SECRET
