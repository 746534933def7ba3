# tests/conftest.py
import os
import pytest
from app import create_app
from tests.utils import FakeStripe, WEBHOOK_SECRET


@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    yield


@pytest.fixture()
def app():
    return create_app({
        "TESTING": True,
        "STRIPE_SECRET_KEY": "sk_test_123",
        "EXPO_PUBLIC_STRIPE_PUBLISHABLE_KEY": "pk_test_123",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    })


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def fake_stripe(monkeypatch):
    return FakeStripe().install(monkeypatch)
