# services/payments/registry.py
from flask import current_app

from config import PaymentSettings
from services.payments.stripe_provider import StripeProvider, configure_http_client

EXTENSION_KEY = "payments"


def init_app(app, settings: PaymentSettings) -> StripeProvider:
    configure_http_client(settings)
    provider = StripeProvider(settings)
    app.extensions[EXTENSION_KEY] = provider
    return provider


def get_provider() -> StripeProvider:
    return current_app.extensions[EXTENSION_KEY]
