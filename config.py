# config.py
"""
Settings for the payment API, read once when the app is created.

Env first, then the mapping passed to create_app() (test_config / app.config).
The resulting PaymentSettings is frozen and handed to the Stripe provider;
views never read the environment themselves.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PaymentSettings:
    secret_key: Optional[str]
    publishable_key: Optional[str]
    webhook_secret: Optional[str]
    api_version: str = "2023-10-16"
    timeout_seconds: int = 30
    max_network_retries: int = 0
    webhook_tolerance: int = 300
    default_currency: str = "usd"
    cancel_page_size: int = 10
    port: int = 3000

    @property
    def key_configured(self) -> bool:
        return bool(self.secret_key)

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any] | None = None) -> "PaymentSettings":
        over = dict(overrides or {})

        def pick(*keys: str, default: Any = None) -> Any:
            # explicit overrides win over the environment so tests stay hermetic
            for k in keys:
                if over.get(k) is not None:
                    return over[k]
            for k in keys:
                v = os.environ.get(k)
                if v:
                    return v
            return default

        return cls(
            # live key first, the test key is the fallback
            secret_key=pick("STRIPE_SECRET_KEY", "STRIPE_TEST_SECRET_KEY"),
            publishable_key=pick("EXPO_PUBLIC_STRIPE_PUBLISHABLE_KEY",
                                 "STRIPE_PUBLISHABLE_KEY"),
            webhook_secret=pick("STRIPE_WEBHOOK_SECRET"),
            api_version=str(pick("STRIPE_API_VERSION", default="2023-10-16")),
            timeout_seconds=int(pick("STRIPE_TIMEOUT_SECONDS", default=30)),
            max_network_retries=int(
                pick("STRIPE_MAX_NETWORK_RETRIES", default=0)),
            webhook_tolerance=int(pick("STRIPE_WEBHOOK_TOLERANCE", default=300)),
            default_currency=str(
                pick("PAYMENT_CURRENCY", default="usd")).lower(),
            cancel_page_size=int(pick("CANCEL_PAGE_SIZE", default=10)),
            port=int(pick("PORT", default=3000)),
        )
