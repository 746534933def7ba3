# services/payments/stripe_provider.py
"""
Stripe adapter. Every call the API makes to Stripe goes through StripeProvider.

- The api key and pinned API version are sent as per-request options, so the
  module-level `stripe.api_key` is never used.
- Timeout and network retries are applied to the SDK's HTTP client once,
  in configure_http_client(), at app start.
- Stripe errors are not translated: they propagate as stripe.StripeError and
  the routes turn them into 500s with the upstream message.
- Every SDK result is turned into plain dicts/lists by as_dict() before it is
  read. Recent SDK releases no longer make StripeObject a dict subclass.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import stripe

from config import PaymentSettings
from services.metrics import PROCESSOR_CALLS
from services.payments.base import CancellationIncomplete, CheckoutSession, PromoCode

log = logging.getLogger(__name__)

# metadata key used to correlate Stripe objects with our own user ids
USER_ID_METADATA_KEY = "eventer_user_id"


def configure_http_client(settings: PaymentSettings) -> None:
    stripe.default_http_client = stripe.RequestsClient(
        timeout=settings.timeout_seconds)
    stripe.max_network_retries = settings.max_network_retries


def stripe_error_message(err: Exception) -> str:
    """The processor's own message, without the request-id prefix."""
    msg = getattr(err, "user_message", None)
    return msg or str(err)


def as_dict(obj):
    """StripeObject / ListObject / Event (at any depth) to plain dicts and lists."""
    if isinstance(obj, stripe.StripeObject):
        obj = obj.to_dict()
    if isinstance(obj, dict):
        return {k: as_dict(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [as_dict(v) for v in obj]
    return obj


class StripeProvider:
    name = "stripe"

    def __init__(self, settings: PaymentSettings) -> None:
        self.settings = settings

    # ----- helpers -----

    def _opts(self) -> Dict[str, Any]:
        return {"api_key": self.settings.secret_key,
                "stripe_version": self.settings.api_version}

    def _call(self, operation: str, fn, *args, **params):
        try:
            result = fn(*args, **params, **self._opts())
        except stripe.StripeError:
            PROCESSOR_CALLS.labels(operation=operation, outcome="error").inc()
            raise
        PROCESSOR_CALLS.labels(operation=operation, outcome="ok").inc()
        return as_dict(result)

    # ----- customers -----

    def resolve_customer(self, email: str, external_id: Optional[str] = None) -> str:
        """
        Return the id of the first customer with this email, creating one if none.
        The match is by email only; external_id is stored as metadata on create.
        Lookup-then-create is not atomic: two concurrent first calls for the
        same email can create two customers upstream.
        """
        found = self._call("customer.list", stripe.Customer.list,
                           email=email, limit=1)
        data = found["data"] or []
        if data:
            return data[0]["id"]

        metadata = {USER_ID_METADATA_KEY: external_id} if external_id else {}
        customer = self._call("customer.create", stripe.Customer.create,
                              email=email, metadata=metadata)
        log.info("Created customer %s", customer["id"])
        return customer["id"]

    def create_ephemeral_key(self, customer_id: str) -> str:
        key = self._call("ephemeral_key.create", stripe.EphemeralKey.create,
                         customer=customer_id)
        return key["secret"]

    # ----- one-off payments -----

    def create_payment_intent(self, *, email: str, amount: int,
                              currency: Optional[str] = None,
                              price_id: Optional[str] = None,
                              external_id: Optional[str] = None) -> CheckoutSession:
        customer_id = self.resolve_customer(email, external_id)
        ephemeral = self.create_ephemeral_key(customer_id)

        metadata = {}
        if price_id:
            metadata["price_id"] = price_id
        if external_id:
            metadata[USER_ID_METADATA_KEY] = external_id

        intent = self._call(
            "payment_intent.create", stripe.PaymentIntent.create,
            amount=amount,
            currency=(currency or self.settings.default_currency).lower(),
            customer=customer_id,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return CheckoutSession(customer_id=customer_id,
                               ephemeral_key=ephemeral,
                               payment_intent_secret=intent["client_secret"])

    # ----- subscriptions -----

    def create_subscription(self, *, email: str, price_id: str,
                            external_id: Optional[str] = None,
                            promo_code: Optional[str] = None) -> CheckoutSession:
        customer_id = self.resolve_customer(email, external_id)
        ephemeral = self.create_ephemeral_key(customer_id)

        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.payment_intent"],
        }
        if external_id:
            params["metadata"] = {USER_ID_METADATA_KEY: external_id}

        if promo_code:
            promo = self.find_promotion_code(promo_code)
            if promo:
                params["promotion_code"] = promo.id
            else:
                log.info("Promo code %r not active, subscribing without discount",
                         promo_code)

        sub = self._call("subscription.create",
                         stripe.Subscription.create, **params)
        return CheckoutSession(customer_id=customer_id,
                               ephemeral_key=ephemeral,
                               payment_intent_secret=_invoice_intent_secret(sub),
                               subscription_id=sub["id"])

    def list_active_subscription_ids(self, customer_id: str) -> List[str]:
        ids: List[str] = []
        params: Dict[str, Any] = {"customer": customer_id, "status": "active",
                                  "limit": self.settings.cancel_page_size}
        while True:
            page = self._call("subscription.list",
                              stripe.Subscription.list, **params)
            data = page["data"] or []
            ids.extend(s["id"] for s in data)
            if not (page.get("has_more") and data):
                return ids
            params["starting_after"] = data[-1]["id"]

    def cancel_subscriptions(self, subscription_ids: List[str]) -> List[str]:
        """
        Cancel one by one. Not atomic: on failure the ones already cancelled
        stay cancelled and the rest are left alone (CancellationIncomplete).
        """
        canceled: List[str] = []
        for sid in subscription_ids:
            try:
                sub = self._call("subscription.cancel",
                                 stripe.Subscription.cancel, sid)
            except stripe.StripeError as e:
                log.error("Cancel stopped at %s after %d of %d",
                          sid, len(canceled), len(subscription_ids))
                raise CancellationIncomplete(e, canceled) from e
            canceled.append(sub["id"])
        return canceled

    # ----- promotion codes -----

    def find_promotion_code(self, code: str) -> Optional[PromoCode]:
        """First *active* promotion code matching code.upper(), or None."""
        normalized = code.strip().upper()
        found = self._call("promotion_code.list", stripe.PromotionCode.list,
                           code=normalized, active=True, limit=1)
        data = found["data"] or []
        if not data:
            return None
        promo = data[0]
        coupon = promo.get("coupon") or {}
        return PromoCode(
            id=promo["id"],
            code=promo.get("code") or normalized,
            percent_off=coupon.get("percent_off"),
            amount_off=coupon.get("amount_off"),
            duration=coupon.get("duration"),
            duration_in_months=coupon.get("duration_in_months"),
        )

    # ----- webhooks -----

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """
        Verify and parse a webhook delivery. Raises ValueError for a body that
        is not JSON and stripe.SignatureVerificationError for a bad signature.
        """
        event = stripe.Webhook.construct_event(
            payload, signature or "", self.settings.webhook_secret,
            tolerance=self.settings.webhook_tolerance)
        return as_dict(event)


def _invoice_intent_secret(subscription) -> Optional[str]:
    invoice = as_dict(subscription).get("latest_invoice")
    if not invoice or isinstance(invoice, str):
        return None
    intent = invoice.get("payment_intent")
    if not intent or isinstance(intent, str):
        return None
    return intent.get("client_secret")
