# tests/utils.py
import hashlib
import hmac
import itertools
import json
import time

import stripe

WEBHOOK_SECRET = "whsec_test_secret"


def stripe_error(message="Something went wrong"):
    return stripe.InvalidRequestError(message, param=None)


def sdk_object(cls, values):
    """Real SDK object (nested dicts become StripeObjects too), as the API returns."""
    return cls.construct_from(values, "sk_test_123")


def sdk_list(items, url="/v1/fake", has_more=False):
    return sdk_object(stripe.ListObject, {"object": "list", "url": url,
                                          "data": list(items), "has_more": has_more})


class FakeStripe:
    """
    In-memory stand-in for the handful of Stripe resources the API touches.
    Installed over the SDK classes with monkeypatch (see the `fake_stripe`
    fixture); records every call in `calls` as (operation, params).
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.customers = []
        self.subscriptions = []
        self.promotion_codes = []
        self.calls = []
        # operation name -> exception to raise on the next call
        self.fail = {}
        # subscription id -> exception raised when cancelling it
        self.fail_cancel = {}
        # set to True to simulate a fully discounted first invoice
        self.free_invoice = False

    def _id(self, prefix):
        return f"{prefix}_{next(self._ids)}"

    def _record(self, op, params):
        params = {k: v for k, v in params.items()
                  if k not in ("api_key", "stripe_version")}
        self.calls.append((op, params))
        if op in self.fail:
            raise self.fail.pop(op)
        return params

    def ops(self, op):
        return [p for name, p in self.calls if name == op]

    # ----- seeding -----

    def add_customer(self, email, **metadata):
        c = {"id": self._id("cus"), "object": "customer", "email": email, "metadata": metadata}
        self.customers.append(c)
        return c

    def add_subscription(self, customer, status="active"):
        s = {"id": self._id("sub"), "object": "subscription", "customer": customer, "status": status}
        self.subscriptions.append(s)
        return s

    def add_promotion_code(self, code, active=True, **coupon):
        coupon.setdefault("duration", "once")
        p = {"id": self._id("promo"), "object": "promotion_code", "code": code.upper(), "active": active,
             "coupon": {"object": "coupon", "percent_off": None, "amount_off": None,
                        "duration_in_months": None, **coupon}}
        self.promotion_codes.append(p)
        return p

    # ----- SDK surface -----

    def customer_list(self, **params):
        p = self._record("customer.list", params)
        data = [c for c in self.customers if c["email"] == p["email"]]
        return sdk_list(data[: p.get("limit", 10)])

    def customer_create(self, **params):
        p = self._record("customer.create", params)
        return sdk_object(stripe.Customer,
                          self.add_customer(p["email"], **(p.get("metadata") or {})))

    def ephemeral_key_create(self, **params):
        p = self._record("ephemeral_key.create", params)
        return sdk_object(stripe.EphemeralKey, {"id": self._id("ephkey"), "object": "ephemeral_key",
                                                "secret": f"ek_test_{p['customer']}"})

    def payment_intent_create(self, **params):
        self._record("payment_intent.create", params)
        pid = self._id("pi")
        return sdk_object(stripe.PaymentIntent, {
            "id": pid, "object": "payment_intent", "client_secret": f"{pid}_secret_x",
            "amount": params["amount"], "currency": params["currency"]})

    def subscription_create(self, **params):
        p = self._record("subscription.create", params)
        sub = self.add_subscription(p["customer"], status="incomplete")
        if self.free_invoice:
            invoice = {"id": self._id("in"), "object": "invoice", "payment_intent": None}
        else:
            pid = self._id("pi")
            invoice = {"id": self._id("in"), "object": "invoice",
                       "payment_intent": {"id": pid, "object": "payment_intent", "client_secret": f"{pid}_secret_sub"}}
        return sdk_object(stripe.Subscription, {**sub, "latest_invoice": invoice})

    def subscription_list(self, **params):
        p = self._record("subscription.list", params)
        data = [s for s in self.subscriptions
                if s["customer"] == p["customer"] and s["status"] == p["status"]]
        if p.get("starting_after"):
            ids = [s["id"] for s in data]
            data = data[ids.index(p["starting_after"]) + 1:]
        limit = p.get("limit", 10)
        return sdk_list(data[:limit], has_more=len(data) > limit)

    def subscription_cancel(self, sid, **params):
        self._record("subscription.cancel", {"id": sid, **params})
        if sid in self.fail_cancel:
            raise self.fail_cancel[sid]
        sub = next(s for s in self.subscriptions if s["id"] == sid)
        sub["status"] = "canceled"
        return sdk_object(stripe.Subscription, sub)

    def promotion_code_list(self, **params):
        p = self._record("promotion_code.list", params)
        data = [pc for pc in self.promotion_codes
                if pc["code"] == p["code"] and pc["active"] == p["active"]]
        return sdk_list(data[: p.get("limit", 10)])

    def install(self, monkeypatch):
        monkeypatch.setattr(stripe.Customer, "list", self.customer_list)
        monkeypatch.setattr(stripe.Customer, "create", self.customer_create)
        monkeypatch.setattr(stripe.EphemeralKey, "create",
                            self.ephemeral_key_create)
        monkeypatch.setattr(stripe.PaymentIntent, "create",
                            self.payment_intent_create)
        monkeypatch.setattr(stripe.Subscription, "create",
                            self.subscription_create)
        monkeypatch.setattr(stripe.Subscription, "list", self.subscription_list)
        monkeypatch.setattr(stripe.Subscription, "cancel",
                            self.subscription_cancel)
        monkeypatch.setattr(stripe.PromotionCode, "list",
                            self.promotion_code_list)
        return self


def sign_payload(body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Stripe-Signature header value using Stripe's v1 scheme."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + body
    mac = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def event_body(etype: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": etype,
        "data": {"object": obj},
    }).encode("utf-8")
