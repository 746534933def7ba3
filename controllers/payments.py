# controllers/payments.py
from __future__ import annotations
import stripe
from flask import Blueprint, request, jsonify, current_app

from services.payments.base import CancellationIncomplete
from services.payments.registry import get_provider
from services.payments.stripe_provider import stripe_error_message

payments_bp = Blueprint("payments", __name__)


def _body() -> dict:
    payload = request.get_json(force=True, silent=True)
    return payload if isinstance(payload, dict) else {}


def _str(payload: dict, key: str) -> str | None:
    v = payload.get(key)
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def _positive_int(v) -> int | None:
    # amounts are in the smallest currency unit; 9.99 is a client bug, not 9
    if isinstance(v, bool):
        return None
    if isinstance(v, float):
        if not v.is_integer():
            return None
        v = int(v)
    elif isinstance(v, str):
        v = v.strip()
        if not v.isdigit():
            return None
        v = int(v)
    elif not isinstance(v, int):
        return None
    return v if v > 0 else None


def _bad_request(message: str, **extra):
    return jsonify({"error": message, **extra}), 400


# ----- one-off payment (mobile PaymentSheet) -----

@payments_bp.post("/create-payment-intent")
def create_payment_intent():
    payload = _body()
    email = _str(payload, "customerEmail")
    if not email:
        return _bad_request("customerEmail is required")
    amount = _positive_int(payload.get("amount"))
    if amount is None:
        return _bad_request("amount must be a positive integer (smallest currency unit)")

    provider = get_provider()
    try:
        session = provider.create_payment_intent(
            email=email,
            amount=amount,
            currency=_str(payload, "currency"),
            price_id=_str(payload, "priceId"),
            external_id=_str(payload, "customerId"),
        )
    except stripe.StripeError as e:
        current_app.logger.exception("Error creating payment intent")
        return jsonify({"error": stripe_error_message(e)}), 500

    return jsonify({
        "paymentIntent": session.payment_intent_secret,
        "ephemeralKey": session.ephemeral_key,
        "customer": session.customer_id,
        "publishableKey": provider.settings.publishable_key,
    })


# ----- recurring -----

@payments_bp.post("/create-subscription")
def create_subscription():
    payload = _body()
    email = _str(payload, "customerEmail")
    price_id = _str(payload, "priceId")
    if not email or not price_id:
        return _bad_request("priceId and customerEmail are required")

    try:
        session = get_provider().create_subscription(
            email=email,
            price_id=price_id,
            external_id=_str(payload, "customerId"),
            promo_code=_str(payload, "promoCode"),
        )
    except stripe.StripeError as e:
        current_app.logger.exception("Error creating subscription")
        return jsonify({"error": stripe_error_message(e)}), 500

    return jsonify({
        "subscriptionId": session.subscription_id,
        # null for a fully discounted first invoice: nothing to confirm
        "paymentIntent": session.payment_intent_secret,
        "ephemeralKey": session.ephemeral_key,
        "customer": session.customer_id,
    })


@payments_bp.post("/cancel-subscription")
def cancel_subscription():
    customer_id = _str(_body(), "customerId")
    if not customer_id:
        return _bad_request("customerId is required")

    provider = get_provider()
    try:
        active = provider.list_active_subscription_ids(customer_id)
        if not active:
            return jsonify({"error": "No active subscriptions found"}), 404
        canceled = provider.cancel_subscriptions(active)
    except CancellationIncomplete as e:
        current_app.logger.error("Partial cancel for %s: %s", customer_id, e)
        return jsonify({
            "error": stripe_error_message(e.cause),
            "canceledSubscriptions": e.canceled,
        }), 500
    except stripe.StripeError as e:
        current_app.logger.exception("Error canceling subscription")
        return jsonify({"error": stripe_error_message(e)}), 500

    current_app.logger.info("Canceled %d subscription(s) for %s",
                            len(canceled), customer_id)
    return jsonify({"success": True, "canceledSubscriptions": canceled})


# ----- promo codes -----

@payments_bp.post("/validate-promo")
def validate_promo():
    code = _str(_body(), "promoCode")
    if not code:
        return _bad_request("promoCode is required", valid=False)

    try:
        promo = get_provider().find_promotion_code(code)
    except stripe.StripeError as e:
        current_app.logger.exception("Error validating promo code")
        return jsonify({"valid": False, "error": stripe_error_message(e)}), 500

    if promo is None:
        return jsonify({"valid": False})

    return jsonify({
        "valid": True,
        "promoCodeId": promo.id,
        "percentOff": promo.percent_off,
        "amountOff": promo.amount_off,
        "duration": promo.duration,
        "durationInMonths": promo.duration_in_months,
    })
