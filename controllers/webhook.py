# controllers/webhook.py
from __future__ import annotations
import stripe
from flask import Blueprint, request, jsonify, current_app

from services.metrics import WEBHOOK_EVENTS
from services.payments.registry import get_provider
from services.webhooks import dispatch_event

webhook_bp = Blueprint("webhook", __name__)


# ----- provider webhook (no auth, signature-verified) -----

@webhook_bp.post("/webhook")
def webhook():
    """
    Stripe signs the exact bytes it sends, so the body is read raw and never
    re-serialised before verification. Stripe keeps retrying until it gets a
    2xx, so {received: true} is only returned after the signature checks out.
    """
    provider = get_provider()
    if not provider.settings.webhook_secret:
        current_app.logger.warning(
            "STRIPE_WEBHOOK_SECRET not set - rejecting webhook")
        WEBHOOK_EVENTS.labels(provider=provider.name, event="unknown",
                              outcome="rejected").inc()
        return jsonify({"error": "Webhook Error: endpoint secret not configured"}), 400

    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")
    try:
        event = provider.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        current_app.logger.error(
            "Webhook signature verification failed: %s", e)
        WEBHOOK_EVENTS.labels(provider=provider.name, event="unknown",
                              outcome="rejected").inc()
        return jsonify({"error": f"Webhook Error: {e}"}), 400

    dispatch_event(event)
    return jsonify({"received": True})
