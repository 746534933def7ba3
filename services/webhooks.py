# services/webhooks.py
"""
Dispatch for verified Stripe events.

Every handler only logs for now. This is where entitlement updates belong
once the service has a data store; until then nothing is persisted.
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Dict

from services.metrics import WEBHOOK_EVENTS
from services.payments.stripe_provider import as_dict

log = logging.getLogger(__name__)


def _payment_succeeded(obj: Dict[str, Any]) -> None:
    log.info("Payment succeeded: %s", obj.get("id"))


def _subscription_changed(obj: Dict[str, Any]) -> None:
    log.info("Subscription updated: %s %s", obj.get("id"), obj.get("status"))


def _subscription_deleted(obj: Dict[str, Any]) -> None:
    log.info("Subscription canceled: %s", obj.get("id"))


HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    "payment_intent.succeeded": _payment_succeeded,
    "customer.subscription.created": _subscription_changed,
    "customer.subscription.updated": _subscription_changed,
    "customer.subscription.deleted": _subscription_deleted,
}


def dispatch_event(event) -> bool:
    """
    Route a verified event to its handler. Returns False when the type has no
    handler (logged and otherwise ignored).
    """
    event = as_dict(event)
    etype = event["type"]
    obj = (event.get("data") or {}).get("object") or {}
    handler = HANDLERS.get(etype)
    if handler is None:
        log.info("Unhandled event type: %s", etype)
        WEBHOOK_EVENTS.labels(provider="stripe", event=etype,
                              outcome="unhandled").inc()
        return False
    handler(obj)
    WEBHOOK_EVENTS.labels(provider="stripe", event=etype, outcome="ok").inc()
    return True
