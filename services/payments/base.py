# services/payments/base.py
"""
Result types and errors shared by the payment routes and the Stripe provider.
Nothing here is persisted; every value is echoed straight back to the caller.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, List


@dataclass
class CheckoutSession:
    customer_id: str
    ephemeral_key: str
    # None when the processor produced nothing to confirm (fully discounted invoice)
    payment_intent_secret: Optional[str]
    subscription_id: Optional[str] = None


@dataclass
class PromoCode:
    id: str
    code: str
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    duration: Optional[str] = None
    duration_in_months: Optional[int] = None


class PaymentError(Exception):
    """Base class for errors raised by this service (not by Stripe itself)."""


class CancellationIncomplete(PaymentError):
    """
    Cancelling a customer's subscriptions stopped part way.
    `canceled` holds the ids that were already cancelled and stay cancelled;
    `cause` is the processor error that stopped the loop.
    """

    def __init__(self, cause: Exception, canceled: List[str] | None = None):
        super().__init__(str(cause))
        self.cause = cause
        self.canceled = list(canceled or [])

