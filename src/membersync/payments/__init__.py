"""Stripe webhook verification, event classification and billing reads."""

from membersync.payments.billing import SubscriptionSnapshot, fetch_subscription
from membersync.payments.events import Intent, classify_event
from membersync.payments.signature import verify_signature

__all__ = [
    "Intent",
    "SubscriptionSnapshot",
    "classify_event",
    "fetch_subscription",
    "verify_signature",
]
