"""Subscription lifecycle event classification."""

import logging
from enum import Enum

from membersync.errors import UnsupportedEventError

logger = logging.getLogger(__name__)

EVENT_PREFIX = "customer.subscription."


class EventType(str, Enum):
    """Subscription lifecycle event types handled by the webhook."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class Intent(str, Enum):
    """Normalised effect of a billing event on membership."""

    ACTIVATE = "activate"
    UPDATE = "update"
    DEACTIVATE = "deactivate"
    IGNORE = "ignore"


def parse_event_type(raw_type: str) -> EventType:
    """Map a Stripe event type ("customer.subscription.created") to EventType.

    Raises:
        UnsupportedEventError: For any other event type
    """
    if not isinstance(raw_type, str) or not raw_type.startswith(EVENT_PREFIX):
        raise UnsupportedEventError("Invalid Stripe webhook type", type=raw_type)
    try:
        return EventType(raw_type[len(EVENT_PREFIX):])
    except ValueError:
        raise UnsupportedEventError("Invalid Stripe webhook type", type=raw_type) from None


def classify_event(
    event_type: EventType | str,
    status: str,
    cancel_at_period_end: bool,
) -> Intent:
    """Derive the lifecycle intent of an event.

    Rules, in order:
        1. Unknown type -> UnsupportedEventError
        2. created/updated with an active subscription -> ACTIVATE
        3. deleted -> DEACTIVATE
        4. anything else -> IGNORE

    ACTIVATE covers both creation and re-sync; the reconciler decides which
    from the membership store's current state. cancel_at_period_end does not
    change the intent, it only shapes the labels applied on ACTIVATE.
    """
    if not isinstance(event_type, EventType):
        try:
            event_type = EventType(event_type)
        except ValueError:
            event_type = parse_event_type(event_type)

    if event_type in (EventType.CREATED, EventType.UPDATED) and status == "active":
        intent = Intent.ACTIVATE
    elif event_type == EventType.DELETED:
        intent = Intent.DEACTIVATE
    else:
        intent = Intent.IGNORE

    logger.debug(
        f"Classified {event_type.value} (status={status}, "
        f"cancel_at_period_end={cancel_at_period_end}) as {intent.value}"
    )
    return intent
