"""Stripe reads and writes used by the webhook, portal, stats and backfill.

All calls go through the Stripe SDK, which owns transport, authentication
and the retry policy for transient failures (connection errors, 409, 5xx):
``stripe.max_network_retries`` is set from config in configure_stripe().
Calls are blocking and are pushed onto a worker thread so they never stall
the event loop. Any Stripe failure surfaces as UpstreamError.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional, TypeVar

import stripe

from membersync.config.settings import AppConfig
from membersync.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

T = TypeVar("T")


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Authoritative subscription/customer detail fetched per event."""

    subscription_id: str
    customer_id: str
    customer_email: str
    customer_name: str
    product_id: str
    status: str
    cancel_at_period_end: bool
    period_start: Optional[date]
    period_end: Optional[date]


def configure_stripe(config: AppConfig) -> None:
    """Point the Stripe SDK at the configured API with the restricted key."""
    stripe.api_key = config.stripe_restricted_api_key.get_secret_value()
    stripe.api_base = config.stripe_api_base.rstrip("/")
    stripe.max_network_retries = config.stripe_max_network_retries
    logger.debug(
        f"Stripe client configured: base={stripe.api_base}, "
        f"max_network_retries={stripe.max_network_retries}"
    )


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _first_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data", [])
    return items[0] if items else None


def _id_of(value: Any) -> str:
    """Return the id of an expanded object, or the value when it is an id."""
    if isinstance(value, str):
        return value
    return _field(value, "id", "")


def _to_date(timestamp: Optional[int]) -> Optional[date]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).date()


def subscription_product_id(subscription: Any) -> str:
    """Product id from the subscription plan, falling back to the first item."""
    plan = _field(subscription, "plan")
    if plan is not None:
        return _id_of(_field(plan, "product", ""))
    price = _field(_first_item(subscription), "price")
    return _id_of(_field(price, "product", ""))


def subscription_amount(subscription: Any) -> int:
    """Recurring plan amount in minor units; quantity is not applied."""
    plan = _field(subscription, "plan")
    if plan is not None:
        return int(_field(plan, "amount", 0))
    price = _field(_first_item(subscription), "price")
    return int(_field(price, "unit_amount", 0))


def subscription_period(subscription: Any) -> tuple[Optional[date], Optional[date]]:
    """Current period start/end dates (UTC).

    Newer API versions moved the period onto subscription items.
    """
    start = _field(subscription, "current_period_start")
    end = _field(subscription, "current_period_end")
    if start is None or end is None:
        item = _first_item(subscription)
        start = _field(item, "current_period_start", start)
        end = _field(item, "current_period_end", end)
    return _to_date(start), _to_date(end)


def snapshot_from_subscription(subscription: Any) -> SubscriptionSnapshot:
    """Build a SubscriptionSnapshot from a subscription with customer expanded.

    Raises:
        ValidationError: If the customer was not expanded or has no email
    """
    customer = _field(subscription, "customer")
    if isinstance(customer, str) or customer is None:
        raise ValidationError(
            "Subscription customer is not expanded",
            subscription=_field(subscription, "id"),
        )

    email = _field(customer, "email", "")
    if not email:
        raise ValidationError(
            "Subscription customer has no email",
            subscription=_field(subscription, "id"),
        )

    period_start, period_end = subscription_period(subscription)

    return SubscriptionSnapshot(
        subscription_id=_field(subscription, "id", ""),
        customer_id=_field(customer, "id", ""),
        customer_email=email,
        customer_name=_field(customer, "name", ""),
        product_id=subscription_product_id(subscription),
        status=_field(subscription, "status", ""),
        cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end", False)),
        period_start=period_start,
        period_end=period_end,
    )


async def _call(label: str, func: Callable[..., T], *args, **kwargs) -> T:
    """Run a blocking Stripe call in a thread, wrapping SDK errors."""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except stripe.StripeError as e:
        status = getattr(e, "http_status", None)
        logger.error(
            f"Stripe call {label} failed: status={status}, "
            f"code={getattr(e, 'code', None)}, message={getattr(e, 'user_message', None) or e}"
        )
        raise UpstreamError(f"Stripe call {label} failed", status=status) from e


async def fetch_subscription(subscription_id: str) -> SubscriptionSnapshot:
    """Retrieve a subscription with its customer expanded.

    Raises:
        UpstreamError: On Stripe errors (after the SDK's own retries)
        ValidationError: If the payload lacks customer detail
    """
    subscription = await _call(
        f"retrieve subscription {subscription_id}",
        stripe.Subscription.retrieve,
        subscription_id,
        expand=["customer"],
    )
    return snapshot_from_subscription(subscription)


async def iter_active_subscription_pages(
    page_size: int = PAGE_SIZE,
) -> AsyncIterator[list[Any]]:
    """Yield pages of active subscriptions until Stripe reports no more.

    Termination follows ``has_more`` only; an empty page with has_more set
    is followed by another request from the same cursor. Each iteration
    starts a fresh walk from the beginning of the collection.
    """
    starting_after: Optional[str] = None
    has_more = True

    while has_more:
        params: dict[str, Any] = {"status": "active", "limit": page_size}
        if starting_after:
            params["starting_after"] = starting_after

        logger.debug(f"Fetching active subscriptions page (starting_after={starting_after})")
        page = await _call("list active subscriptions", stripe.Subscription.list, **params)

        data = list(_field(page, "data", []))
        has_more = bool(_field(page, "has_more", False))
        if data:
            starting_after = _field(data[-1], "id")

        yield data


async def update_customer(
    customer_id: str,
    *,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> Any:
    """Push contact details back to a Stripe customer."""
    fields = {}
    if email is not None:
        fields["email"] = email
    if name is not None:
        fields["name"] = name

    customer = await _call(
        f"update customer {customer_id}",
        stripe.Customer.modify,
        customer_id,
        **fields,
    )
    logger.debug(f"Stripe customer {customer_id} updated: {sorted(fields)}")
    return customer


async def create_portal_session(customer_id: str) -> str:
    """Open a billing-portal session and return its URL."""
    session = await _call(
        f"create portal session for {customer_id}",
        stripe.billing_portal.Session.create,
        customer=customer_id,
    )
    return _field(session, "url", "")


async def find_customers_by_email(email: str) -> list[Any]:
    """List Stripe customers with an exact email match."""
    page = await _call("list customers", stripe.Customer.list, email=email)
    return list(_field(page, "data", []))


async def fetch_customer_subscriptions(customer_id: str) -> list[Any]:
    """List the customer's non-cancelled subscriptions."""
    page = await _call(
        f"list subscriptions for {customer_id}",
        stripe.Subscription.list,
        customer=customer_id,
    )
    return list(_field(page, "data", []))
