"""Stripe webhook handler and event processing."""

import json
import logging
from typing import Any, Optional

from aiohttp import web

from membersync.context import AppContext
from membersync.errors import MemberSyncError, ValidationError
from membersync.members.reconciler import Action, reconcile
from membersync.payments.billing import fetch_subscription
from membersync.payments.events import classify_event, parse_event_type
from membersync.payments.signature import verify_signature

logger = logging.getLogger(__name__)

_ACTION_STATUS = {
    Action.CREATED: 201,
    Action.DELETED: 201,
    Action.UPDATED: 200,
    Action.NOOP: 200,
}


def error_response(error: MemberSyncError) -> web.Response:
    """Convert a domain error into a JSON error response."""
    return web.json_response({"error": error.message}, status=error.status_code)


def _subscription_id(event: Any) -> str:
    try:
        subscription_id = event["data"]["object"]["id"]
    except (KeyError, TypeError):
        subscription_id = None
    if not isinstance(subscription_id, str) or not subscription_id:
        raise ValidationError("Webhook event has no subscription id")
    return subscription_id


async def process_event(payload: bytes, sig_header: Optional[str], ctx: AppContext) -> Action:
    """Authenticate, classify and reconcile one webhook delivery.

    Raises:
        AuthError: Bad or missing signature (raised before any remote call)
        ValidationError: Malformed body, unsupported type or wrong product
        UpstreamError: Stripe or Ghost call failed
        InvariantViolationError: Several members share the customer's email
    """
    config = ctx.config
    verify_signature(
        payload,
        sig_header,
        config.stripe_webhook_signing_secret.get_secret_value(),
        tolerance_seconds=config.stripe_webhook_tolerance_seconds,
    )

    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationError("Invalid webhook payload") from None
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")

    event_type = parse_event_type(event.get("type"))
    subscription_id = _subscription_id(event)
    logger.info(f"Received webhook: {event.get('type')} ({subscription_id})")

    snapshot = await fetch_subscription(subscription_id)
    intent = classify_event(event_type, snapshot.status, snapshot.cancel_at_period_end)

    result = await reconcile(
        intent,
        snapshot,
        ctx.store,
        config.stripe_product_id,
        locks=ctx.locks,
    )
    return result.action


async def handle_webhook(
    payload: bytes,
    sig_header: Optional[str],
    ctx: AppContext,
) -> web.Response:
    """Handle and verify Stripe webhook events.

    Returns:
        201 for create/delete, 200 for update or no-op, 400 for unsupported
        or foreign events, 401 for signature failures, 500 otherwise
        (so Stripe retries the delivery)
    """
    try:
        action = await process_event(payload, sig_header, ctx)
    except MemberSyncError as e:
        if e.status_code >= 500:
            logger.error(f"Error processing webhook: {e.message} {e.context}")
        else:
            logger.warning(f"Rejected webhook: {e.message} {e.context}")
        return error_response(e)
    except Exception as e:
        logger.exception(f"Unexpected error processing webhook: {e}")
        return web.json_response({"error": "Internal error"}, status=500)

    return web.Response(status=_ACTION_STATUS[action], text=action.value)
