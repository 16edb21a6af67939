"""HTTP surface: Stripe webhook, Ghost member sync, portal, stats, health."""

import asyncio
import hmac
import logging
from typing import Optional

from aiohttp import web

from membersync.context import AppContext
from membersync.errors import AuthError, MemberSyncError, ValidationError
from membersync.payments.portal import send_portal_link
from membersync.payments.signature import SIGNATURE_HEADER
from membersync.payments.sync import sync_customer
from membersync.payments.webhooks import error_response, handle_webhook
from membersync.stats.aggregator import run_stats_loop

logger = logging.getLogger(__name__)

CONTEXT_KEY = web.AppKey("ctx", AppContext)


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST /webhook (Stripe subscription events)."""
    ctx = request.app[CONTEXT_KEY]
    sig_header = request.headers.get(SIGNATURE_HEADER)
    payload = await request.read()
    return await handle_webhook(payload, sig_header, ctx)


async def customer_sync_endpoint(request: web.Request) -> web.Response:
    """Handle POST /customer-sync (Ghost member.edited webhook)."""
    ctx = request.app[CONTEXT_KEY]
    try:
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON body") from None
        await sync_customer(body, ctx.store)
    except MemberSyncError as e:
        logger.error(f"Customer sync failed: {e.message} {e.context}")
        return error_response(e)
    except Exception as e:
        logger.exception(f"Unexpected error in customer sync: {e}")
        return web.json_response({"error": "Internal error"}, status=500)
    return web.Response(status=200, text="OK")


async def portal_endpoint(request: web.Request) -> web.StreamResponse:
    """Handle GET /portal?email= (email a billing-portal link, then redirect)."""
    ctx = request.app[CONTEXT_KEY]
    email = request.query.get("email", "")
    try:
        await send_portal_link(email, ctx)
    except MemberSyncError as e:
        logger.error(f"Portal request failed: {e.message} {e.context}")
        return error_response(e)
    except Exception as e:
        logger.exception(f"Unexpected error in portal request: {e}")
        return web.json_response({"error": "Internal error"}, status=500)
    raise web.HTTPFound(ctx.config.ghost_membership_page)


async def stats_endpoint(request: web.Request) -> web.Response:
    """Handle GET /stats?token= (latest stats snapshot)."""
    ctx = request.app[CONTEXT_KEY]
    expected = ctx.config.stats_token.get_secret_value()
    if expected:
        supplied = request.query.get("token", "")
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Rejected stats request with wrong token")
            return error_response(AuthError("Wrong token"))
    return web.json_response(ctx.stats.current.to_dict())


async def health_endpoint(request: web.Request) -> web.Response:
    """Handle GET /health (liveness)."""
    return web.Response(status=204)


def create_app(ctx: AppContext) -> web.Application:
    """Create aiohttp application with all routes bound to the context."""
    app = web.Application()
    app[CONTEXT_KEY] = ctx

    app.router.add_post("/webhook", webhook_endpoint)
    app.router.add_post("/", webhook_endpoint)
    app.router.add_post("/customer-sync", customer_sync_endpoint)
    app.router.add_post("/stripe-customer-update", customer_sync_endpoint)
    app.router.add_get("/portal", portal_endpoint)
    app.router.add_get("/stats", stats_endpoint)
    app.router.add_get("/health", health_endpoint)
    app.router.add_get("/status", health_endpoint)

    return app


async def run_server(
    ctx: AppContext,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Serve HTTP and refresh stats in the background until shutdown.

    Args:
        ctx: Fully initialised context (initial stats sync already done)
        shutdown_event: Optional event to signal shutdown
    """
    config = ctx.config
    app = create_app(ctx)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, "0.0.0.0", config.port)
    await site.start()

    logger.info(f"Server listening on port {config.port}")

    stats_task = asyncio.create_task(
        run_stats_loop(ctx.stats, config.stats_file, config.stats_interval_seconds),
        name="stats-sync",
    )

    try:
        if shutdown_event:
            await shutdown_event.wait()
        else:
            await asyncio.Event().wait()
    finally:
        logger.info("Shutting down server...")
        stats_task.cancel()
        try:
            await stats_task
        except asyncio.CancelledError:
            pass
        await runner.cleanup()
