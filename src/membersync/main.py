"""Application entry point."""

import asyncio
import logging
import signal
import sys

from membersync.config import get_config
from membersync.context import AppContext, build_context
from membersync.payments.server import run_server
from membersync.stats.aggregator import sync_stats

logger = logging.getLogger(__name__)


async def boot() -> AppContext:
    """
    Boot sequence: load config → build context → initial stats sync.

    Must finish before the server accepts traffic.

    Raises:
        SystemExit: On configuration, template or initial sync errors
    """
    try:
        config = get_config()
        logger.info(f"Configuration loaded: product={config.stripe_product_id}")

        ctx = build_context(config)
        logger.info("Portal template loaded")

        await sync_stats(ctx.stats, config.stats_file)
        return ctx

    except Exception as e:
        logger.error(f"Boot sequence failed: {e}", exc_info=True)
        raise SystemExit(1) from e


async def serve() -> None:
    ctx = await boot()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    await run_server(ctx, shutdown_event=shutdown_event)


def main() -> None:
    """Main entry point with logging configuration."""
    try:
        config = get_config()
    except Exception as e:
        logging.basicConfig(level=logging.INFO)
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=config.effective_log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)

    logging.info("Server stopped")


if __name__ == "__main__":
    main()
