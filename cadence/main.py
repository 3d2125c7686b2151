"""Cadence entry point."""

import asyncio
import logging

from cadence.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    from cadence.cron import DispatchCron
    from cadence.server import DispatchServer
    from cadence.services import build_services

    services = build_services()
    server = DispatchServer(services)
    cron = DispatchCron(services) if settings.cron_enabled else None

    await server.start()
    if cron is not None:
        await cron.start()
    try:
        await asyncio.Event().wait()
    finally:
        if cron is not None:
            await cron.stop()
        await server.stop()


def main() -> None:
    """Start the dispatch server (and the in-process cron when enabled)."""
    logger.info("Starting Cadence dispatcher on %s:%d...", settings.server_host, settings.server_port)
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Cadence stopped")


if __name__ == "__main__":
    main()
