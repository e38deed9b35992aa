"""App entry-point. Loads settings, prepares the store, starts the health
endpoint and the stream monitor, and waits for a signal or a fatal error."""

import asyncio
import logging
import signal
import sys
import threading

import uvicorn
from sqlalchemy.exc import SQLAlchemyError

from dex_monitor.config import ConfigError, load_settings
from dex_monitor import debug
from dex_monitor.db import Store
from dex_monitor.health import create_app
from dex_monitor.monitor import AppContext, Monitor

logger = logging.getLogger("dex_monitor")


async def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        return 1
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())
    debug.configure(settings.DEBUG)

    logger.info("Starting DEX activity monitor")
    logger.info(
        "Configuration: stream=%s store=%s",
        "set" if settings.STREAM_WSS else "missing",
        settings.DB_DSN.split("://", 1)[0],
    )

    store = Store.from_settings(settings)
    try:
        await store.init()
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
        logger.error("Could not prepare store tables, continuing: %r", exc)

    monitor = Monitor(AppContext(settings, store))
    loop = asyncio.get_running_loop()

    def _exit_handler(signame: str) -> None:
        """Exit cleanly on SIGINT / SIGTERM."""
        logger.info("Received %s, shutting down...", signame)
        monitor.done.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _exit_handler, sig.name)

    # Run health endpoint in a daemon thread so process can exit immediately
    thread = threading.Thread(
        target=uvicorn.run,
        kwargs={
            "app": create_app(monitor.reporter),
            "host": settings.HEALTH_HOST,
            "port": settings.HEALTH_PORT,
            "log_level": "warning",
        },
        daemon=True,
    )
    thread.start()
    logger.info("Health check server listening on %s:%d", settings.HEALTH_HOST, settings.HEALTH_PORT)

    try:
        await monitor.start()
        await monitor.done.wait()
    finally:
        await monitor.stop()
        await store.close()
    return monitor.exit_code


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
