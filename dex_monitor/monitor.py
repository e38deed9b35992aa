"""
Wires the stream connection, subscription manager, dispatcher and discovery
sink together and runs the two periodic jobs (watched-wallet refresh and
status logging).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import websockets

from dex_monitor.config import Settings
from dex_monitor.connection import ReconnectExhaustedError, StreamConnection
from dex_monitor.db import Store
from dex_monitor.dedup import DedupCache
from dex_monitor.dispatcher import MessageDispatcher
from dex_monitor.sink import DiscoverySink
from dex_monitor.status import StatusReporter
from dex_monitor.subscriptions import SubscriptionManager
from dex_monitor.topics import DEX_PROGRAM_IDS, TopicSet

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: Store


class Monitor:
    def __init__(self, ctx: AppContext, *, connector=websockets.connect, programs=DEX_PROGRAM_IDS):
        s = ctx.settings
        self.ctx = ctx
        self.done = asyncio.Event()
        self.exit_code = 0

        self.topics = TopicSet(programs)
        self.dedup = DedupCache(s.DEDUP_CAPACITY)
        self.sink = DiscoverySink(
            ctx.store,
            self.topics,
            initial_score=s.INITIAL_SCORE,
            confidence=s.INITIAL_CONFIDENCE,
            max_inflight=s.MAX_INFLIGHT_WRITES,
            max_queued=s.MAX_QUEUED_WRITES,
        )
        self.connection = StreamConnection(
            s.STREAM_WSS,
            on_open=self._on_open,
            on_frame=self._on_frame,
            on_close=self._on_close,
            on_fatal=self._on_fatal,
            max_attempts=s.RECONNECT_MAX_ATTEMPTS,
            initial_delay_ms=s.RECONNECT_DELAY_MS,
            max_delay_ms=s.RECONNECT_MAX_DELAY_MS,
            multiplier=s.RECONNECT_MULTIPLIER,
            ping_interval=s.PING_INTERVAL_SEC,
            connector=connector,
        )
        self.subscriptions = SubscriptionManager(self.topics, self.connection, s.COMMITMENT)
        self.dispatcher = MessageDispatcher(
            self.subscriptions,
            self.dedup,
            self.topics,
            self.sink,
            store_raw=s.STORE_RAW_TRANSACTIONS,
        )
        self.reporter = StatusReporter(self.connection, self.subscriptions, self.dedup, self.sink)
        self._timers: list[asyncio.Task] = []

    # ─── connection callbacks ─────────────────────────────────────────────
    async def _on_open(self, epoch: int) -> None:
        self.sink.record_event("INFO", f"stream connected (epoch {epoch})")
        await self.subscriptions.on_connected(epoch)

    def _on_frame(self, raw) -> None:
        self.dispatcher.on_frame(raw)

    def _on_close(self) -> None:
        self.subscriptions.on_disconnected()
        self.sink.record_event("WARN", "stream disconnected")

    def _on_fatal(self, exc: ReconnectExhaustedError) -> None:
        logger.critical("Stream unrecoverable: %s", exc)
        self.exit_code = 1
        self.done.set()

    # ─── periodic jobs ────────────────────────────────────────────────────
    async def refresh_tracked_wallets(self) -> int:
        """Reload watched accounts; a store failure keeps the previous set."""
        logger.info("Refreshing tracked wallets...")
        try:
            wallets = await self.ctx.store.load_watched_accounts()
        except Exception as exc:
            logger.error("Failed to load tracked wallets: %r", exc)
            return 0
        logger.info("Loaded %d tracked wallets", len(wallets))
        return await self.subscriptions.refresh_watched_accounts(wallets)

    def log_status(self) -> dict:
        status = self.reporter.snapshot()
        logger.info("Monitor status: %s", status)
        return status

    async def _every(self, interval: float, job: Callable) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = job()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Periodic job %s failed", getattr(job, "__name__", job))

    # ─── lifecycle ────────────────────────────────────────────────────────
    async def start(self) -> None:
        s = self.ctx.settings
        await self.refresh_tracked_wallets()
        await self.connection.connect()
        self._timers = [
            asyncio.create_task(self._every(s.WALLET_REFRESH_SEC, self.refresh_tracked_wallets)),
            asyncio.create_task(self._every(s.STATUS_LOG_SEC, self.log_status)),
        ]
        logger.info("Monitor service started; watching %d programs", len(self.topics.programs))

    async def stop(self) -> None:
        logger.info("Shutting down monitor service...")
        for t in self._timers:
            t.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []
        await self.connection.disconnect()
        await self.sink.drain(self.ctx.settings.SHUTDOWN_GRACE_SEC)
