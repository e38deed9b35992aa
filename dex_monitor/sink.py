"""
Best-effort writes to the store: candidate wallets, optional raw
transactions and lifecycle log entries. Each write runs as its own task so
the stream reader never waits on the database.
"""

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from dex_monitor.db import Store
from dex_monitor.debug import dbg
from dex_monitor.messages import LogNotification
from dex_monitor.topics import TopicSet

logger = logging.getLogger(__name__)

DISCOVERY_SOURCE = "DEX_activity"


@dataclass(frozen=True)
class CandidateRecord:
    wallet_address: str
    signature: str
    slot: int | None
    discovery_type: str
    initial_score: int
    confidence: float
    discovery_source: str = DISCOVERY_SOURCE
    discovered_at: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    def as_row(self) -> dict:
        return {
            "wallet_address": self.wallet_address,
            "discovery_timestamp": self.discovered_at,
            "discovery_source": self.discovery_source,
            "discovery_type": self.discovery_type,
            "initial_score": self.initial_score,
            "confidence": self.confidence,
            "status": "pending",
            "discovery_metadata": {"signature": self.signature, "slot": self.slot},
        }


class DiscoverySink:
    def __init__(
        self,
        store: Store,
        topics: TopicSet,
        *,
        initial_score: int = 50,
        confidence: float = 0.5,
        max_inflight: int = 50,
        max_queued: int = 1000,
    ):
        self.store = store
        self.topics = topics
        self.initial_score = initial_score
        self.confidence = confidence
        self._slots = asyncio.Semaphore(max_inflight)
        self.max_queued = max_queued
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0
        self.dropped = 0

    @property
    def inflight(self) -> int:
        return len(self._tasks)

    def discover(
        self,
        note: LogNotification,
        addresses: Iterable[str],
        discovery_type: str = "keyword_match",
    ) -> list[CandidateRecord]:
        """Queue an upsert for every address that is not already watched."""
        watched = self.topics.watched
        records = [
            CandidateRecord(
                wallet_address=addr,
                signature=note.signature,
                slot=note.slot,
                discovery_type=discovery_type,
                initial_score=self.initial_score,
                confidence=self.confidence,
            )
            for addr in sorted(addresses)
            if addr not in watched
        ]
        if records:
            logger.info(
                "Found %d candidate wallets in %s…", len(records), note.signature[:16]
            )
        for rec in records:
            self._spawn(
                f"candidate {rec.wallet_address[:8]}…",
                self.store.upsert_candidate_wallet,
                rec.as_row(),
            )
        return records

    def record_raw(self, note: LogNotification) -> None:
        row = {
            "tx_signature": note.signature,
            "slot": note.slot,
            "logs": list(note.logs),
            "err": note.err,
            "processed": False,
        }
        self._spawn(f"raw tx {note.signature[:16]}…", self.store.upsert_raw_transaction, row)

    def record_event(self, level: str, msg: str) -> None:
        self._spawn("log entry", self.store.log, level, msg)

    def _spawn(self, label: str, fn: Callable[..., Awaitable[None]], *args) -> None:
        if len(self._tasks) >= self.max_queued:
            self.dropped += 1
            logger.warning(
                "Store write queue full (%d), dropping %s", self.max_queued, label
            )
            return
        task = asyncio.create_task(self._write(label, fn, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write(self, label: str, fn: Callable[..., Awaitable[None]], *args) -> None:
        async with self._slots:
            try:
                await fn(*args)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failures += 1
                logger.warning("Store write failed (%s): %r", label, exc)
                return
        dbg(f"STORE OK {label}")

    async def drain(self, grace: float) -> None:
        """Give in-flight writes up to ``grace`` seconds, then cancel the rest."""
        pending = set(self._tasks)
        if not pending:
            return
        logger.info("Waiting up to %.1fs for %d store writes", grace, len(pending))
        _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Cancelled %d unfinished store writes", len(still_running))
