"""
Per-topic ``logsSubscribe`` bookkeeping.

Every subscription is scoped to a connection epoch: request ids restart at 1
on each new connection, and pending or confirmed entries never survive a
disconnect. Acks carrying a request id from an older epoch are ignored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from dex_monitor.connection import ConnectionState, NotConnectedError
from dex_monitor.messages import (
    SubscriptionAck,
    SubscriptionError,
    build_subscribe_request,
)
from dex_monitor.topics import Topic, TopicSet

logger = logging.getLogger(__name__)


class Transport(Protocol):
    state: ConnectionState

    async def send(self, payload: dict, epoch: int | None = None) -> None: ...


@dataclass(frozen=True)
class PendingSubscription:
    topic: Topic
    epoch: int


class SubscriptionManager:
    def __init__(self, topics: TopicSet, transport: Transport, commitment: str = "finalized"):
        self.topics = topics
        self.commitment = commitment
        self._transport = transport
        self._lock = asyncio.Lock()
        self.epoch = 0
        self._next_id = 1
        self.pending: dict[int, PendingSubscription] = {}
        self.confirmed: dict[Topic, int] = {}

    @property
    def subscription_ids(self) -> list[int]:
        return list(self.confirmed.values())

    def reset(self, epoch: int | None = None) -> None:
        self.pending.clear()
        self.confirmed.clear()
        self._next_id = 1
        if epoch is not None:
            self.epoch = epoch

    async def on_connected(self, epoch: int) -> None:
        self.reset(epoch)
        await self.subscribe_all()

    def on_disconnected(self) -> None:
        if self.pending or self.confirmed:
            logger.info(
                "Dropping %d confirmed and %d pending subscriptions",
                len(self.confirmed),
                len(self.pending),
            )
        self.reset()

    async def subscribe_all(self) -> int:
        """Send one subscribe request per topic; returns how many went out."""
        async with self._lock:
            epoch = self.epoch
            topics = self.topics.ordered()
            logger.info(
                "Subscribing to %d topics (one per request due to provider limits)...",
                len(topics),
            )
            sent = 0
            for topic in topics:
                if self.epoch != epoch:
                    logger.warning(
                        "Connection changed mid-subscribe; abandoning %d topics",
                        len(topics) - sent,
                    )
                    break
                rid = self._next_id
                self._next_id += 1
                self.pending[rid] = PendingSubscription(topic, epoch)
                try:
                    await self._transport.send(
                        build_subscribe_request(rid, topic.address, self.commitment),
                        epoch=epoch,
                    )
                except NotConnectedError as exc:
                    self.pending.pop(rid, None)
                    logger.error("Cannot subscribe, stream not connected: %s", exc)
                    break
                logger.debug("Subscribe request %d -> %s", rid, self.topics.label(topic))
                sent += 1
            logger.info("Sent %d subscription requests", sent)
            return sent

    async def refresh_watched_accounts(self, accounts: Iterable[str]) -> int:
        self.topics.replace_watched(accounts)
        if self._transport.state is not ConnectionState.CONNECTED:
            logger.info(
                "Stream not connected; %d watched accounts will subscribe on next connect",
                len(self.topics.watched),
            )
            return 0
        return await self.subscribe_all()

    def handle_ack(self, ack: SubscriptionAck) -> Topic | None:
        entry = self.pending.pop(ack.request_id, None)
        if entry is None or entry.epoch != self.epoch:
            logger.warning(
                "Ack for unknown request %s (subscription %s)",
                ack.request_id,
                ack.subscription_id,
            )
            return None
        self.confirmed[entry.topic] = ack.subscription_id
        logger.info(
            "Subscribed to logs. Request %s: subscription %s for %s",
            ack.request_id,
            ack.subscription_id,
            self.topics.label(entry.topic),
        )
        return entry.topic

    def handle_error(self, err: SubscriptionError) -> Topic | None:
        entry = self.pending.pop(err.request_id, None)
        label = self.topics.label(entry.topic) if entry else "unknown topic"
        logger.error("Subscription %s failed for %s: %s", err.request_id, label, err.error)
        return entry.topic if entry else None
