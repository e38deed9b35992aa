"""
Routes decoded stream frames: subscription acks and errors go to the
subscription manager; log notifications run through dedup, classification,
address extraction and discovery.
"""

import logging

from dex_monitor.classifier import DEX_KEYWORDS, is_relevant, matched_program
from dex_monitor.debug import dbg
from dex_monitor.dedup import DedupCache
from dex_monitor.extractor import extract_wallet_addresses
from dex_monitor.messages import (
    FrameDecodeError,
    LogNotification,
    SubscriptionAck,
    SubscriptionError,
    decode_frame,
)
from dex_monitor.sink import DiscoverySink
from dex_monitor.subscriptions import SubscriptionManager
from dex_monitor.topics import TopicSet

logger = logging.getLogger(__name__)


class MessageDispatcher:
    def __init__(
        self,
        subscriptions: SubscriptionManager,
        dedup: DedupCache,
        topics: TopicSet,
        sink: DiscoverySink,
        *,
        keywords=DEX_KEYWORDS,
        store_raw: bool = False,
    ):
        self.subscriptions = subscriptions
        self.dedup = dedup
        self.topics = topics
        self.sink = sink
        self.keywords = tuple(keywords)
        self.store_raw = store_raw

    def on_frame(self, raw: str | bytes) -> None:
        """Never raises: one bad frame must not take down the stream."""
        try:
            msg = decode_frame(raw)
            if isinstance(msg, LogNotification):
                self.handle_notification(msg)
                return
            # notifications are too chatty to log at INFO
            logger.info("Stream message received: %s", msg.raw)
            if isinstance(msg, SubscriptionAck):
                self.subscriptions.handle_ack(msg)
            elif isinstance(msg, SubscriptionError):
                self.subscriptions.handle_error(msg)
                self.sink.record_event(
                    "ERROR", f"subscription {msg.request_id} failed: {msg.error}"
                )
            else:
                logger.info("Unrecognized stream message ignored")
        except FrameDecodeError as exc:
            logger.error("Error parsing stream message: %s", str(exc)[:200])
        except Exception:
            logger.exception("Error handling stream message")

    def handle_notification(self, note: LogNotification) -> bool:
        """True when the notification was new and DEX-relevant."""
        if not note.signature:
            logger.warning("Unexpected log entry structure: %s", note.raw)
            return False
        if not self.dedup.add_if_absent(note.signature):
            return False

        dbg(f"TX {note.signature[:16]}… slot={note.slot} logs={len(note.logs)}")
        if not is_relevant(note.logs, self.topics.program_ids, self.keywords):
            return False

        logger.info("DEX transaction detected: %s", note.signature)
        if self.store_raw:
            self.sink.record_raw(note)

        dex = matched_program(note.logs, self.topics.program_table)
        kind = f"{dex.lower()}_swap" if dex else "keyword_match"
        self.sink.discover(note, extract_wallet_addresses(note.logs), kind)
        return True
