"""Read-only counters for the health endpoint and the periodic status log."""

from dex_monitor.connection import StreamConnection
from dex_monitor.dedup import DedupCache
from dex_monitor.sink import DiscoverySink
from dex_monitor.subscriptions import SubscriptionManager


class StatusReporter:
    def __init__(
        self,
        connection: StreamConnection,
        subscriptions: SubscriptionManager,
        dedup: DedupCache,
        sink: DiscoverySink,
    ):
        self.connection = connection
        self.subscriptions = subscriptions
        self.dedup = dedup
        self.sink = sink

    def snapshot(self) -> dict:
        return {
            "state": self.connection.state.value,
            "connected": self.connection.connected,
            "tracked_wallets": len(self.subscriptions.topics.watched),
            "subscription_ids": self.subscriptions.subscription_ids,
            "pending_subscriptions": len(self.subscriptions.pending),
            "reconnect_attempts": self.connection.reconnect_attempts,
            "processed_transactions": len(self.dedup),
            "inflight_writes": self.sink.inflight,
            "dropped_writes": self.sink.dropped,
        }
