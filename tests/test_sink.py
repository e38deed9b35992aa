import asyncio

import pytest

from dex_monitor.messages import LogNotification
from dex_monitor.sink import DiscoverySink
from dex_monitor.topics import TopicSet
from tests.fakes import RAYDIUM, WALLET, WATCHED, FakeStore

NOTE = LogNotification(signature="5sig" * 16, slot=321, logs=("Program log: swap",))


def _sink(store):
    return DiscoverySink(store, TopicSet({"RAYDIUM": RAYDIUM}, {WATCHED}))


@pytest.mark.asyncio
async def test_candidates_exclude_watched_accounts():
    store = FakeStore()
    sink = _sink(store)

    records = sink.discover(NOTE, {WALLET, WATCHED}, "raydium_swap")
    await sink.drain(1)

    assert [r.wallet_address for r in records] == [WALLET]
    row = store.candidates[WALLET]
    assert row["discovery_source"] == "DEX_activity"
    assert row["discovery_type"] == "raydium_swap"
    assert row["initial_score"] == 50
    assert row["confidence"] == 0.5
    assert row["status"] == "pending"
    assert row["discovery_metadata"] == {"signature": NOTE.signature, "slot": 321}
    assert WATCHED not in store.candidates


@pytest.mark.asyncio
async def test_store_failure_is_logged_not_raised(caplog):
    sink = _sink(FakeStore(fail=True))
    sink.discover(NOTE, {WALLET})
    await sink.drain(1)
    assert sink.failures == 1
    assert "Store write failed" in caplog.text


@pytest.mark.asyncio
async def test_discover_does_not_wait_for_the_store():
    store = FakeStore()
    store.write_delay = 0.2
    sink = _sink(store)

    sink.discover(NOTE, {WALLET})

    assert sink.inflight == 1
    assert store.candidates == {}
    await sink.drain(1)
    assert WALLET in store.candidates
    assert sink.inflight == 0


@pytest.mark.asyncio
async def test_drain_cancels_writes_past_grace_period():
    store = FakeStore()
    store.write_delay = 10
    sink = _sink(store)
    sink.discover(NOTE, {WALLET})

    await sink.drain(0.05)
    await asyncio.sleep(0)

    assert sink.inflight == 0
    assert store.candidates == {}


@pytest.mark.asyncio
async def test_events_and_raw_rows_are_written():
    store = FakeStore()
    sink = _sink(store)
    sink.record_event("INFO", "stream connected (epoch 1)")
    sink.record_raw(NOTE)
    await sink.drain(1)
    assert store.logs == [("INFO", "stream connected (epoch 1)")]
    assert store.raw[NOTE.signature]["slot"] == 321


@pytest.mark.asyncio
async def test_writes_past_queue_limit_are_dropped(caplog):
    store = FakeStore()
    store.write_delay = 10
    sink = DiscoverySink(
        store, TopicSet({"RAYDIUM": RAYDIUM}), max_inflight=2, max_queued=5
    )

    for i in range(20):
        sink.record_event("INFO", f"event {i}")

    assert sink.inflight == 5
    assert sink.dropped == 15
    assert "Store write queue full" in caplog.text
    await sink.drain(0.05)
    assert sink.inflight == 0
