import asyncio

import pytest

from dex_monitor.connection import (
    ConnectionState,
    NotConnectedError,
    ReconnectExhaustedError,
    StreamConnection,
    next_backoff,
)
from tests.fakes import FakeConnector, FakeSocket, settle


def _conn(connector, **kwargs):
    opened, frames, closes = [], [], []

    async def on_open(epoch):
        opened.append(epoch)

    conn = StreamConnection(
        "wss://stream.test",
        on_open=on_open,
        on_frame=frames.append,
        on_close=lambda: closes.append(True),
        connector=connector,
        **kwargs,
    )
    return conn, opened, frames, closes


def test_backoff_sequence():
    seq = [5000]
    for _ in range(10):
        seq.append(next_backoff(seq[-1]))
    assert seq[:5] == [5000, 7500, 11250, 16875, 25312]
    assert max(seq) == 60000
    assert seq[-1] == 60000


@pytest.mark.asyncio
async def test_connect_resets_backoff_and_opens_epoch():
    sock = FakeSocket()
    conn, opened, _, _ = _conn(FakeConnector(sock))
    conn.reconnect_attempts = 3
    conn.reconnect_delay_ms = 16875

    await conn.connect()

    assert conn.state is ConnectionState.CONNECTED
    assert conn.reconnect_attempts == 0
    assert conn.reconnect_delay_ms == 5000
    assert opened == [1]
    await conn.disconnect()


@pytest.mark.asyncio
async def test_connect_is_noop_when_already_connected():
    connector = FakeConnector(FakeSocket())
    conn, opened, _, _ = _conn(connector)
    await conn.connect()
    await conn.connect()
    assert connector.calls == 1
    assert opened == [1]
    await conn.disconnect()


@pytest.mark.asyncio
async def test_frames_are_forwarded():
    sock = FakeSocket()
    conn, _, frames, _ = _conn(FakeConnector(sock))
    await conn.connect()
    sock.feed("one")
    sock.feed("two")
    await settle()
    assert frames == ["one", "two"]
    await conn.disconnect()


@pytest.mark.asyncio
async def test_remote_close_schedules_reconnect():
    sock = FakeSocket()
    conn, _, _, closes = _conn(FakeConnector(sock))
    await conn.connect()

    sock.drop()
    await settle()

    assert conn.state is ConnectionState.DISCONNECTED
    assert closes == [True]
    assert conn.reconnect_attempts == 1
    assert conn.reconnect_delay_ms == 7500
    assert conn._reconnect_task is not None
    await conn.disconnect()
    assert conn._reconnect_task is None


@pytest.mark.asyncio
async def test_reconnect_opens_new_epoch():
    first, second = FakeSocket(), FakeSocket()
    connector = FakeConnector(first, second)
    conn, opened, _, _ = _conn(connector, initial_delay_ms=1)
    await conn.connect()

    first.drop()
    for _ in range(100):
        if conn.connected:
            break
        await asyncio.sleep(0.01)

    assert opened == [1, 2]
    assert conn.reconnect_attempts == 0
    await conn.disconnect()


@pytest.mark.asyncio
async def test_exhausted_reconnects_invoke_fatal_path():
    fatal = []
    connector = FakeConnector(OSError("refused"), OSError("refused"), OSError("refused"))
    conn, opened, _, _ = _conn(
        connector, initial_delay_ms=1, max_attempts=2, on_fatal=fatal.append
    )

    await conn.connect()
    for _ in range(100):
        if fatal:
            break
        await asyncio.sleep(0.01)

    assert len(fatal) == 1
    assert isinstance(fatal[0], ReconnectExhaustedError)
    assert connector.calls == 3
    assert opened == []
    assert conn.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_send_requires_open_stream():
    conn, _, _, _ = _conn(FakeConnector(FakeSocket()))
    with pytest.raises(NotConnectedError):
        await conn.send({"id": 1})

    await conn.connect()
    await conn.send({"id": 1}, epoch=conn.epoch)
    assert conn._ws.sent == [{"id": 1}]
    with pytest.raises(NotConnectedError):
        await conn.send({"id": 2}, epoch=conn.epoch - 1)
    await conn.disconnect()


@pytest.mark.asyncio
async def test_disconnect_suppresses_reconnect():
    sock = FakeSocket()
    connector = FakeConnector(sock)
    conn, _, _, closes = _conn(connector, initial_delay_ms=1)
    await conn.connect()

    await conn.disconnect()
    await asyncio.sleep(0.05)

    assert sock.closed
    assert closes == [True]
    assert conn.state is ConnectionState.DISCONNECTED
    assert conn.reconnect_attempts == 0
    assert connector.calls == 1

    await conn.connect()
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_reader_failure_is_treated_as_disconnect(caplog):
    sock = FakeSocket()
    closes = []

    async def on_open(epoch):
        pass

    def on_frame(raw):
        raise TypeError("handler bug")

    conn = StreamConnection(
        "wss://stream.test",
        on_open=on_open,
        on_frame=on_frame,
        on_close=lambda: closes.append(True),
        connector=FakeConnector(sock),
    )
    await conn.connect()

    sock.feed("boom")
    await settle()

    assert conn.state is ConnectionState.DISCONNECTED
    assert closes == [True]
    assert sock.closed
    assert conn.reconnect_attempts == 1
    assert "Stream reader failed" in caplog.text
    await conn.disconnect()
