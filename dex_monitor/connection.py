"""
Owns the websocket to the RPC stream: connect, read, detect close and
reconnect with capped exponential backoff.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from dex_monitor.debug import dbg

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class NotConnectedError(RuntimeError):
    """Send attempted while the stream is not open (or for a stale epoch)."""


class ReconnectExhaustedError(RuntimeError):
    """Reconnect ceiling reached; the process is expected to exit."""


def next_backoff(delay_ms: int, multiplier: float = 1.5, cap_ms: int = 60_000) -> int:
    return int(min(delay_ms * multiplier, cap_ms))


class StreamConnection:
    def __init__(
        self,
        url: str,
        *,
        on_open: Callable[[int], Awaitable[None]],
        on_frame: Callable[[str | bytes], None],
        on_close: Callable[[], None] | None = None,
        on_fatal: Callable[[ReconnectExhaustedError], None] | None = None,
        max_attempts: int = 10,
        initial_delay_ms: int = 5_000,
        max_delay_ms: int = 60_000,
        multiplier: float = 1.5,
        ping_interval: float | None = 20,
        connector=websockets.connect,
    ):
        self.url = url
        self._on_open = on_open
        self._on_frame = on_frame
        self._on_close = on_close
        self._on_fatal = on_fatal
        self.max_attempts = max_attempts
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.multiplier = multiplier
        self.ping_interval = ping_interval
        self._connector = connector

        self.state = ConnectionState.DISCONNECTED
        self.epoch = 0
        self.reconnect_attempts = 0
        self.reconnect_delay_ms = initial_delay_ms
        self.fatal_error: ReconnectExhaustedError | None = None

        self._ws = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    # ─── lifecycle ────────────────────────────────────────────────────────
    async def connect(self) -> None:
        if self._closing:
            logger.info("Shutdown in progress, not connecting")
            return
        if self.state is not ConnectionState.DISCONNECTED:
            logger.warning("Already connected or connecting (%s)", self.state.value)
            return

        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to stream endpoint...")
        try:
            ws = await self._connector(self.url, ping_interval=self.ping_interval)
        except asyncio.CancelledError:
            self.state = ConnectionState.DISCONNECTED
            raise
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self.state = ConnectionState.DISCONNECTED
            logger.error("Failed to connect to stream: %s", exc)
            self._schedule_reconnect()
            return

        if self._closing:
            self.state = ConnectionState.DISCONNECTED
            await ws.close()
            return

        self._ws = ws
        self.epoch += 1
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self.reconnect_delay_ms = self.initial_delay_ms
        logger.info("Connected to stream (epoch %d)", self.epoch)

        self._reader = asyncio.create_task(self._read_loop(ws, self.epoch))
        try:
            await self._on_open(self.epoch)
        except Exception:
            logger.exception("Open handler failed for epoch %d", self.epoch)

    async def disconnect(self) -> None:
        """Graceful shutdown: close the socket and never reconnect."""
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        ws, self._ws = self._ws, None
        was_open = self.state is ConnectionState.CONNECTED
        self.state = ConnectionState.DISCONNECTED
        if was_open and self._on_close is not None:
            self._on_close()

        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        if ws is not None:
            await ws.close()
        logger.info("Stream connection closed")

    async def send(self, payload: dict, epoch: int | None = None) -> None:
        if self.state is not ConnectionState.CONNECTED or self._ws is None:
            raise NotConnectedError(f"stream is {self.state.value}")
        if epoch is not None and epoch != self.epoch:
            raise NotConnectedError(f"epoch {epoch} is stale (current {self.epoch})")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise NotConnectedError(str(exc)) from exc

    # ─── internals ────────────────────────────────────────────────────────
    async def _read_loop(self, ws, epoch: int) -> None:
        try:
            async for raw in ws:
                dbg(f"FRAME epoch={epoch} {str(raw)[:200]}")
                self._on_frame(raw)
        except ConnectionClosed as exc:
            logger.debug("Stream closed while reading: %s", exc)
        except OSError as exc:
            logger.error("Stream transport error: %s", exc)
        except Exception:
            # a reader that dies silently would leave the state CONNECTED forever
            logger.exception("Stream reader failed; treating as disconnect")
            if self._ws is ws and self.epoch == epoch:
                self._handle_close(ws.close_code, "reader failed")
                await ws.close()
            return

        if self._ws is ws and self.epoch == epoch:
            self._handle_close(ws.close_code, ws.close_reason)

    def _handle_close(self, code, reason) -> None:
        logger.warning("Stream disconnected: %s - %s", code, reason or "")
        self._ws = None
        self._reader = None
        self.state = ConnectionState.DISCONNECTED
        if self._on_close is not None:
            self._on_close()
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self.reconnect_attempts >= self.max_attempts:
            self.fatal_error = ReconnectExhaustedError(
                f"gave up after {self.reconnect_attempts} reconnect attempts"
            )
            logger.critical("Max reconnection attempts reached. Exiting...")
            if self._on_fatal is not None:
                self._on_fatal(self.fatal_error)
            return

        self.reconnect_attempts += 1
        delay = self.reconnect_delay_ms
        logger.info(
            "Reconnecting in %.1fs... Attempt %d/%d",
            delay / 1000,
            self.reconnect_attempts,
            self.max_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay / 1000))
        self.reconnect_delay_ms = next_backoff(delay, self.multiplier, self.max_delay_ms)

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        await self.connect()
