"""Relay socket lifecycle: connect, deliver frames, reconnect on loss.

The manager runs on the caller's asyncio event loop. Every callback it
invokes (open, message, state change, disconnect) runs to completion on that
loop, so consumers never need locks.

Reconnects use a fixed delay. At most one reconnect timer is pending: a new
schedule, an explicit ``connect()`` and ``close()`` all cancel the previous
one. Outbound delivery is at-most-once: frames sent while the socket is not
open are dropped after triggering a connection attempt.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import websockets

from .config import DEFAULT_RECONNECT_DELAY
from .core import ConnectionState

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


def _noop(*args) -> None:
    pass


class ConnectionManager:
    """Owns the single WebSocket to the relay."""

    def __init__(
        self,
        url: str,
        *,
        on_open: Callable[[], None] = _noop,
        on_message: Callable[[str | bytes], None] = _noop,
        on_state: Callable[[ConnectionState], None] = _noop,
        on_disconnect: Callable[[ConnectionState], None] = _noop,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connector: Connector | None = None,
    ):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._on_open = on_open
        self._on_message = on_message
        self._on_state = on_state
        self._on_disconnect = on_disconnect
        self._connector = connector or websockets.connect

        self.state = ConnectionState.IDLE
        self._ws = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._send_tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self.state is ConnectionState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connect(self) -> None:
        """Start a connection attempt unless one is open or in progress.

        Must be called with the event loop running.
        """
        if self._task is not None and not self._task.done():
            return

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Cannot connect to relay: no running event loop")
            return
        self._closed = False
        self._cancel_reconnect()
        self._set_state(ConnectionState.CONNECTING)
        self._task = self._loop.create_task(self._run())

    def send(self, text: str) -> bool:
        """Queue a frame for the open socket.

        Returns False (and triggers a connection attempt) when the socket is
        not open; the frame is dropped.
        """
        if not self.is_open:
            logger.warning("Relay socket not ready, attempting reconnect")
            if not self._closed:
                self.connect()
            return False

        task = self._loop.create_task(self._write(self._ws, text))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return True

    async def close(self) -> None:
        """Shut the socket down for good; no reconnect is scheduled."""
        self._closed = True
        self._cancel_reconnect()

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Error closing relay socket: %s", e)

        if self.state is not ConnectionState.IDLE:
            self._set_state(ConnectionState.CLOSED)

    # ── Private helpers ──────────────────────────────────────────────

    async def _run(self) -> None:
        try:
            ws = await self._connector(self.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to connect to relay at %s: %s", self.url, e)
            self._handle_disconnect(ConnectionState.ERROR)
            return

        self._ws = ws
        logger.info("Connected to relay at %s", self.url)
        self._set_state(ConnectionState.OPEN)
        self._on_open()

        status = ConnectionState.CLOSED
        try:
            async for frame in ws:
                self._on_message(frame)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            logger.info("Relay connection closed: %s", e)
        except Exception:
            logger.exception("Relay connection failed")
            status = ConnectionState.ERROR

        if self._ws is ws:
            self._handle_disconnect(status)

    async def _write(self, ws, text: str) -> None:
        try:
            await ws.send(text)
        except Exception as e:
            logger.error("Failed to send frame to relay: %s", e)

    def _handle_disconnect(self, status: ConnectionState) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            self._loop.create_task(self._quiet_close(ws))

        self.state = status
        self._on_disconnect(status)

        if not self._closed:
            self._schedule_reconnect()

    async def _quiet_close(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Error closing relay socket: %s", e)

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        logger.info("Reconnecting to relay in %.1fs", self.reconnect_delay)
        self._reconnect_handle = self._loop.call_later(self.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        self._on_state(state)
