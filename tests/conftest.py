"""Shared test fixtures for session-relay."""

import asyncio
import json

import pytest
import websockets

from session_relay.client import SessionsClient
from session_relay.pending import MemoryPendingStore
from session_relay.protocol import decode_command

_END = object()
_DROP = object()


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    def push(self, payload) -> None:
        """Deliver a frame from the relay (dicts are JSON-encoded)."""
        self.incoming.put_nowait(payload if isinstance(payload, (str, bytes)) else json.dumps(payload))

    def drop(self) -> None:
        """Simulate an abrupt connection loss."""
        self.incoming.put_nowait(_DROP)

    def finish(self) -> None:
        """Simulate a clean close initiated by the relay."""
        self.incoming.put_nowait(_END)

    def commands(self) -> list:
        return [decode_command(text) for text in self.sent]

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True
        self.incoming.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is _END:
            raise StopAsyncIteration
        if item is _DROP:
            raise websockets.ConnectionClosedError(None, None)
        return item


class FakeRelay:
    """Connector handing out FakeSockets, optionally refusing connections."""

    def __init__(self):
        self.sockets: list[FakeSocket] = []
        self.attempts = 0
        self.refuse = False

    async def connect(self, url: str) -> FakeSocket:
        self.attempts += 1
        if self.refuse:
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]


class RecordingConnection:
    """Replaces the ConnectionManager for tests that run without a loop."""

    def __init__(self):
        self.sent: list[str] = []
        self.url = "ws://relay.test/ws"

    def send(self, text: str) -> bool:
        self.sent.append(text)
        return True

    def commands(self) -> list:
        return [decode_command(text) for text in self.sent]

    def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass


async def settle(rounds: int = 10) -> None:
    """Let pending loop callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def pending():
    return MemoryPendingStore()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def recording_client(pending):
    """A SessionsClient whose outbound commands are recorded, not sent."""
    client = SessionsClient("ws://relay.test/ws", pending=pending, reconnect_delay=0.01)
    client.connection = RecordingConnection()
    return client


@pytest.fixture
def live_client(pending, relay):
    """A SessionsClient wired to a FakeRelay; call connect() inside a test loop."""
    return SessionsClient(
        "ws://relay.test/ws",
        pending=pending,
        reconnect_delay=0.05,
        connector=relay.connect,
    )


def frame(**payload) -> str:
    return json.dumps(payload)


def select(client, repo_path="/work/app", repo_name="app", session_id="s1"):
    """Connect a repo and select one of its sessions through inbound frames."""
    client.handle_frame(frame(type="client_connected", repo_path=repo_path, repo_name=repo_name))
    client.handle_frame(frame(
        type="sessions_list",
        repo_path=repo_path,
        sessions=[{"session_id": session_id, "created_at": "2025-01-20T10:00:00Z",
                   "last_active": "2025-01-20T11:00:00Z"}],
    ))
    client.select_session(repo_path, session_id)
    client.handle_frame(frame(type="session_history", repo_path=repo_path, session_id=session_id, messages=[]))
