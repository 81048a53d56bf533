"""SessionsClient: the context object tying the engine together.

One instance is created per process and handed to whatever presents the
state (HTTP server, CLI). It owns the store, the relay connection, the
pending-write reconciler and the stream assembler.

Inbound frames flow codec -> reducers -> store; user actions flow
reducers (optimistic update) -> codec -> connection.
"""

import logging
from dataclasses import replace
from typing import Callable

from . import directory
from .config import get_default_model, get_reconnect_delay, get_relay_url
from .connection import ConnectionManager, Connector
from .core import ChatMessage, ConnectionState, SessionsState, TimelineItem
from .pending import MemoryPendingStore, PendingStore
from .protocol import (
    AgentStream,
    CheckoutBranch,
    ClientConnected,
    ClientCount,
    ClientDisconnected,
    CreateSession,
    CreateWorktreeSession,
    InboundEvent,
    ListSessions,
    LoadSession,
    OutboundCommand,
    RegisterBrowser,
    RelayError,
    RevertCheckout,
    SessionCreated,
    SessionHistory,
    SessionsList,
    SessionUpdate,
    StreamEnd,
    StreamStart,
    decode_event,
    encode_command,
)
from .reconciler import PendingWriteReconciler
from .store import StateStore
from .stream import StreamAssembler
from .timeline import segment_messages

logger = logging.getLogger(__name__)


class SessionsClient:
    """Live, reconciled view of the relay's repos and sessions."""

    def __init__(
        self,
        url: str | None = None,
        *,
        pending: PendingStore | None = None,
        reconnect_delay: float | None = None,
        default_model: str | None = None,
        connector: Connector | None = None,
    ):
        self.store = StateStore(SessionsState(selected_model=default_model or get_default_model()))
        self.reconciler = PendingWriteReconciler(pending or MemoryPendingStore())
        self.streams = StreamAssembler()
        self.connection = ConnectionManager(
            url or get_relay_url(),
            on_open=self._on_open,
            on_message=self.handle_frame,
            on_state=self._on_state,
            on_disconnect=self._on_disconnect,
            reconnect_delay=get_reconnect_delay() if reconnect_delay is None else reconnect_delay,
            connector=connector,
        )
        self._handlers = {
            ClientConnected: self._handle_client_connected,
            ClientDisconnected: self._handle_client_disconnected,
            SessionsList: self._handle_sessions_list,
            SessionCreated: self._handle_session_created,
            SessionHistory: self._handle_session_history,
            SessionUpdate: self._handle_session_update,
            StreamStart: self._handle_stream_start,
            StreamEnd: self._handle_stream_end,
            AgentStream: self._handle_agent_stream,
            ClientCount: self._handle_client_count,
            RelayError: self._handle_error,
        }

    # ── Read side ────────────────────────────────────────────────────

    @property
    def snapshot(self) -> SessionsState:
        return self.store.get_snapshot()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def timeline(self) -> list[TimelineItem]:
        """Segmented view of the selected session's messages."""
        return segment_messages(self.snapshot.messages)

    # ── Lifecycle ────────────────────────────────────────────────────

    def connect(self) -> None:
        self.connection.connect()

    async def close(self) -> None:
        await self.connection.close()

    # ── User actions ─────────────────────────────────────────────────

    def select_session(self, repo_path: str, session_id: str) -> None:
        self.store.update(lambda s: directory.select_session(s, repo_path, session_id))
        self._send(LoadSession(repo_path=repo_path, session_id=session_id))

    def create_session(self, repo_path: str) -> None:
        self._mark_creating(repo_path)
        self._send(CreateSession(repo_path=repo_path))

    def create_worktree_session(self, repo_path: str) -> None:
        self._mark_creating(repo_path)
        self._send(CreateWorktreeSession(repo_path=repo_path))

    def refresh_sessions(self, repo_path: str) -> None:
        self._send(ListSessions(repo_path=repo_path))

    def set_model(self, model: str) -> None:
        self.store.update(
            lambda s: s if s.selected_model == model else replace(s, selected_model=model)
        )

    def send_chat_message(self, content: str) -> bool:
        """Send a user turn to the selected session.

        Returns False when the send is rejected: empty text, no selected
        session, or a turn already streaming there.
        """
        result = self.reconciler.prepare_send(self.snapshot, content)
        if result is None:
            return False
        state, command = result
        self.store.update(lambda _: state)
        self._send(command)
        return True

    def checkout_branch(self) -> bool:
        return self._checkout(revert=False)

    def revert_checkout(self) -> bool:
        return self._checkout(revert=True)

    # ── Inbound ──────────────────────────────────────────────────────

    def handle_frame(self, raw: str | bytes) -> None:
        """Decode and apply one relay frame; bad frames are dropped."""
        event = decode_event(raw)
        if event is not None:
            self.handle_event(event)

    def handle_event(self, event: InboundEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("No handler for %s", type(event).__name__)
            return
        handler(event)

    def _handle_client_connected(self, event: ClientConnected) -> None:
        self.store.update(
            lambda s: directory.upsert_repo_on_connect(s, event.repo_path, event.repo_name)
        )
        self._send(ListSessions(repo_path=event.repo_path))

    def _handle_client_disconnected(self, event: ClientDisconnected) -> None:
        self.store.update(lambda s: directory.remove_repo_on_disconnect(s, event.repo_path))

    def _handle_sessions_list(self, event: SessionsList) -> None:
        self.store.update(lambda s: directory.apply_sessions_list(s, event))

    def _handle_session_created(self, event: SessionCreated) -> None:
        def updater(state: SessionsState) -> SessionsState:
            state = replace(state, is_creating_session=False, creating_session_for_repo=None)
            return directory.add_session(state, event.repo_path, event.session_id)

        self.store.update(updater)
        self._send(ListSessions(repo_path=event.repo_path))
        self.select_session(event.repo_path, event.session_id)

    def _handle_session_history(self, event: SessionHistory) -> None:
        self.store.update(lambda s: self.reconciler.apply_history(s, event))

    def _handle_session_update(self, event: SessionUpdate) -> None:
        self.store.update(lambda s: self.reconciler.apply_update(s, event))

    def _handle_stream_start(self, event: StreamStart) -> None:
        self.store.update(lambda s: self.streams.start(s, event.session_id))

    def _handle_stream_end(self, event: StreamEnd) -> None:
        self.store.update(lambda s: self.streams.end(s, event.session_id))

    def _handle_agent_stream(self, event: AgentStream) -> None:
        self.store.update(lambda s: self.streams.handle(s, event))

    def _handle_client_count(self, event: ClientCount) -> None:
        self.store.update(
            lambda s: s if s.client_count == event.count else replace(s, client_count=event.count)
        )

    def _handle_error(self, event: RelayError) -> None:
        logger.warning("Relay error%s: %s", f" for {event.repo_path}" if event.repo_path else "", event.message)

        def updater(state: SessionsState) -> SessionsState:
            messages = state.messages
            if state.current_session_id is not None:
                messages = messages + (ChatMessage(role="system", content=event.message),)
            return replace(
                state,
                messages=messages,
                is_creating_session=False,
                creating_session_for_repo=None,
            )

        self.store.update(updater)

    # ── Connection callbacks ─────────────────────────────────────────

    def _on_open(self) -> None:
        self._send(RegisterBrowser())

    def _on_state(self, status: ConnectionState) -> None:
        self.store.update(
            lambda s: s if s.connection_status is status else replace(s, connection_status=status)
        )

    def _on_disconnect(self, status: ConnectionState) -> None:
        # Everything is re-derived from the relay after reconnecting.
        self.streams.reset()
        selected_model = self.snapshot.selected_model
        self.store.reset(connection_status=status, selected_model=selected_model)

    # ── Private helpers ──────────────────────────────────────────────

    def _send(self, command: OutboundCommand) -> bool:
        return self.connection.send(encode_command(command))

    def _mark_creating(self, repo_path: str) -> None:
        self.store.update(
            lambda s: replace(s, creating_session_for_repo=repo_path, is_creating_session=True)
        )

    def _checkout(self, revert: bool) -> bool:
        state = self.snapshot
        repo_path, session_id = state.active_repo_path, state.current_session_id
        if not repo_path or not session_id or state.is_streaming(session_id):
            return False
        repo = state.find_repo(repo_path)
        if repo is None or repo.main_dir_uncommitted:
            return False
        command_cls = RevertCheckout if revert else CheckoutBranch
        self._send(command_cls(repo_path=repo_path, session_id=session_id))
        return True
