"""Reconcile optimistic user messages with what the relay confirms.

Three sources describe the operator's latest message:
- the optimistic copy appended to the timeline on send (temp id),
- the durable pending record, which survives a client restart,
- the confirmed copy delivered in session_history / session_update.

Confirmation is matched on literal text. There is no acknowledgement id on
the wire, so two identical messages sent back to back cannot be told apart.
"""

import json
import logging
from dataclasses import replace
from uuid import uuid4

from .core import (
    TEMP_ID_PREFIX,
    ChatMessage,
    SessionsState,
    is_confirmed_user_message,
    text_of,
)
from .pending import PendingStore
from .protocol import SendMessage, SessionHistory, SessionUpdate, content_to_wire

logger = logging.getLogger(__name__)


class PendingWriteReconciler:
    """Owns the optimistic-send / pending-record / confirmation triangle."""

    def __init__(self, pending: PendingStore):
        self.pending = pending

    def prepare_send(
        self, state: SessionsState, content: str
    ) -> tuple[SessionsState, SendMessage] | None:
        """Build the optimistic state and the command for a user send.

        Returns None, having touched nothing, when there is no text, no
        selected session, or the session already has a turn in flight.
        """
        text = content.strip()
        if not text:
            return None

        repo_path = state.active_repo_path
        session_id = state.current_session_id
        if not repo_path or not session_id or state.is_streaming(session_id):
            return None

        message = ChatMessage(
            role="user",
            content=text,
            client_temp_id=f"{TEMP_ID_PREFIX}{uuid4().hex}",
        )
        # At most one optimistic message per session.
        messages = tuple(m for m in state.messages if not _is_temp_user(m))

        self.pending.set(session_id, text)

        command = SendMessage(
            repo_path=repo_path,
            session_id=session_id,
            content=text,
            model=state.selected_model,
        )
        return replace(state, messages=messages + (message,)), command

    def apply_history(self, state: SessionsState, event: SessionHistory) -> SessionsState:
        """Replace the timeline with a freshly loaded history snapshot."""
        if state.current_session_id != event.session_id:
            return state

        messages = event.messages
        pending_text = self.pending.get(event.session_id)
        if pending_text is not None:
            if _contains_confirmed(messages, pending_text):
                self.pending.delete(event.session_id)
            else:
                # Sent before a reload but not yet on disk: keep showing it.
                messages = messages + (
                    ChatMessage(
                        role="user",
                        content=pending_text,
                        client_temp_id=f"{TEMP_ID_PREFIX}pending-{event.session_id}",
                    ),
                )

        return replace(state, messages=messages)

    def apply_update(self, state: SessionsState, event: SessionUpdate) -> SessionsState:
        """Merge incrementally delivered entries into the timeline."""
        if state.current_session_id != event.session_id or not event.new_entries:
            return state

        entries = event.new_entries
        confirmed_arrival = any(is_confirmed_user_message(e) for e in entries)
        # Saved assistant entries replace the copy assembled from live output.
        saved_reply = any(e.role == "assistant" for e in entries)

        kept = []
        slot = None  # position of the first retired optimistic message
        for msg in state.messages:
            if confirmed_arrival and _is_temp_user(msg):
                if slot is None:
                    slot = len(kept)
                continue
            if saved_reply and msg.role == "assistant" and msg.is_streamed:
                continue
            kept.append(msg)

        pending_text = self.pending.get(event.session_id)
        if pending_text is not None and _contains_confirmed(entries, pending_text):
            self.pending.delete(event.session_id)

        existing = {content_key(m.content) for m in kept if is_confirmed_user_message(m)}
        fresh = []
        for entry in entries:
            if is_confirmed_user_message(entry):
                key = content_key(entry.content)
                if key in existing:
                    logger.debug("Dropping duplicate user entry for session %s", event.session_id)
                    continue
                existing.add(key)
                if slot is not None:
                    # The confirmed copy takes the place of the optimistic one,
                    # ahead of any reply streamed since.
                    kept.insert(slot, entry)
                    slot = None
                    continue
            fresh.append(entry)

        return replace(state, messages=tuple(kept) + tuple(fresh))


def content_key(content) -> str:
    """Equality key for message content (string or blocks)."""
    if isinstance(content, str):
        return content
    return json.dumps(content_to_wire(content), sort_keys=True, ensure_ascii=False, default=str)


def _is_temp_user(msg: ChatMessage) -> bool:
    return msg.role == "user" and msg.is_temp


def _contains_confirmed(messages, text: str) -> bool:
    return any(
        is_confirmed_user_message(m) and text_of(m.content).strip() == text for m in messages
    )
