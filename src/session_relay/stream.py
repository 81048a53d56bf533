"""Fold incremental agent output into the selected session's timeline.

A session is either idle or streaming. Start signals (``stream_start``, or a
``claude_stream`` frame of type init/system) open a fresh buffer; end signals
(``stream_end``, result, error) discard it. While streaming, each
``assistant`` frame carries forward-only content deltas:

- text is appended to one running text block,
- tool_use blocks are appended once per invocation id,
- any other block is appended as-is.

Only the selected session's timeline is materialized; other sessions just
track their streaming flag.
"""

import logging
from dataclasses import dataclass, field, replace

from .core import (
    ChatMessage,
    ContentBlock,
    SessionsState,
    TextBlock,
    ToolUseBlock,
)
from .directory import apply_stream_flags, record_agent_session_id
from .protocol import AgentStream, parse_content

logger = logging.getLogger(__name__)


@dataclass
class StreamBuffer:
    """Accumulated output of the turn currently streaming for one session."""

    text: str = ""
    blocks: list[ContentBlock] = field(default_factory=list)
    tool_ids: set[str] = field(default_factory=set)
    tool_text_offset: int | None = None

    def fold(self, blocks) -> None:
        # A delta's text and tools arrive together; the tools belong after
        # the text that had streamed before this delta.
        text_before = len(self.text)
        for block in blocks:
            if isinstance(block, TextBlock):
                self.text += block.text
            elif isinstance(block, ToolUseBlock):
                if block.id and block.id in self.tool_ids:
                    continue
                if self.tool_text_offset is None:
                    self.tool_text_offset = text_before
                if block.id:
                    self.tool_ids.add(block.id)
                self.blocks.append(block)
            else:
                self.blocks.append(block)

    def to_content(self) -> tuple[ContentBlock, ...]:
        head = (TextBlock(text=self.text),) if self.text else ()
        return head + tuple(self.blocks)


class StreamAssembler:
    """Per-session idle/streaming state machine."""

    def __init__(self):
        self._buffers: dict[str, StreamBuffer] = {}

    def buffer_for(self, session_id: str) -> StreamBuffer | None:
        return self._buffers.get(session_id)

    def reset(self) -> None:
        self._buffers.clear()

    def start(self, state: SessionsState, session_id: str) -> SessionsState:
        self._buffers[session_id] = StreamBuffer()
        return apply_stream_flags(state, state.active_streams | {session_id})

    def end(self, state: SessionsState, session_id: str, error: str | None = None) -> SessionsState:
        self._buffers.pop(session_id, None)
        state = apply_stream_flags(state, state.active_streams - {session_id})
        if error is not None and state.current_session_id == session_id:
            notice = ChatMessage(role="system", content=f"Error: {error}")
            state = replace(state, messages=state.messages + (notice,))
        return state

    def apply_delta(self, state: SessionsState, session_id: str, blocks) -> SessionsState:
        buffer = self._buffers.get(session_id)
        if buffer is None:
            # Output without a start signal, e.g. after a reconnect mid-turn.
            buffer = self._buffers[session_id] = StreamBuffer()
        buffer.fold(blocks)

        if state.current_session_id != session_id:
            return state

        content = buffer.to_content()
        last = state.messages[-1] if state.messages else None
        if last is not None and last.role == "assistant":
            merged = replace(
                last, content=content, tool_text_offset=buffer.tool_text_offset, is_streamed=True
            )
            return replace(state, messages=state.messages[:-1] + (merged,))

        message = ChatMessage(
            role="assistant",
            content=content,
            tool_text_offset=buffer.tool_text_offset,
            is_streamed=True,
        )
        return replace(state, messages=state.messages + (message,))

    def handle(self, state: SessionsState, event: AgentStream) -> SessionsState:
        """Apply one ``claude_stream`` frame."""
        data = event.data
        data_type = data.get("type")
        session_id = event.session_id

        if data_type == "init" or (data_type == "system" and data.get("subtype") in (None, "init")):
            state = self.start(state, session_id)
            agent_session_id = data.get("session_id")
            if isinstance(agent_session_id, str) and agent_session_id:
                state = record_agent_session_id(state, session_id, agent_session_id)
            return state

        if data_type == "assistant":
            message = data.get("message")
            content = message.get("content", []) if isinstance(message, dict) else []
            blocks = parse_content(content)
            if isinstance(blocks, str):
                blocks = (TextBlock(text=blocks),) if blocks else ()
            return self.apply_delta(state, session_id, blocks)

        if data_type == "result":
            return self.end(state, session_id)

        if data_type == "error":
            error = data.get("message") or data.get("error") or "Unknown error"
            return self.end(state, session_id, error=str(error))

        logger.debug("Ignoring %r stream frame for session %s", data_type, session_id)
        return state
