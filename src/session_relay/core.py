"""Core data models for session-relay.

Every model is a frozen dataclass: the store publishes immutable snapshots and
reducers build new ones with ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

TEMP_ID_PREFIX = "temp-"


class ConnectionState(str, Enum):
    """Lifecycle of the relay socket."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


# ── Content blocks ───────────────────────────────────────────────


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    """A named operation requested by the agent."""

    id: str
    name: str
    input: dict = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    """Acknowledgement of a tool invocation (protocol plumbing)."""

    tool_use_id: str
    content: Any = ""
    is_error: bool = False
    type: str = field(default="tool_result", init=False)


@dataclass(frozen=True)
class OpaqueBlock:
    """Any block type without semantic handling, kept verbatim."""

    type: str
    data: dict = field(default_factory=dict)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, OpaqueBlock]


# ── Messages ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChatMessage:
    """A single message within the selected session's timeline."""

    role: str  # "user" | "assistant" | "system"
    content: Union[str, tuple[ContentBlock, ...]]
    is_side_channel: bool = False
    client_temp_id: Optional[str] = None  # set while not yet server-confirmed
    uuid: Optional[str] = None
    parent_uuid: Optional[str] = None
    timestamp: Optional[str] = None
    tool_text_offset: Optional[int] = None  # text length when the first tool appeared
    is_streamed: bool = False  # assembled from live output, superseded by the saved entry

    @property
    def is_temp(self) -> bool:
        return self.client_temp_id is not None


def text_of(content) -> str:
    """Concatenate the text of a message's content (string or blocks)."""
    if isinstance(content, str):
        return content
    return "".join(b.text for b in content if isinstance(b, TextBlock))


def tool_uses_of(content) -> list[ToolUseBlock]:
    if isinstance(content, str):
        return []
    return [b for b in content if isinstance(b, ToolUseBlock)]


def is_tool_result_message(msg: ChatMessage) -> bool:
    """True for user-role messages made only of tool_result blocks.

    These are generated by the agent runtime, not typed by the operator.
    """
    if msg.role != "user" or isinstance(msg.content, str):
        return False
    return len(msg.content) > 0 and all(
        isinstance(b, ToolResultBlock) for b in msg.content
    )


def is_confirmed_user_message(msg: ChatMessage) -> bool:
    return msg.role == "user" and not msg.is_temp and not is_tool_result_message(msg)


# ── Directory ────────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionRecord:
    """Summary metadata for one session of a repo."""

    session_id: str
    agent_session_id: Optional[str] = None
    created_at: str = ""
    last_active: str = ""
    is_worktree: bool = False
    is_streaming: bool = False  # derived from SessionsState.active_streams


@dataclass(frozen=True)
class RepoRecord:
    """A working directory announced by the relay, keyed by path."""

    name: str
    path: str
    sessions: tuple[SessionRecord, ...] = ()
    checked_out_session: Optional[str] = None
    main_dir_uncommitted: bool = False


@dataclass(frozen=True)
class SessionsState:
    """The single snapshot published by the store."""

    repos: tuple[RepoRecord, ...] = ()
    active_repo_path: Optional[str] = None
    current_session_id: Optional[str] = None
    creating_session_for_repo: Optional[str] = None
    is_creating_session: bool = False
    messages: tuple[ChatMessage, ...] = ()
    active_streams: frozenset[str] = frozenset()
    connection_status: ConnectionState = ConnectionState.IDLE
    selected_model: str = DEFAULT_MODEL
    client_count: int = 0
    version: int = 0

    def find_repo(self, path: str) -> Optional[RepoRecord]:
        for repo in self.repos:
            if repo.path == path:
                return repo
        return None

    def is_streaming(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id in self.active_streams


# ── Derived timeline ─────────────────────────────────────────────


@dataclass(frozen=True)
class WorklogItem:
    tool: ToolUseBlock
    preceding_context: Optional[str]
    message: ChatMessage


@dataclass(frozen=True)
class TimelineItem:
    """A renderable unit produced by the timeline segmenter."""

    id: str
    kind: str  # "user" | "assistant-text" | "worklog" | "system"
    content: str = ""
    worklog: tuple[WorklogItem, ...] = ()
    message: Optional[ChatMessage] = None
