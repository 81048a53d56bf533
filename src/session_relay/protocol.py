"""Relay wire protocol: inbound events and outbound commands.

Frames are JSON objects discriminated by ``type``.

Inbound (relay -> client):
- client_connected / client_disconnected: a repo appeared or went away.
- sessions_list, session_created: directory updates for one repo.
- session_history: full snapshot of a session's messages.
- session_update: messages appended to a session since the last delivery.
- stream_start / stream_end, or claude_stream with a raw agent output frame
  in ``data`` (data.type in init, system, assistant, result, error).
- client_count, error.

Older relays name the session key ``lychee_id``; it is accepted wherever
``session_id`` is expected.

Decoding never raises. A frame that cannot be decoded is logged and dropped.
"""

import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Optional, Union

from .core import (
    ChatMessage,
    ContentBlock,
    OpaqueBlock,
    SessionRecord,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "assistant", "system")


class ProtocolError(ValueError):
    """A frame is well-formed JSON but does not match the protocol."""


# ── Inbound events ───────────────────────────────────────────────


@dataclass(frozen=True)
class ClientConnected:
    type: ClassVar[str] = "client_connected"
    repo_path: str
    repo_name: str


@dataclass(frozen=True)
class ClientDisconnected:
    type: ClassVar[str] = "client_disconnected"
    repo_path: str


@dataclass(frozen=True)
class SessionsList:
    type: ClassVar[str] = "sessions_list"
    repo_path: str
    sessions: tuple[SessionRecord, ...] = ()
    active_session_ids: tuple[str, ...] = ()
    checked_out_session: Optional[str] = None
    main_dir_uncommitted: bool = False


@dataclass(frozen=True)
class SessionCreated:
    type: ClassVar[str] = "session_created"
    repo_path: str
    session_id: str


@dataclass(frozen=True)
class SessionHistory:
    type: ClassVar[str] = "session_history"
    repo_path: str
    session_id: str
    messages: tuple[ChatMessage, ...] = ()


@dataclass(frozen=True)
class SessionUpdate:
    type: ClassVar[str] = "session_update"
    repo_path: str
    session_id: str
    new_entries: tuple[ChatMessage, ...] = ()


@dataclass(frozen=True)
class StreamStart:
    type: ClassVar[str] = "stream_start"
    repo_path: str
    session_id: str


@dataclass(frozen=True)
class StreamEnd:
    type: ClassVar[str] = "stream_end"
    repo_path: str
    session_id: str


@dataclass(frozen=True)
class AgentStream:
    """Envelope around one raw output frame of the agent process."""

    type: ClassVar[str] = "claude_stream"
    repo_path: str
    session_id: str
    data: dict


@dataclass(frozen=True)
class ClientCount:
    type: ClassVar[str] = "client_count"
    count: int


@dataclass(frozen=True)
class RelayError:
    type: ClassVar[str] = "error"
    message: str
    repo_path: Optional[str] = None


InboundEvent = Union[
    ClientConnected,
    ClientDisconnected,
    SessionsList,
    SessionCreated,
    SessionHistory,
    SessionUpdate,
    StreamStart,
    StreamEnd,
    AgentStream,
    ClientCount,
    RelayError,
]


# ── Outbound commands ────────────────────────────────────────────


@dataclass(frozen=True)
class RegisterBrowser:
    type: ClassVar[str] = "register_browser"


@dataclass(frozen=True)
class ListSessions:
    type: ClassVar[str] = "list_sessions"
    repo_path: str


@dataclass(frozen=True)
class CreateSession:
    type: ClassVar[str] = "create_session"
    repo_path: str


@dataclass(frozen=True)
class CreateWorktreeSession:
    type: ClassVar[str] = "create_worktree_session"
    repo_path: str


@dataclass(frozen=True)
class LoadSession:
    type: ClassVar[str] = "load_session"
    repo_path: str
    session_id: str


@dataclass(frozen=True)
class SendMessage:
    type: ClassVar[str] = "send_message"
    repo_path: str
    session_id: Optional[str]
    content: str
    model: str


@dataclass(frozen=True)
class CheckoutBranch:
    type: ClassVar[str] = "checkout_branch"
    repo_path: str
    session_id: str


@dataclass(frozen=True)
class RevertCheckout:
    type: ClassVar[str] = "revert_checkout"
    repo_path: str
    session_id: str


OutboundCommand = Union[
    RegisterBrowser,
    ListSessions,
    CreateSession,
    CreateWorktreeSession,
    LoadSession,
    SendMessage,
    CheckoutBranch,
    RevertCheckout,
]

COMMAND_TYPES = {
    cls.type: cls
    for cls in (
        RegisterBrowser,
        ListSessions,
        CreateSession,
        CreateWorktreeSession,
        LoadSession,
        SendMessage,
        CheckoutBranch,
        RevertCheckout,
    )
}


def command_to_dict(command: OutboundCommand) -> dict:
    """Return the wire field set of a command, ``type`` first."""
    return {"type": command.type, **asdict(command)}


def encode_command(command: OutboundCommand) -> str:
    return json.dumps(command_to_dict(command), ensure_ascii=False)


def decode_command(raw: Union[str, bytes]) -> Optional[OutboundCommand]:
    """Parse a serialized command back into its dataclass.

    The relay side of the protocol; used by tooling and test doubles.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
        logger.warning("Failed to parse command frame: %s", e)
        return None
    if not isinstance(payload, dict):
        return None
    cls = COMMAND_TYPES.get(payload.get("type"))
    if cls is None:
        return None
    try:
        return cls(**{f.name: payload[f.name] for f in fields(cls)})
    except KeyError as e:
        logger.warning("Command %s is missing field %s", cls.type, e)
        return None


# ── Content parsing ──────────────────────────────────────────────


def parse_block(block: Any) -> Optional[ContentBlock]:
    """Convert one raw content block into its typed form."""
    if isinstance(block, str):
        return TextBlock(text=block)
    if not isinstance(block, dict):
        return None

    block_type = block.get("type", "")

    if block_type == "text":
        return TextBlock(text=str(block.get("text") or ""))

    if block_type == "tool_use":
        tool_input = block.get("input")
        return ToolUseBlock(
            id=str(block.get("id") or ""),
            name=str(block.get("name") or "unknown"),
            input=tool_input if isinstance(tool_input, dict) else {},
        )

    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(block.get("tool_use_id") or ""),
            content=block.get("content", ""),
            is_error=bool(block.get("is_error", False)),
        )

    return OpaqueBlock(type=str(block_type), data=dict(block))


def parse_content(content: Any) -> Union[str, tuple[ContentBlock, ...]]:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    blocks = (parse_block(b) for b in content)
    return tuple(b for b in blocks if b is not None)


def block_to_dict(block: ContentBlock) -> dict:
    if isinstance(block, OpaqueBlock):
        return dict(block.data)
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {
        "type": "tool_result",
        "tool_use_id": block.tool_use_id,
        "content": block.content,
        "is_error": block.is_error,
    }


def content_to_wire(content) -> Union[str, list[dict]]:
    if isinstance(content, str):
        return content
    return [block_to_dict(b) for b in content]


def parse_chat_message(entry: Any) -> ChatMessage:
    """Convert a relay message into a ChatMessage.

    Accepts a bare ``{"role", "content"}`` message or a transcript entry
    wrapping it: ``{"type": "user", "message": {...}, "isSidechain", "uuid"}``.
    Raises ProtocolError when no usable role is present.
    """
    if not isinstance(entry, dict):
        raise ProtocolError("message is not an object")

    inner = entry.get("message")
    msg_data = inner if isinstance(inner, dict) else entry

    role = msg_data.get("role") or entry.get("role") or entry.get("type")
    if role == "human":
        role = "user"
    if role not in MESSAGE_ROLES:
        raise ProtocolError(f"unsupported message role {role!r}")

    timestamp = entry.get("timestamp")
    return ChatMessage(
        role=role,
        content=parse_content(msg_data.get("content", "")),
        is_side_channel=bool(entry.get("isSidechain") or entry.get("is_side_channel")),
        uuid=entry.get("uuid") if isinstance(entry.get("uuid"), str) else None,
        parent_uuid=entry.get("parentUuid") if isinstance(entry.get("parentUuid"), str) else None,
        timestamp=timestamp if isinstance(timestamp, str) else None,
    )


def parse_chat_messages(entries: Any) -> tuple[ChatMessage, ...]:
    """Parse a batch of messages, skipping entries that are not chat messages."""
    if not isinstance(entries, list):
        return ()
    messages = []
    for entry in entries:
        try:
            messages.append(parse_chat_message(entry))
        except ProtocolError as e:
            logger.debug("Skipping message entry: %s", e)
    return tuple(messages)


def parse_session_record(entry: Any) -> SessionRecord:
    if not isinstance(entry, dict):
        raise ProtocolError("session is not an object")
    session_id = entry.get("session_id") or entry.get("lychee_id")
    if not isinstance(session_id, str) or not session_id:
        raise ProtocolError("session without an id")
    agent_id = entry.get("agent_session_id") or entry.get("claude_session_id")
    return SessionRecord(
        session_id=session_id,
        agent_session_id=agent_id if isinstance(agent_id, str) else None,
        created_at=str(entry.get("created_at") or ""),
        last_active=str(entry.get("last_active") or ""),
        is_worktree=bool(entry.get("is_worktree", False)),
    )


# ── Inbound decoding ─────────────────────────────────────────────


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"missing field '{key}'")
    return value


def _require_session_id(payload: dict) -> str:
    value = payload.get("session_id") or payload.get("lychee_id")
    if not isinstance(value, str) or not value:
        raise ProtocolError("missing field 'session_id'")
    return value


def _optional_str(payload: dict, key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _decode_sessions_list(payload: dict) -> SessionsList:
    sessions = []
    raw_sessions = payload.get("sessions")
    for entry in raw_sessions if isinstance(raw_sessions, list) else []:
        try:
            sessions.append(parse_session_record(entry))
        except ProtocolError as e:
            logger.debug("Skipping session entry: %s", e)

    active = payload.get("active_session_ids")
    active_ids = tuple(s for s in active if isinstance(s, str)) if isinstance(active, list) else ()

    return SessionsList(
        repo_path=_require_str(payload, "repo_path"),
        sessions=tuple(sessions),
        active_session_ids=active_ids,
        checked_out_session=_optional_str(payload, "checked_out_session"),
        main_dir_uncommitted=bool(payload.get("main_dir_uncommitted", False)),
    )


def _decode_agent_stream(payload: dict) -> AgentStream:
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ProtocolError("stream frame without a data object")
    return AgentStream(
        repo_path=str(payload.get("repo_path") or ""),
        session_id=_require_session_id(payload),
        data=data,
    )


def _decode_client_count(payload: dict) -> ClientCount:
    count = payload.get("count")
    if isinstance(count, bool) or not isinstance(count, int):
        raise ProtocolError("missing field 'count'")
    return ClientCount(count=count)


def _decode_error(payload: dict) -> RelayError:
    message = payload.get("message")
    return RelayError(
        message=str(message) if message is not None else "Unknown error",
        repo_path=_optional_str(payload, "repo_path"),
    )


_DECODERS = {
    "client_connected": lambda p: ClientConnected(
        repo_path=_require_str(p, "repo_path"),
        repo_name=str(p.get("repo_name") or p["repo_path"]),
    ),
    "client_disconnected": lambda p: ClientDisconnected(repo_path=_require_str(p, "repo_path")),
    "sessions_list": _decode_sessions_list,
    "session_created": lambda p: SessionCreated(
        repo_path=_require_str(p, "repo_path"),
        session_id=_require_session_id(p),
    ),
    "session_history": lambda p: SessionHistory(
        repo_path=str(p.get("repo_path") or ""),
        session_id=_require_session_id(p),
        messages=parse_chat_messages(p.get("messages")),
    ),
    "session_update": lambda p: SessionUpdate(
        repo_path=str(p.get("repo_path") or ""),
        session_id=_require_session_id(p),
        new_entries=parse_chat_messages(p.get("new_entries")),
    ),
    "stream_start": lambda p: StreamStart(
        repo_path=str(p.get("repo_path") or ""),
        session_id=_require_session_id(p),
    ),
    "stream_end": lambda p: StreamEnd(
        repo_path=str(p.get("repo_path") or ""),
        session_id=_require_session_id(p),
    ),
    "claude_stream": _decode_agent_stream,
    "client_count": _decode_client_count,
    "error": _decode_error,
}


def decode_event(raw: Union[str, bytes]) -> Optional[InboundEvent]:
    """Decode one inbound frame, or return None if it must be dropped."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
        logger.warning("Failed to parse relay frame: %s", e)
        return None

    if not isinstance(payload, dict):
        logger.warning("Ignoring relay frame that is not an object: %r", type(payload).__name__)
        return None

    event_type = payload.get("type")
    decoder = _DECODERS.get(event_type)
    if decoder is None:
        logger.debug("Ignoring unknown relay frame type: %r", event_type)
        return None

    try:
        return decoder(payload)
    except ProtocolError as e:
        logger.warning("Dropping malformed %s frame: %s", event_type, e)
        return None
