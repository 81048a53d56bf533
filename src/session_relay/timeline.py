"""Partition a session's messages into renderable timeline items.

Side-channel messages and tool-result acknowledgements are dropped. User and
system messages stand alone. Each run of consecutive assistant messages is an
exchange, rendered as: leading text, a worklog of tool invocations, trailing
text.
"""

from .core import (
    ChatMessage,
    TimelineItem,
    WorklogItem,
    is_tool_result_message,
    text_of,
    tool_uses_of,
)


def segment_messages(messages) -> list[TimelineItem]:
    """Transform raw messages into timeline items, preserving order."""
    clean = [m for m in messages if not m.is_side_channel and not is_tool_result_message(m)]

    items: list[TimelineItem] = []
    exchange_num = 0
    i = 0
    while i < len(clean):
        msg = clean[i]

        if msg.role != "assistant":
            kind = "user" if msg.role == "user" else "system"
            items.append(TimelineItem(
                id=f"{kind}-{i}",
                kind=kind,
                content=text_of(msg.content),
                message=msg,
            ))
            i += 1
            continue

        exchange = []
        while i < len(clean) and clean[i].role == "assistant":
            exchange.append(clean[i])
            i += 1

        items.extend(_process_exchange(exchange, f"exchange-{exchange_num}"))
        exchange_num += 1

    return items


def _process_exchange(msgs: list[ChatMessage], exchange_id: str) -> list[TimelineItem]:
    if len(msgs) == 1:
        return _process_single(msgs[0], exchange_id)
    return _process_multi(msgs, exchange_id)


def _process_single(msg: ChatMessage, exchange_id: str) -> list[TimelineItem]:
    """One assistant message, typically the one being streamed.

    Text and tools share the message, so the text is split where the first
    tool appeared.
    """
    text = text_of(msg.content)
    tools = tool_uses_of(msg.content)

    if not tools:
        return [_text_item(f"{exchange_id}-text", text, msg)]

    offset = msg.tool_text_offset
    if offset is None:
        offset = _text_before_first_tool(msg.content)
    offset = max(0, min(offset, len(text)))
    before, after = text[:offset], text[offset:]

    items = []
    if before.strip():
        items.append(_text_item(f"{exchange_id}-initial", before, msg))

    context = before if before.strip() else None
    items.append(TimelineItem(
        id=f"{exchange_id}-worklog",
        kind="worklog",
        worklog=tuple(WorklogItem(tool=t, preceding_context=context, message=msg) for t in tools),
    ))

    if after.strip() and after != before:
        items.append(_text_item(f"{exchange_id}-final", after, msg))

    return items


def _process_multi(msgs: list[ChatMessage], exchange_id: str) -> list[TimelineItem]:
    """Several assistant messages, as replayed from a transcript where each
    tool call is its own entry."""
    first_text = text_of(msgs[0].content)
    last_text = text_of(msgs[-1].content)

    items = []
    if first_text.strip():
        items.append(_text_item(f"{exchange_id}-initial", first_text, msgs[0]))

    context = first_text or None
    worklog = []
    for j, msg in enumerate(msgs):
        msg_text = text_of(msg.content)
        if j > 0 and msg_text.strip():
            context = msg_text
        for tool in tool_uses_of(msg.content):
            worklog.append(WorklogItem(tool=tool, preceding_context=context, message=msg))

    if worklog:
        items.append(TimelineItem(
            id=f"{exchange_id}-worklog",
            kind="worklog",
            worklog=tuple(worklog),
        ))

    if last_text.strip() and last_text != first_text:
        items.append(_text_item(f"{exchange_id}-final", last_text, msgs[-1]))

    return items


def _text_item(item_id: str, text: str, msg: ChatMessage) -> TimelineItem:
    return TimelineItem(id=item_id, kind="assistant-text", content=text, message=msg)


def _text_before_first_tool(content) -> int:
    """Length of the text that precedes the first tool block."""
    length = 0
    for block in content:
        if block.type == "tool_use":
            break
        if block.type == "text":
            length += len(block.text)
    return length
