"""Export store snapshots and timeline items as JSON-serializable dicts."""

import json

from .core import ChatMessage, RepoRecord, SessionRecord, SessionsState, TimelineItem
from .protocol import block_to_dict, content_to_wire


def session_to_dict(session: SessionRecord) -> dict:
    return {
        "session_id": session.session_id,
        "agent_session_id": session.agent_session_id,
        "created_at": session.created_at,
        "last_active": session.last_active,
        "is_worktree": session.is_worktree,
        "is_streaming": session.is_streaming,
    }


def repo_to_dict(repo: RepoRecord) -> dict:
    return {
        "name": repo.name,
        "path": repo.path,
        "checked_out_session": repo.checked_out_session,
        "main_dir_uncommitted": repo.main_dir_uncommitted,
        "sessions": [session_to_dict(s) for s in repo.sessions],
    }


def message_to_dict(msg: ChatMessage) -> dict:
    return {
        "role": msg.role,
        "content": content_to_wire(msg.content),
        "is_side_channel": msg.is_side_channel,
        "client_temp_id": msg.client_temp_id,
        "uuid": msg.uuid,
        "timestamp": msg.timestamp,
    }


def timeline_item_to_dict(item: TimelineItem) -> dict:
    data = {"id": item.id, "type": item.kind, "content": item.content}
    if item.kind == "worklog":
        data["worklog"] = [
            {
                "tool": block_to_dict(entry.tool),
                "preceding_context": entry.preceding_context,
            }
            for entry in item.worklog
        ]
    return data


def state_to_dict(state: SessionsState) -> dict:
    """Summarize a snapshot without its message timeline."""
    return {
        "version": state.version,
        "connection_status": state.connection_status.value,
        "client_count": state.client_count,
        "active_repo_path": state.active_repo_path,
        "current_session_id": state.current_session_id,
        "is_creating_session": state.is_creating_session,
        "creating_session_for_repo": state.creating_session_for_repo,
        "selected_model": state.selected_model,
        "active_streams": sorted(state.active_streams),
        "repos": [repo_to_dict(r) for r in state.repos],
    }


def timeline_to_json(state: SessionsState, items: list[TimelineItem]) -> str:
    """Export the selected session's timeline as structured JSON."""
    data = {
        "session_id": state.current_session_id,
        "repo_path": state.active_repo_path,
        "is_streaming": state.is_streaming(state.current_session_id),
        "items": [timeline_item_to_dict(i) for i in items],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
