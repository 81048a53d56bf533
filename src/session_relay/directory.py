"""Repo/session directory reducers.

Each function takes the current snapshot and returns the next one (or the
same object when nothing changes).
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from .core import RepoRecord, SessionRecord, SessionsState
from .protocol import SessionsList

logger = logging.getLogger(__name__)


def upsert_repo_on_connect(state: SessionsState, repo_path: str, repo_name: str) -> SessionsState:
    """Add a repo announced by the relay; a known path is left untouched."""
    if state.find_repo(repo_path) is not None:
        return state
    repos = [*state.repos, RepoRecord(name=repo_name, path=repo_path)]
    return replace(state, repos=_sort_repos(repos))


def remove_repo_on_disconnect(state: SessionsState, repo_path: str) -> SessionsState:
    """Drop a repo, clearing the selection only if it pointed into that repo."""
    if state.find_repo(repo_path) is None:
        return state

    repos = tuple(r for r in state.repos if r.path != repo_path)
    if state.active_repo_path != repo_path:
        return replace(state, repos=repos)

    return replace(
        state,
        repos=repos,
        active_repo_path=None,
        current_session_id=None,
        messages=(),
    )


def apply_sessions_list(state: SessionsState, event: SessionsList) -> SessionsState:
    """Replace a repo's sessions wholesale.

    Active session ids declared by the relay are only ever added to the
    active stream set; removal is left to stream-end signals so that a
    listing produced mid-stream cannot clear the flag.
    """
    active_streams = state.active_streams.union(event.active_session_ids)

    repos = []
    found = False
    for repo in state.repos:
        if repo.path == event.repo_path:
            found = True
            repo = replace(
                repo,
                sessions=_sort_sessions(event.sessions),
                checked_out_session=event.checked_out_session,
                main_dir_uncommitted=event.main_dir_uncommitted,
            )
        repos.append(repo)

    if not found:
        logger.debug("Sessions listed for unknown repo %s", event.repo_path)

    return replace(
        state,
        active_streams=active_streams,
        repos=_with_stream_flags(repos, active_streams),
    )


def apply_stream_flags(state: SessionsState, active_streams: frozenset[str]) -> SessionsState:
    """Set the active stream set and fan it out to every SessionRecord."""
    return replace(
        state,
        active_streams=frozenset(active_streams),
        repos=_with_stream_flags(state.repos, active_streams),
    )


def add_session(state: SessionsState, repo_path: str, session_id: str) -> SessionsState:
    """Insert a just-created session ahead of the next listing."""
    repo = state.find_repo(repo_path)
    if repo is None or any(s.session_id == session_id for s in repo.sessions):
        return state

    now = datetime.now(timezone.utc).isoformat()
    session = SessionRecord(
        session_id=session_id,
        created_at=now,
        last_active=now,
        is_streaming=session_id in state.active_streams,
    )
    return _replace_repo(state, replace(repo, sessions=_sort_sessions([session, *repo.sessions])))


def record_agent_session_id(state: SessionsState, session_id: str, agent_session_id: str) -> SessionsState:
    """Remember the upstream agent's id for a session."""
    repos = []
    changed = False
    for repo in state.repos:
        sessions = []
        for session in repo.sessions:
            if session.session_id == session_id and session.agent_session_id != agent_session_id:
                session = replace(session, agent_session_id=agent_session_id)
                changed = True
            sessions.append(session)
        repos.append(replace(repo, sessions=tuple(sessions)))
    if not changed:
        return state
    return replace(state, repos=tuple(repos))


def select_session(state: SessionsState, repo_path: str, session_id: str) -> SessionsState:
    """Point the timeline at another session; its history arrives separately."""
    return replace(
        state,
        active_repo_path=repo_path,
        current_session_id=session_id,
        messages=(),
        is_creating_session=False,
        creating_session_for_repo=None,
    )


# ── Private helpers ──────────────────────────────────────────────


def _replace_repo(state: SessionsState, updated: RepoRecord) -> SessionsState:
    return replace(
        state,
        repos=tuple(updated if r.path == updated.path else r for r in state.repos),
    )


def _sort_repos(repos: Iterable[RepoRecord]) -> tuple[RepoRecord, ...]:
    return tuple(sorted(repos, key=lambda r: r.name.casefold()))


def _sort_sessions(sessions: Iterable[SessionRecord]) -> tuple[SessionRecord, ...]:
    # Stable: equal timestamps keep arrival order even with reverse=True.
    return tuple(
        sorted(sessions, key=lambda s: _parse_iso(s.last_active) or _epoch(), reverse=True)
    )


def _with_stream_flags(repos: Iterable[RepoRecord], active_streams) -> tuple[RepoRecord, ...]:
    return tuple(
        replace(
            repo,
            sessions=tuple(
                replace(s, is_streaming=s.session_id in active_streams) for s in repo.sessions
            ),
        )
        for repo in repos
    )


def _parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 datetime string as an aware datetime."""
    if not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _epoch() -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc)
