"""Tests for SessionsClient event dispatch and user actions."""

from session_relay.core import ConnectionState
from session_relay.protocol import (
    CheckoutBranch,
    CreateSession,
    CreateWorktreeSession,
    ListSessions,
    LoadSession,
    RevertCheckout,
    SendMessage,
)

from conftest import frame, select


def _commands(client):
    return client.connection.commands()


class TestDispatch:

    def test_select_flow(self, recording_client):
        select(recording_client)

        state = recording_client.snapshot
        assert state.active_repo_path == "/work/app"
        assert state.current_session_id == "s1"
        assert [s.session_id for s in state.find_repo("/work/app").sessions] == ["s1"]
        assert _commands(recording_client) == [
            ListSessions(repo_path="/work/app"),
            LoadSession(repo_path="/work/app", session_id="s1"),
        ]

    def test_repeated_connect_rerequests_sessions(self, recording_client):
        for _ in range(2):
            recording_client.handle_frame(frame(type="client_connected", repo_path="/w", repo_name="w"))
        assert len(recording_client.snapshot.repos) == 1
        assert _commands(recording_client) == [ListSessions(repo_path="/w")] * 2

    def test_session_created_selects_new_session(self, recording_client):
        select(recording_client)
        recording_client.create_session("/work/app")
        assert recording_client.snapshot.is_creating_session is True
        assert recording_client.snapshot.creating_session_for_repo == "/work/app"

        recording_client.handle_frame(frame(type="session_created", repo_path="/work/app", session_id="s2"))

        state = recording_client.snapshot
        assert state.is_creating_session is False
        assert state.creating_session_for_repo is None
        assert state.current_session_id == "s2"
        assert "s2" in [s.session_id for s in state.find_repo("/work/app").sessions]
        assert _commands(recording_client)[-3:] == [
            CreateSession(repo_path="/work/app"),
            ListSessions(repo_path="/work/app"),
            LoadSession(repo_path="/work/app", session_id="s2"),
        ]

    def test_worktree_session_and_refresh(self, recording_client):
        recording_client.create_worktree_session("/work/app")
        recording_client.refresh_sessions("/work/app")
        assert _commands(recording_client) == [
            CreateWorktreeSession(repo_path="/work/app"),
            ListSessions(repo_path="/work/app"),
        ]

    def test_error_with_selection_appends_system_message(self, recording_client):
        select(recording_client)
        recording_client.create_session("/work/app")

        recording_client.handle_frame(frame(type="error", message="Repo is busy"))

        state = recording_client.snapshot
        assert state.messages[-1].role == "system"
        assert state.messages[-1].content == "Repo is busy"
        assert state.is_creating_session is False

    def test_error_without_selection_only_clears_flags(self, recording_client):
        recording_client.create_session("/work/app")
        recording_client.handle_frame(frame(type="error", message="no such repo"))

        state = recording_client.snapshot
        assert state.messages == ()
        assert state.is_creating_session is False

    def test_client_count(self, recording_client):
        seen = []
        recording_client.subscribe(lambda: seen.append(recording_client.snapshot.client_count))

        recording_client.handle_frame(frame(type="client_count", count=3))
        recording_client.handle_frame(frame(type="client_count", count=3))

        assert seen == [3]

    def test_disconnect_of_selected_repo(self, recording_client):
        select(recording_client)
        recording_client.handle_frame(frame(type="client_disconnected", repo_path="/work/app"))

        state = recording_client.snapshot
        assert state.repos == ()
        assert state.current_session_id is None

    def test_connection_loss_resets_but_keeps_model(self, recording_client):
        recording_client.set_model("claude-opus-4-1")
        select(recording_client)

        recording_client._on_disconnect(ConnectionState.ERROR)

        state = recording_client.snapshot
        assert state.repos == ()
        assert state.current_session_id is None
        assert state.connection_status is ConnectionState.ERROR
        assert state.selected_model == "claude-opus-4-1"


class TestSendChatMessage:

    def test_send_round_trip(self, recording_client, pending):
        select(recording_client)
        recording_client.set_model("claude-opus-4-1")

        assert recording_client.send_chat_message("hello") is True
        assert _commands(recording_client)[-1] == SendMessage(
            repo_path="/work/app", session_id="s1", content="hello", model="claude-opus-4-1"
        )
        assert pending.get("s1") == "hello"
        assert recording_client.snapshot.messages[-1].is_temp

        recording_client.handle_frame(frame(
            type="session_update", repo_path="/work/app", session_id="s1",
            new_entries=[{"type": "user", "message": {"role": "user", "content": "hello"}}],
        ))
        recording_client.handle_frame(frame(type="stream_start", repo_path="/work/app", session_id="s1"))
        recording_client.handle_frame(frame(
            type="claude_stream", repo_path="/work/app", session_id="s1",
            data={"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi!"}]}},
        ))
        recording_client.handle_frame(frame(type="stream_end", repo_path="/work/app", session_id="s1"))

        state = recording_client.snapshot
        assert pending.get("s1") is None
        assert not any(m.is_temp for m in state.messages)
        assert not state.is_streaming("s1")
        assert [(item.kind, item.content) for item in recording_client.timeline()] == [
            ("user", "hello"),
            ("assistant-text", "Hi!"),
        ]

    def test_confirmation_during_stream_keeps_question_first(self, recording_client):
        select(recording_client)
        recording_client.handle_frame(frame(
            type="session_history", repo_path="/work/app", session_id="s1",
            messages=[{"role": "user", "content": "a"}, {"role": "assistant", "content": "prev"}],
        ))

        recording_client.send_chat_message("hello")
        recording_client.handle_frame(frame(
            type="claude_stream", repo_path="/work/app", session_id="s1", data={"type": "init"},
        ))
        recording_client.handle_frame(frame(
            type="claude_stream", repo_path="/work/app", session_id="s1",
            data={"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi!"}]}},
        ))
        recording_client.handle_frame(frame(
            type="session_update", repo_path="/work/app", session_id="s1",
            new_entries=[{"role": "user", "content": "hello"}],
        ))

        assert [(item.kind, item.content) for item in recording_client.timeline()] == [
            ("user", "a"),
            ("assistant-text", "prev"),
            ("user", "hello"),
            ("assistant-text", "Hi!"),
        ]

    def test_saved_turn_replaces_streamed_turn(self, recording_client):
        select(recording_client)
        recording_client.send_chat_message("hello")
        tool = {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}}
        for data in [
            {"type": "init"},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Sure"}, tool]}},
            {"type": "result"},
        ]:
            recording_client.handle_frame(frame(
                type="claude_stream", repo_path="/work/app", session_id="s1", data=data,
            ))

        recording_client.handle_frame(frame(
            type="session_update", repo_path="/work/app", session_id="s1",
            new_entries=[
                {"type": "user", "message": {"role": "user", "content": "hello"}},
                {"type": "assistant", "message": {"role": "assistant",
                                                  "content": [{"type": "text", "text": "Sure"}, tool]}},
            ],
        ))

        items = recording_client.timeline()
        assert [(item.kind, item.content) for item in items] == [
            ("user", "hello"),
            ("assistant-text", "Sure"),
            ("worklog", ""),
        ]
        assert [w.tool.id for w in items[2].worklog] == ["t1"]
        assert [m.role for m in recording_client.snapshot.messages] == ["user", "assistant"]

    def test_rejected_while_streaming(self, recording_client):
        select(recording_client)
        recording_client.handle_frame(frame(type="stream_start", repo_path="/work/app", session_id="s1"))

        assert recording_client.send_chat_message("again") is False
        assert not any(isinstance(c, SendMessage) for c in _commands(recording_client))

    def test_rejected_without_selection(self, recording_client):
        assert recording_client.send_chat_message("hello") is False
        assert _commands(recording_client) == []

    def test_pending_write_survives_reload(self, recording_client, pending):
        pending.set("s1", "typed before reload")
        select(recording_client)

        messages = recording_client.snapshot.messages
        assert len(messages) == 1
        assert messages[0].client_temp_id == "temp-pending-s1"


class TestCheckout:

    def test_checkout_and_revert(self, recording_client):
        select(recording_client)

        assert recording_client.checkout_branch() is True
        assert recording_client.revert_checkout() is True
        assert _commands(recording_client)[-2:] == [
            CheckoutBranch(repo_path="/work/app", session_id="s1"),
            RevertCheckout(repo_path="/work/app", session_id="s1"),
        ]

    def test_requires_selection(self, recording_client):
        assert recording_client.checkout_branch() is False

    def test_refused_while_streaming(self, recording_client):
        select(recording_client)
        recording_client.handle_frame(frame(type="stream_start", repo_path="/work/app", session_id="s1"))
        assert recording_client.checkout_branch() is False

    def test_refused_with_uncommitted_main_dir(self, recording_client):
        select(recording_client)
        recording_client.handle_frame(frame(
            type="sessions_list", repo_path="/work/app",
            sessions=[{"session_id": "s1"}], main_dir_uncommitted=True,
        ))
        assert recording_client.checkout_branch() is False
