"""Tests for the FastAPI server."""

import pytest
from httpx import ASGITransport, AsyncClient

from session_relay.protocol import CheckoutBranch, CreateWorktreeSession, ListSessions, SendMessage
from session_relay.server import app

from conftest import frame, select


@pytest.fixture(autouse=True)
def client(recording_client):
    """Serve a recording client instead of a live relay connection."""
    import session_relay.server as srv
    srv._client = recording_client
    yield recording_client
    srv._client = None


@pytest.fixture
def selected(client):
    select(client)
    return client


async def _request(method, url, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        return await http.request(method, url, **kwargs)


@pytest.mark.asyncio
async def test_get_state(selected):
    resp = await _request("GET", "/api/state")
    assert resp.status_code == 200
    data = resp.json()
    assert data["connection_status"] == "idle"
    assert data["current_session_id"] == "s1"
    assert data["repos"][0]["path"] == "/work/app"
    assert data["repos"][0]["sessions"][0]["session_id"] == "s1"


@pytest.mark.asyncio
async def test_get_timeline(selected):
    selected.handle_frame(frame(
        type="session_history", repo_path="/work/app", session_id="s1",
        messages=[
            {"role": "user", "content": "go"},
            {"role": "assistant", "content": [
                {"type": "text", "text": "Sure"},
                {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
            ]},
        ],
    ))

    resp = await _request("GET", "/api/timeline")
    assert resp.status_code == 200
    data = resp.json()
    assert data["session_id"] == "s1"
    assert data["is_streaming"] is False
    assert [item["type"] for item in data["items"]] == ["user", "assistant-text", "worklog"]
    assert data["items"][2]["worklog"][0]["tool"]["name"] == "Bash"
    assert data["items"][2]["worklog"][0]["preceding_context"] == "Sure"


@pytest.mark.asyncio
async def test_get_messages(selected):
    selected.send_chat_message("hello")
    resp = await _request("GET", "/api/messages")
    assert resp.status_code == 200
    messages = resp.json()["messages"]
    assert messages[-1]["content"] == "hello"
    assert messages[-1]["client_temp_id"].startswith("temp-")


@pytest.mark.asyncio
async def test_export_requires_selection():
    resp = await _request("GET", "/api/export")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_export_timeline(selected):
    resp = await _request("GET", "/api/export")
    assert resp.status_code == 200
    assert "attachment" in resp.headers["content-disposition"]
    assert resp.json()["session_id"] == "s1"


@pytest.mark.asyncio
async def test_select_unknown_repo():
    resp = await _request("POST", "/api/select", json={"repo_path": "/nope", "session_id": "s1"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_select_and_create(selected):
    resp = await _request("POST", "/api/select", json={"repo_path": "/work/app", "session_id": "s1"})
    assert resp.status_code == 200

    resp = await _request("POST", "/api/sessions", json={"repo_path": "/work/app", "worktree": True})
    assert resp.status_code == 200
    assert resp.json()["is_creating_session"] is True
    assert selected.connection.commands()[-1] == CreateWorktreeSession(repo_path="/work/app")


@pytest.mark.asyncio
async def test_refresh_sessions(selected):
    resp = await _request("POST", "/api/sessions/refresh", json={"repo_path": "/work/app"})
    assert resp.status_code == 200
    assert selected.connection.commands()[-1] == ListSessions(repo_path="/work/app")


@pytest.mark.asyncio
async def test_send_message(selected):
    resp = await _request("PUT", "/api/model", json={"model": "claude-opus-4-1"})
    assert resp.json() == {"selected_model": "claude-opus-4-1"}

    resp = await _request("POST", "/api/messages", json={"content": "run the tests"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "session_id": "s1"}
    assert selected.connection.commands()[-1] == SendMessage(
        repo_path="/work/app", session_id="s1", content="run the tests", model="claude-opus-4-1"
    )


@pytest.mark.asyncio
async def test_send_message_rejected():
    resp = await _request("POST", "/api/messages", json={"content": "hello"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_checkout(selected):
    resp = await _request("POST", "/api/checkout", json={})
    assert resp.status_code == 200
    assert selected.connection.commands()[-1] == CheckoutBranch(repo_path="/work/app", session_id="s1")

    selected.handle_frame(frame(type="stream_start", repo_path="/work/app", session_id="s1"))
    resp = await _request("POST", "/api/checkout", json={"revert": True})
    assert resp.status_code == 409
