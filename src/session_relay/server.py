"""FastAPI app exposing the live session view to a presentation layer."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from .client import SessionsClient
from .config import get_pending_db_path
from .export import message_to_dict, state_to_dict, timeline_item_to_dict, timeline_to_json
from .pending import SqlitePendingStore

logger = logging.getLogger(__name__)

# Client cache (created on first use)
_client: SessionsClient | None = None


def _get_client() -> SessionsClient:
    """Lazily create and cache the sessions client."""
    global _client
    if _client is None:
        _client = SessionsClient(pending=SqlitePendingStore(get_pending_db_path()))
        logger.info("Relay client targeting %s", _client.connection.url)
    return _client


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = _get_client()
    client.connect()
    yield
    await client.close()


app = FastAPI(title="session-relay", version="0.1.0", lifespan=lifespan)


class SelectRequest(BaseModel):
    repo_path: str
    session_id: str


class CreateRequest(BaseModel):
    repo_path: str
    worktree: bool = False


class RefreshRequest(BaseModel):
    repo_path: str


class MessageRequest(BaseModel):
    content: str


class ModelRequest(BaseModel):
    model: str


class CheckoutRequest(BaseModel):
    revert: bool = False


def _require_repo(client: SessionsClient, repo_path: str) -> None:
    if client.snapshot.find_repo(repo_path) is None:
        raise HTTPException(status_code=404, detail=f"Unknown repo: {repo_path}")


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/state")
async def get_state():
    """Return connection status, selection and the repo/session directory."""
    return state_to_dict(_get_client().snapshot)


@app.get("/api/timeline")
async def get_timeline():
    """Return the selected session's timeline as renderable items."""
    client = _get_client()
    state = client.snapshot
    return {
        "session_id": state.current_session_id,
        "is_streaming": state.is_streaming(state.current_session_id),
        "items": [timeline_item_to_dict(i) for i in client.timeline()],
    }


@app.get("/api/messages")
async def get_messages():
    """Return the raw messages of the selected session."""
    state = _get_client().snapshot
    return {
        "session_id": state.current_session_id,
        "messages": [message_to_dict(m) for m in state.messages],
    }


@app.get("/api/export")
async def export_timeline():
    """Download the selected session's timeline as JSON."""
    client = _get_client()
    state = client.snapshot
    if state.current_session_id is None:
        raise HTTPException(status_code=404, detail="No session selected")

    content = timeline_to_json(state, client.timeline())
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{state.current_session_id}.json"'},
    )


@app.post("/api/select")
async def select_session(body: SelectRequest):
    client = _get_client()
    _require_repo(client, body.repo_path)
    client.select_session(body.repo_path, body.session_id)
    return state_to_dict(client.snapshot)


@app.post("/api/sessions")
async def create_session(body: CreateRequest):
    client = _get_client()
    _require_repo(client, body.repo_path)
    if body.worktree:
        client.create_worktree_session(body.repo_path)
    else:
        client.create_session(body.repo_path)
    return state_to_dict(client.snapshot)


@app.post("/api/sessions/refresh")
async def refresh_sessions(body: RefreshRequest):
    client = _get_client()
    _require_repo(client, body.repo_path)
    client.refresh_sessions(body.repo_path)
    return {"ok": True}


@app.post("/api/messages")
async def send_message(body: MessageRequest):
    client = _get_client()
    if not client.send_chat_message(body.content):
        raise HTTPException(
            status_code=409,
            detail="Message rejected: empty, no session selected, or a response is streaming",
        )
    return {"ok": True, "session_id": client.snapshot.current_session_id}


@app.put("/api/model")
async def set_model(body: ModelRequest):
    client = _get_client()
    client.set_model(body.model)
    return {"selected_model": client.snapshot.selected_model}


@app.post("/api/checkout")
async def checkout(body: CheckoutRequest):
    client = _get_client()
    accepted = client.revert_checkout() if body.revert else client.checkout_branch()
    if not accepted:
        raise HTTPException(status_code=409, detail="Checkout not possible in the current state")
    return {"ok": True}
