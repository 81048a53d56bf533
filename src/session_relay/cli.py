"""CLI entry point for session-relay."""

import asyncio
import logging
import os

import click
import uvicorn

from .client import SessionsClient
from .config import get_pending_db_path, get_relay_url
from .pending import SqlitePendingStore


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Follow coding sessions brokered by a relay."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--relay-url", default=None, help="Relay WebSocket URL.")
def serve(port: int, host: str, relay_url: str | None):
    """Start the HTTP interface."""
    if relay_url:
        os.environ["SESSION_RELAY_URL"] = relay_url
    click.echo(f"Starting session-relay on http://{host}:{port} (relay {get_relay_url()})")
    uvicorn.run("session_relay.server:app", host=host, port=port, reload=False)


@main.command()
@click.option("--relay-url", default=None, help="Relay WebSocket URL.")
def watch(relay_url: str | None):
    """Print connection and directory changes until interrupted."""
    try:
        asyncio.run(_watch(relay_url or get_relay_url()))
    except KeyboardInterrupt:
        pass


async def _watch(url: str) -> None:
    client = SessionsClient(url, pending=SqlitePendingStore(get_pending_db_path()))
    last = {"status": None, "repos": None}

    def on_change() -> None:
        state = client.snapshot
        if state.connection_status != last["status"]:
            last["status"] = state.connection_status
            click.echo(f"[{state.connection_status.value}] {url}")

        repos = tuple(
            (r.path, tuple((s.session_id, s.is_streaming) for s in r.sessions))
            for r in state.repos
        )
        if repos != last["repos"]:
            last["repos"] = repos
            for repo in state.repos:
                click.echo(f"  {repo.name} ({repo.path}): {len(repo.sessions)} session(s)")
                for session in repo.sessions:
                    marker = "*" if session.is_streaming else " "
                    click.echo(f"   {marker} {session.session_id}  last active {session.last_active or '-'}")

    client.subscribe(on_change)
    client.connect()
    try:
        await asyncio.Event().wait()
    finally:
        await client.close()
