"""Environment-driven configuration and platform-aware state paths."""

import logging
import os
import sys
from pathlib import Path

from .core import DEFAULT_MODEL

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "ws://localhost:3001/ws"
DEFAULT_RECONNECT_DELAY = 1.5


def get_relay_url() -> str:
    """Return the WebSocket URL of the relay."""
    return os.environ.get("SESSION_RELAY_URL") or DEFAULT_RELAY_URL


def get_state_path() -> Path:
    """Return the directory holding durable client state."""
    env = os.environ.get("SESSION_RELAY_STATE_PATH")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "session-relay"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "session-relay"
    else:  # Linux
        return Path.home() / ".local" / "share" / "session-relay"


def get_pending_db_path() -> Path:
    """Return the sqlite file storing unconfirmed outbound messages."""
    return get_state_path() / "pending.db"


def get_reconnect_delay() -> float:
    """Return the fixed delay in seconds between reconnect attempts."""
    env = os.environ.get("SESSION_RELAY_RECONNECT_DELAY")
    if env:
        try:
            return max(0.0, float(env))
        except ValueError:
            logger.warning("Ignoring invalid SESSION_RELAY_RECONNECT_DELAY=%r", env)
    return DEFAULT_RECONNECT_DELAY


def get_default_model() -> str:
    return os.environ.get("SESSION_RELAY_MODEL") or DEFAULT_MODEL
