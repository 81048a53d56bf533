"""Durable record of user messages sent but not yet confirmed by the relay."""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path

logger = logging.getLogger(__name__)


class PendingStore(ABC):
    """Key/value capability mapping session id -> last unconfirmed text.

    Implementations must survive a client restart to be useful, but callers
    only rely on get/set/delete.
    """

    @abstractmethod
    def get(self, session_id: str) -> str | None:
        """Return the pending text for a session, if any."""
        ...

    @abstractmethod
    def set(self, session_id: str, text: str) -> None:
        """Record ``text`` as the session's pending write."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Forget the session's pending write."""
        ...


class MemoryPendingStore(PendingStore):
    """Process-local store, for tests and ephemeral clients."""

    def __init__(self):
        self._items: dict[str, str] = {}

    def get(self, session_id: str) -> str | None:
        return self._items.get(session_id)

    def set(self, session_id: str, text: str) -> None:
        self._items[session_id] = text

    def delete(self, session_id: str) -> None:
        self._items.pop(session_id, None)


class SqlitePendingStore(PendingStore):
    """Pending writes kept in a sqlite ItemTable (key TEXT, value TEXT).

    Storage failures are logged and treated as a missing record; they never
    reach the caller.
    """

    KEY_PREFIX = "pending-message-"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _ensure_schema(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with closing(self._connect()) as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS ItemTable "
                    "(key TEXT UNIQUE ON CONFLICT REPLACE, value TEXT)"
                )
                conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Cannot initialize pending store at %s: %s", self.db_path, e)

    def get(self, session_id: str) -> str | None:
        try:
            with closing(self._connect()) as conn:
                cur = conn.cursor()
                cur.execute("SELECT value FROM ItemTable WHERE key = ?", (self.KEY_PREFIX + session_id,))
                row = cur.fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            logger.warning("Failed to read pending message for %s: %s", session_id, e)
            return None

    def set(self, session_id: str, text: str) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.execute("INSERT INTO ItemTable VALUES (?, ?)", (self.KEY_PREFIX + session_id, text))
                conn.commit()
        except sqlite3.Error as e:
            logger.warning("Failed to store pending message for %s: %s", session_id, e)

    def delete(self, session_id: str) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.execute("DELETE FROM ItemTable WHERE key = ?", (self.KEY_PREFIX + session_id,))
                conn.commit()
        except sqlite3.Error as e:
            logger.warning("Failed to clear pending message for %s: %s", session_id, e)
