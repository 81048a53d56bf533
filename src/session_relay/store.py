"""Observable state store holding the current SessionsState snapshot."""

import logging
from dataclasses import replace
from typing import Callable

from .core import SessionsState

logger = logging.getLogger(__name__)

Listener = Callable[[], None]
Updater = Callable[[SessionsState], SessionsState]


class StateStore:
    """Single mutable reference to an immutable snapshot.

    ``update`` commits a new snapshot and synchronously notifies every
    listener, in subscription order, with no payload. Listeners pull the
    latest snapshot with ``get_snapshot``.
    """

    def __init__(self, initial: SessionsState | None = None):
        self._initial = initial or SessionsState()
        self._state = self._initial
        self._listeners: list[Listener] = []

    def get_snapshot(self) -> SessionsState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, updater: Updater) -> bool:
        """Apply ``updater`` to the current snapshot.

        Returns False, without notifying, when the updater hands back the
        snapshot it was given.
        """
        prev = self._state
        nxt = updater(prev)
        if nxt is prev:
            return False
        self._commit(replace(nxt, version=prev.version + 1))
        return True

    def reset(self, **overrides) -> None:
        """Return to the initial snapshot, keeping the version monotonic."""
        prev = self._state
        self._commit(replace(self._initial, version=prev.version + 1, **overrides))

    def _commit(self, state: SessionsState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State listener %r failed", listener)
