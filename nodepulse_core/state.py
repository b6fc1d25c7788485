"""Connection state machine shared by the call client.

Pure state: no I/O, no timers. The call client drives transitions and
external code observes socket health only through listeners registered
here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from .errors import InvalidStateTransition

_LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Socket lifecycle state of the call client."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.RECONNECTING}
    ),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.ERROR,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {
            ConnectionState.DISCONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.ERROR,
        }
    ),
    ConnectionState.RECONNECTING: frozenset(
        {
            ConnectionState.CONNECTING,
            ConnectionState.DISCONNECTED,
            ConnectionState.ERROR,
        }
    ),
    ConnectionState.ERROR: frozenset(
        {
            ConnectionState.CONNECTING,
            ConnectionState.RECONNECTING,
            ConnectionState.DISCONNECTED,
        }
    ),
}

StateListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """Tracks the current ConnectionState and notifies listeners on change."""

    def __init__(
        self, initial: ConnectionState = ConnectionState.DISCONNECTED
    ) -> None:
        self._state = initial
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    def can_transition(self, new_state: ConnectionState) -> bool:
        """Return True when moving to new_state is allowed (or a no-op)."""
        if new_state is self._state:
            return True
        return new_state in _ALLOWED_TRANSITIONS[self._state]

    def transition(self, new_state: ConnectionState) -> bool:
        """Move to new_state.

        Returns:
            True if the state changed, False if already in new_state.

        Raises:
            InvalidStateTransition: If the transition is not allowed.
        """
        if new_state is self._state:
            return False
        if not self.can_transition(new_state):
            raise InvalidStateTransition(
                f"Cannot move from {self._state.value} to {new_state.value}"
            )

        old = self._state
        self._state = new_state
        _LOGGER.debug("State: %s → %s", old.value, new_state.value)

        for listener in list(self._listeners):
            try:
                listener(old, new_state)
            except Exception as err:
                _LOGGER.exception("State listener error: %s", err)
        return True

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with (old, new) on every change.

        Returns:
            Callable that removes the listener again.
        """
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove
