"""
Connection State Machine
========================

Lifecycle of one driver's connection to one device.

Connection states:
    DISCONNECTED - No connection, transport released
    CONNECTING - Transport being opened / handshake in progress
    CONNECTED - Ready for reads and writes
    DISCONNECTING - Graceful close in progress
    FAULTED - Transport failure, resources may still need releasing

Legal transitions:
    DISCONNECTED  -> CONNECTING
    CONNECTING    -> CONNECTED | FAULTED
    CONNECTED     -> DISCONNECTING | FAULTED
    DISCONNECTING -> DISCONNECTED
    FAULTED       -> CONNECTING

Only the owning driver moves the state. Everyone else reads it.
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from scada_protocols.core.data import utc_now
from scada_protocols.core.errors import IllegalTransitionError

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Driver connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    FAULTED = "faulted"


LEGAL_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.FAULTED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTING, ConnectionState.FAULTED},
    ConnectionState.DISCONNECTING: {ConnectionState.DISCONNECTED},
    ConnectionState.FAULTED: {ConnectionState.CONNECTING},
}

# Called as listener(old_state, new_state) after every transition
TransitionListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """
    Thread-safe connection state holder.

    Attributes:
        name: Owner label used in log messages
        transitions: Number of transitions performed
        last_change: Time of the most recent transition
    """

    def __init__(self, name: str = "connection",
                 initial: ConnectionState = ConnectionState.DISCONNECTED):
        self.name = name
        self._state = initial
        self._lock = threading.Lock()
        self._listeners: List[TransitionListener] = []
        self.transitions = 0
        self.last_change: datetime = utc_now()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def can_connect(self) -> bool:
        """Check if a connect attempt may start from the current state"""
        return ConnectionState.CONNECTING in LEGAL_TRANSITIONS[self.state]

    def add_listener(self, listener: TransitionListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def transition(self, new_state: ConnectionState) -> ConnectionState:
        """
        Move to a new state.

        Args:
            new_state: Target state

        Returns:
            The previous state

        Raises:
            IllegalTransitionError: If the transition is not in LEGAL_TRANSITIONS
        """
        with self._lock:
            old_state = self._state
            if new_state not in LEGAL_TRANSITIONS[old_state]:
                raise IllegalTransitionError(
                    f"{self.name}: illegal transition {old_state.name} -> {new_state.name}"
                )
            self._state = new_state
            self.transitions += 1
            self.last_change = utc_now()

        logger.info(f"{self.name}: {old_state.name} -> {new_state.name}")

        # Listeners run outside the lock so they may read the state
        for listener in list(self._listeners):
            listener(old_state, new_state)
        return old_state

    def fault(self, reason: Optional[str] = None) -> bool:
        """
        Move to FAULTED if the current state allows it.

        Returns:
            True if the state changed, False if already faulted or idle
        """
        with self._lock:
            allowed = ConnectionState.FAULTED in LEGAL_TRANSITIONS[self._state]
        if not allowed:
            return False
        if reason:
            logger.warning(f"{self.name}: connection faulted: {reason}")
        self.transition(ConnectionState.FAULTED)
        return True

    def __str__(self):
        return f"{self.name} state={self.state.name} transitions={self.transitions}"
