"""
Connection lifecycle state for the session transport.

Owned exclusively by SessionTransport; observers only ever see it through
on_state_change notifications and the read-only `state` property.

Transitions:
    DISCONNECTED --connect()--> CONNECTING --open--> CONNECTED
    CONNECTED --close/error/heartbeat--> RECONNECTING | ERRORED
    RECONNECTING --backoff elapsed--> CONNECTING
    any --disconnect()--> DISCONNECTED
"""
from enum import Enum

class ConnectionState(str, Enum):
    """
    Exclusive connection lifecycle state.

    Independent of any capture or playback activity.
    """
    DISCONNECTED = "disconnected"   # No socket, no pending reconnect
    CONNECTING = "connecting"       # Socket open in progress
    CONNECTED = "connected"         # Socket open, heartbeat running
    RECONNECTING = "reconnecting"   # Waiting out a backoff delay
    ERRORED = "errored"             # Retry budget exhausted
