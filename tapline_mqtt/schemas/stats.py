"""
Connection state and run statistics.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class ConnectionState(str, Enum):
    """Session state; owned by exactly one SessionController."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class RunStats:
    """
    Point-in-time snapshot of the session statistics.

    Attributes:
        messages_received: Messages delivered since process start
        client_id: MQTT client identifier
        state: Connection state at snapshot time
        broker: Broker URL
    """
    messages_received: int
    client_id: str
    state: ConnectionState
    broker: str

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'messages_received': self.messages_received,
            'client_id': self.client_id,
            'connected': self.connected,
            'broker': self.broker,
            'state': self.state.value,
        }
