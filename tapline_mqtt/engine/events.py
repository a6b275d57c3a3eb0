"""
Engine Events
=============

Bounded Context: Protocol Engine Interface

Tagged union of everything the protocol engine reports. Events are put on a
single ordered queue and consumed by one SessionController loop, so handlers
never run concurrently.

Lifecycle:
    Connected, Disconnected, Offline, Reconnecting, Closed, ErrorOccurred
Traffic:
    MessageReceived, SubscriptionGranted, SubscriptionFailed, PublishCompleted
Local:
    ShutdownRequested (queued by the controller itself on disconnect())
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..schemas import InboundMessage

# SUBACK return codes at or above this value mean the filter was refused
SUBACK_FAILURE = 0x80


@dataclass(frozen=True)
class Connected:
    """Broker acknowledged the handshake."""
    session_present: bool = False


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


@dataclass(frozen=True)
class ErrorOccurred:
    """Engine-level error; does not change connection state by itself."""
    cause: BaseException


@dataclass(frozen=True)
class Disconnected:
    """
    Connection to the broker ended.

    Attributes:
        reason_code: Numeric reason code, when the engine has one
        reason: Human-readable reason
        requested: True when we asked for the disconnect
    """
    reason_code: Optional[int] = None
    reason: Optional[str] = None
    requested: bool = False


@dataclass(frozen=True)
class Offline:
    """No connection to the broker; the engine keeps retrying."""
    pass


@dataclass(frozen=True)
class Reconnecting:
    """The engine scheduled another connection attempt."""
    attempt: int = 0


@dataclass(frozen=True)
class Closed:
    """Engine finished; terminal."""
    pass


@dataclass(frozen=True)
class SubscriptionGranted:
    """
    Broker answered a subscription request.

    Attributes:
        request_id: Identifier returned by ProtocolEngine.subscribe()
        granted: Granted QoS (or failure code >= 0x80) per filter, in request order
    """
    request_id: int
    granted: Tuple[int, ...]


@dataclass(frozen=True)
class SubscriptionFailed:
    request_id: Optional[int]
    cause: BaseException


@dataclass(frozen=True)
class PublishCompleted:
    request_id: int
    reason_code: int = 0


@dataclass(frozen=True)
class ShutdownRequested:
    pass


EngineEvent = Union[
    Connected,
    MessageReceived,
    ErrorOccurred,
    Disconnected,
    Offline,
    Reconnecting,
    Closed,
    SubscriptionGranted,
    SubscriptionFailed,
    PublishCompleted,
    ShutdownRequested,
]
