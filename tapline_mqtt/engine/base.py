"""
Protocol Engine Interface
=========================

Bounded Context: Protocol Engine Interface

The narrow seam between the session controller and whatever implements the
MQTT wire protocol. Commands go in through methods; everything the engine has
to say comes back as EngineEvent objects through the registered sink.

Responsibilities of an engine:
- CONNECT handshake, keepalive pings, reconnection backoff
- SUBSCRIBE / PUBLISH framing and QoS acknowledgment
- NOT responsible for: session state, classification, logging policy
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence, Union

from ..schemas import ClientIdentity, ConnectionOptions, Subscription
from .events import EngineEvent

EventSink = Callable[[EngineEvent], None]


class ProtocolEngine(ABC):
    """
    Abstract protocol engine.

    Implementations must be constructed with everything needed to validate
    the broker address, raising ConfigurationError when that fails.
    """

    def __init__(self):
        self._sink: Optional[EventSink] = None

    def set_event_sink(self, sink: EventSink) -> None:
        """Register the callable that receives every engine event."""
        self._sink = sink

    def _emit(self, event: EngineEvent) -> None:
        sink = self._sink
        if sink is not None:
            sink(event)

    @abstractmethod
    def connect(self, options: ConnectionOptions) -> None:
        """
        Start connecting; the handshake result arrives as an event.

        Raises:
            ConnectError: If the first attempt failed synchronously. The
                engine keeps retrying in the background.
        """
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, subscriptions: Sequence[Subscription]) -> int:
        """
        Issue one subscription request for all filters.

        Returns:
            Request identifier echoed by SubscriptionGranted/SubscriptionFailed

        Raises:
            SubscribeError: If the request could not be issued
        """
        raise NotImplementedError

    @abstractmethod
    def publish(
        self,
        topic: str,
        payload: Union[str, bytes],
        qos: int = 0,
        retain: bool = False
    ) -> int:
        """
        Publish a message.

        Returns:
            Request identifier echoed by PublishCompleted

        Raises:
            PublishError: If the publish could not be issued
        """
        raise NotImplementedError

    @abstractmethod
    def end(self, force: bool = False) -> None:
        """
        Close the connection; a Closed event follows.

        A graceful end sends DISCONNECT so the broker drops the last will.
        A forced end tears the connection down without waiting.
        """
        raise NotImplementedError


EngineFactory = Callable[[ClientIdentity, ConnectionOptions], ProtocolEngine]
