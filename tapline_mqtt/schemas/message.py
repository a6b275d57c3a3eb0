"""
Subscription and inbound message types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .common import validate_qos, validate_topic_filter

CATCH_ALL_FILTER = "#"


@dataclass(frozen=True)
class Subscription:
    """
    A topic filter and the QoS requested for it.

    Attributes:
        topic_filter: Filter, may contain '+' and '#' wildcards
        qos: Requested QoS

    Example:
        >>> Subscription.catch_all(qos=1)
        Subscription(topic_filter='#', qos=1)
    """
    topic_filter: str
    qos: int = 1

    def __post_init__(self):
        validate_topic_filter(self.topic_filter)
        validate_qos(self.qos)

    @classmethod
    def catch_all(cls, qos: int = 1) -> 'Subscription':
        """Filter matching every topic."""
        return cls(topic_filter=CATCH_ALL_FILTER, qos=qos)


@dataclass(frozen=True)
class InboundMessage:
    """
    One delivery from the broker.

    Consumed exactly once by the classification pipeline; never persisted.

    Attributes:
        topic: Topic the message was published on
        payload: Raw payload bytes
        qos: Delivery QoS
        retain: Retain flag
        packet_id: MQTT packet identifier (QoS > 0 only)
        received_at: Reception time (UTC)
    """
    topic: str
    payload: bytes
    qos: int = 0
    retain: bool = False
    packet_id: Optional[int] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.payload)
