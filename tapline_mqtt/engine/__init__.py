"""
Protocol engine: the command/event seam over the MQTT wire protocol.

Public API
----------
    ProtocolEngine, EngineFactory, EventSink
    PahoEngine (paho-mqtt implementation)
    Engine events (Connected, MessageReceived, ...)
"""

from .base import EngineFactory, EventSink, ProtocolEngine
from .events import (
    SUBACK_FAILURE,
    Closed,
    Connected,
    Disconnected,
    EngineEvent,
    ErrorOccurred,
    MessageReceived,
    Offline,
    PublishCompleted,
    Reconnecting,
    ShutdownRequested,
    SubscriptionFailed,
    SubscriptionGranted,
)
from .paho import PahoEngine

__all__ = [
    'ProtocolEngine',
    'EngineFactory',
    'EventSink',
    'PahoEngine',
    'SUBACK_FAILURE',
    'EngineEvent',
    'Connected',
    'MessageReceived',
    'ErrorOccurred',
    'Disconnected',
    'Offline',
    'Reconnecting',
    'Closed',
    'SubscriptionGranted',
    'SubscriptionFailed',
    'PublishCompleted',
    'ShutdownRequested',
]
