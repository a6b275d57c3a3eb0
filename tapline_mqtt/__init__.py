"""
Tapline MQTT Package
====================

Bounded Context: Broker Traffic Observation

This package connects to an MQTT broker, subscribes to a set of topic filters
and classifies every inbound payload (structured JSON record or plain text)
for observation. It also publishes on-demand diagnostic messages.

Architecture:
- engine/: Protocol engine seam (ProtocolEngine) and the paho-mqtt engine
- session: SessionController, the connection state machine and event loop
- subscriber: TopicSubscriber, subscribes on every successful connect
- tls: CA bundle loading and SSL context construction
- classifier / analyzer: Pure payload classification and field analysis
- schemas/: Immutable data structures with type safety
- logging/: Structured JSON logging for observability

Design Philosophy:
- Single event path: every lifecycle change flows through one ordered queue
- Immutability: frozen dataclasses for options, messages and results
- Observability: structured logs (JSON) for production queries

Public API
----------
Session:
    SessionController, TopicSubscriber

Engine:
    ProtocolEngine, PahoEngine

Schemas:
    ClientIdentity, Credentials, BrokerAddress, ConnectionOptions,
    TrustPolicy, LastWill, Subscription, InboundMessage, RunStats, ...

Pipeline:
    classify, analyze

Logging:
    LogEvent, StructuredLogger, create_logger

Example:
    >>> from tapline_mqtt import (
    ...     BrokerAddress, ClientIdentity, ConnectionOptions, SessionController,
    ...     Subscription, TopicSubscriber, create_logger
    ... )
    >>>
    >>> logger = create_logger("session")
    >>> controller = SessionController(
    ...     identity=ClientIdentity.generate(),
    ...     options=ConnectionOptions(broker=BrokerAddress.parse("mqtt://localhost:1883")),
    ...     subscriber=TopicSubscriber([Subscription.catch_all(qos=1)], logger),
    ...     logger=logger
    ... )
    >>> controller.connect()
    >>> controller.start()
    >>> controller.publish_diagnostic()
    >>> controller.disconnect()
"""

# Version
__version__ = "1.0.0"

# Schemas
from .schemas import (
    Timestamp,
    Credentials,
    ClientIdentity,
    BrokerAddress,
    LastWill,
    TrustPolicy,
    ConnectionOptions,
    Subscription,
    InboundMessage,
    StructuredRecord,
    PlainText,
    RecordAnalysis,
    TextAnalysis,
    Observation,
    ConnectionState,
    RunStats,
)

# Errors
from .errors import (
    TaplineError,
    ConfigurationError,
    ConnectError,
    SubscribeError,
    PublishError,
    SessionClosedError,
)

# Engine
from .engine import ProtocolEngine, PahoEngine

# Pipeline
from .classifier import classify
from .analyzer import analyze

# Session
from .subscriber import TopicSubscriber
from .session import SessionController

# Logging
from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    # Version
    '__version__',
    # Schemas
    'Timestamp',
    'Credentials',
    'ClientIdentity',
    'BrokerAddress',
    'LastWill',
    'TrustPolicy',
    'ConnectionOptions',
    'Subscription',
    'InboundMessage',
    'StructuredRecord',
    'PlainText',
    'RecordAnalysis',
    'TextAnalysis',
    'Observation',
    'ConnectionState',
    'RunStats',
    # Errors
    'TaplineError',
    'ConfigurationError',
    'ConnectError',
    'SubscribeError',
    'PublishError',
    'SessionClosedError',
    # Engine
    'ProtocolEngine',
    'PahoEngine',
    # Pipeline
    'classify',
    'analyze',
    # Session
    'TopicSubscriber',
    'SessionController',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
