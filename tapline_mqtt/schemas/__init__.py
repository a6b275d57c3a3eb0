"""
Tapline Schemas
===============

Bounded Context: Data Structures

Immutable, typed data structures for the session and the classification
pipeline.

Design:
- Frozen dataclasses (immutability)
- Constructors validate invariants (ConfigurationError on bad values)

Public API
----------
Common:
    Timestamp, validate_qos, validate_topic_filter, validate_topic_name

Identity and options:
    Credentials, ClientIdentity
    BrokerAddress, LastWill, TrustPolicy, ConnectionOptions

Messages:
    Subscription, InboundMessage

Classification:
    StructuredRecord, PlainText, ClassifiedContent
    RecordAnalysis, TextAnalysis, ContentAnalysis, Observation

Session:
    ConnectionState, RunStats
"""

from .common import Timestamp, validate_qos, validate_topic_filter, validate_topic_name
from .identity import Credentials, ClientIdentity
from .options import BrokerAddress, LastWill, TrustPolicy, ConnectionOptions
from .message import CATCH_ALL_FILTER, Subscription, InboundMessage
from .content import (
    StructuredRecord,
    PlainText,
    ClassifiedContent,
    RecordAnalysis,
    TextAnalysis,
    ContentAnalysis,
    Observation,
)
from .stats import ConnectionState, RunStats

__all__ = [
    # Common
    'Timestamp',
    'validate_qos',
    'validate_topic_filter',
    'validate_topic_name',
    # Identity and options
    'Credentials',
    'ClientIdentity',
    'BrokerAddress',
    'LastWill',
    'TrustPolicy',
    'ConnectionOptions',
    # Messages
    'CATCH_ALL_FILTER',
    'Subscription',
    'InboundMessage',
    # Classification
    'StructuredRecord',
    'PlainText',
    'ClassifiedContent',
    'RecordAnalysis',
    'TextAnalysis',
    'ContentAnalysis',
    'Observation',
    # Session
    'ConnectionState',
    'RunStats',
]
