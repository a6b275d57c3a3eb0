"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

This module defines typed event names for structured logging.

Design:
- Enum-based (prevents typos, enables autocomplete)
- Hierarchical naming (namespace.category.action)
- Searchable in log aggregators (Elasticsearch, CloudWatch Insights)

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, subscription, message, tls, error
    category: connected, granted, classified
    action: success, failed, resumed

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, message, metadata.topic
    | filter event = "message.received"
    | stats count() by metadata.content_type, bin(5m)
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: Session lifecycle with the broker
    - subscription.*: Topic subscription requests and grants
    - message.*: Inbound message classification and analysis
    - tls.*: Trust bundle loading
    - error.*: Error conditions
    """

    # ========== MQTT Session Events ==========
    MQTT_CLIENT_CREATED = "mqtt.client.created"
    """Protocol engine constructed for the configured broker."""

    MQTT_CONNECTING = "mqtt.connecting"
    """Connect command issued to the protocol engine."""

    MQTT_CONNECTED = "mqtt.connected"
    """Broker acknowledged the handshake (CONNACK)."""

    MQTT_SESSION_NEW = "mqtt.session.new"
    """Broker started a fresh session."""

    MQTT_SESSION_RESUMED = "mqtt.session.resumed"
    """Broker resumed a previous session."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """Broker connection lost or closed."""

    MQTT_OFFLINE = "mqtt.offline"
    """Client has no connection to the broker."""

    MQTT_RECONNECTING = "mqtt.reconnecting"
    """Protocol engine is attempting to reconnect."""

    MQTT_SHUTDOWN_REQUESTED = "mqtt.shutdown.requested"
    """Graceful shutdown requested by the outer process."""

    MQTT_CLOSED = "mqtt.closed"
    """Connection ended; no further connects will be attempted."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully published to broker."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Message publication failed or was refused."""

    # ========== Subscription Events ==========
    SUBSCRIPTION_REQUESTED = "subscription.requested"
    """Subscription request issued for the configured filter set."""

    SUBSCRIPTION_GRANTED = "subscription.granted"
    """Broker granted a topic filter."""

    SUBSCRIPTION_REFUSED = "subscription.refused"
    """Broker refused a topic filter within an otherwise answered request."""

    SUBSCRIPTION_READY = "subscription.ready"
    """All filters answered; ready to receive messages."""

    # ========== Message Events ==========
    MESSAGE_RECEIVED = "message.received"
    """Inbound message delivered by the broker."""

    MESSAGE_STRUCTURED = "message.classified.structured"
    """Payload parsed as a JSON document."""

    MESSAGE_PLAIN_TEXT = "message.classified.plain_text"
    """Payload treated as plain text."""

    MESSAGE_ANALYZED = "message.analyzed"
    """Content analysis finished for a message."""

    # ========== TLS Events ==========
    TLS_CA_LOADED = "tls.ca.loaded"
    """CA bundle loaded; strict certificate verification enabled."""

    TLS_CA_MISSING = "tls.ca.missing"
    """No CA bundle at the configured path; using configured verification."""

    TLS_CA_UNREADABLE = "tls.ca.unreadable"
    """CA bundle exists but could not be read; falling back."""

    # ========== Error Events ==========
    MQTT_ERROR = "error.mqtt"
    """Protocol engine reported an error."""

    MQTT_DNS_ERROR = "error.mqtt.dns"
    """Broker hostname could not be resolved."""

    MQTT_CONNECTION_REFUSED = "error.mqtt.refused"
    """Broker refused the connection."""

    MQTT_CONNECTION_TIMEOUT = "error.mqtt.timeout"
    """Connection attempt timed out."""

    MQTT_TLS_ERROR = "error.mqtt.tls"
    """TLS handshake or certificate verification failed."""

    SUBSCRIPTION_ERROR = "error.subscription"
    """Subscription request failed."""

    MQTT_PUBLISH_ERROR = "error.mqtt_publish"
    """Error during message publication."""

    OBSERVER_ERROR = "error.observer"
    """External observer raised while handling an observation."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CLIENT_CREATED,
    LogEvent.MQTT_CONNECTING,
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_SESSION_NEW,
    LogEvent.MQTT_SESSION_RESUMED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_OFFLINE,
    LogEvent.MQTT_RECONNECTING,
    LogEvent.MQTT_SHUTDOWN_REQUESTED,
    LogEvent.MQTT_CLOSED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
    LogEvent.MQTT_PUBLISH_FAILED,
}

SUBSCRIPTION_EVENTS = {
    LogEvent.SUBSCRIPTION_REQUESTED,
    LogEvent.SUBSCRIPTION_GRANTED,
    LogEvent.SUBSCRIPTION_REFUSED,
    LogEvent.SUBSCRIPTION_READY,
}

MESSAGE_EVENTS = {
    LogEvent.MESSAGE_RECEIVED,
    LogEvent.MESSAGE_STRUCTURED,
    LogEvent.MESSAGE_PLAIN_TEXT,
    LogEvent.MESSAGE_ANALYZED,
}

TLS_EVENTS = {
    LogEvent.TLS_CA_LOADED,
    LogEvent.TLS_CA_MISSING,
    LogEvent.TLS_CA_UNREADABLE,
}

ERROR_EVENTS = {
    LogEvent.MQTT_ERROR,
    LogEvent.MQTT_DNS_ERROR,
    LogEvent.MQTT_CONNECTION_REFUSED,
    LogEvent.MQTT_CONNECTION_TIMEOUT,
    LogEvent.MQTT_TLS_ERROR,
    LogEvent.SUBSCRIPTION_ERROR,
    LogEvent.MQTT_PUBLISH_ERROR,
    LogEvent.OBSERVER_ERROR,
}
