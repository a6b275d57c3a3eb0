"""
Test Session Controller (Without Real Broker)
=============================================

Drives SessionController with a recording fake engine: the test emits engine
events by hand and drains them with process_pending(), so every step is
deterministic.

Usage:
    pytest test_session_controller.py
"""

import json
import logging
import socket
import tempfile
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from tapline_mqtt import (
    BrokerAddress,
    ClientIdentity,
    ConfigurationError,
    ConnectionOptions,
    ConnectionState,
    Credentials,
    InboundMessage,
    PublishError,
    SessionClosedError,
    SessionController,
    StructuredLogger,
    Subscription,
    TopicSubscriber,
    TrustPolicy,
)
from tapline_mqtt.engine import (
    Closed,
    Connected,
    Disconnected,
    ErrorOccurred,
    MessageReceived,
    Offline,
    PahoEngine,
    ProtocolEngine,
    Reconnecting,
    SubscriptionFailed,
    SubscriptionGranted,
)
from tapline_mqtt.errors import ConnectError, SubscribeError
from tapline_mqtt.logging import LogEvent

from test_tls_config import generate_ca_pem


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────

class RecordingHandler(logging.Handler):
    """Keeps every structured log entry as a dict."""

    def __init__(self):
        super().__init__()
        self.entries = []

    def emit(self, record):
        self.entries.append(json.loads(self.format(record)))

    def events(self):
        return [entry['event'] for entry in self.entries]

    def having(self, event: LogEvent):
        return [entry for entry in self.entries if entry['event'] == event.value]


class FakeEngine(ProtocolEngine):
    """Records commands; emits Closed on end() unless told not to."""

    def __init__(self, identity, options):
        super().__init__()
        self.identity = identity
        self.options = options
        self.connects = []
        self.subscribe_calls = []
        self.publishes = []
        self.end_calls = []
        self.connect_error = None
        self.fail_subscribe = False
        self.fail_publish = False
        self.ack_graceful_close = True
        self._next_id = 0

    def _request_id(self):
        self._next_id += 1
        return self._next_id

    def connect(self, options):
        self.connects.append(options)
        if self.connect_error is not None:
            raise self.connect_error

    def subscribe(self, subscriptions):
        if self.fail_subscribe:
            raise SubscribeError("not connected")
        self.subscribe_calls.append(tuple(subscriptions))
        return self._request_id()

    def publish(self, topic, payload, qos=0, retain=False):
        if self.fail_publish:
            raise PublishError("queue full")
        self.publishes.append((topic, payload, qos, retain))
        return self._request_id()

    def end(self, force=False):
        self.end_calls.append(force)
        if force or self.ack_graceful_close:
            self._emit(Closed())

    # Test helpers
    def fire(self, event):
        self._emit(event)


SUBSCRIPTIONS = [
    Subscription(topic_filter="sensors/+/temperature", qos=1),
    Subscription(topic_filter="alerts/#", qos=0),
]


def make_controller(broker="mqtt://localhost:1883", subscriptions=None, trust=None, **kwargs):
    """Controller wired to a FakeEngine and a recording logger."""
    handler = RecordingHandler()
    logger = StructuredLogger(component="test_session", level=logging.DEBUG, handlers=[handler])
    engines = []

    def factory(identity, options):
        engine = FakeEngine(identity, options)
        engines.append(engine)
        return engine

    options = ConnectionOptions(
        broker=BrokerAddress.parse(broker),
        trust=trust or TrustPolicy(),
    )
    controller = SessionController(
        identity=ClientIdentity(client_id="tapline_test01", credentials=Credentials("monitor", "pw")),
        options=options,
        subscriber=TopicSubscriber(subscriptions or SUBSCRIPTIONS, logger),
        logger=logger,
        engine_factory=factory,
        **kwargs
    )
    return controller, engines, handler


def connected_controller(**kwargs):
    controller, engines, handler = make_controller(**kwargs)
    controller.connect()
    engines[0].fire(Connected(session_present=False))
    controller.process_pending()
    return controller, engines[0], handler


# ─────────────────────────────────────────────────────────────────────────────
# Connection lifecycle
# ─────────────────────────────────────────────────────────────────────────────

def test_connect_creates_one_engine():
    controller, engines, handler = make_controller()
    assert controller.state is ConnectionState.DISCONNECTED

    controller.connect()

    assert len(engines) == 1
    assert len(engines[0].connects) == 1
    assert controller.state is ConnectionState.CONNECTING
    assert LogEvent.MQTT_CLIENT_CREATED.value in handler.events()
    assert LogEvent.MQTT_CONNECTING.value in handler.events()

    # A second call while connecting is a no-op
    controller.connect()
    assert len(engines) == 1


def test_configuration_error_propagates():
    handler = RecordingHandler()
    logger = StructuredLogger(component="test_session", handlers=[handler])

    def factory(identity, options):
        raise ConfigurationError("bad client id")

    controller = SessionController(
        identity=ClientIdentity.generate(),
        options=ConnectionOptions(broker=BrokerAddress.parse("mqtt://localhost")),
        subscriber=TopicSubscriber([Subscription.catch_all()], logger),
        logger=logger,
        engine_factory=factory,
    )

    with pytest.raises(ConfigurationError):
        controller.connect()
    assert controller.engine is None
    assert controller.state is ConnectionState.DISCONNECTED


def test_connect_error_is_logged_with_diagnosis():
    controller, engines, handler = make_controller()

    def failing_factory(identity, options):
        engine = FakeEngine(identity, options)
        engine.connect_error = ConnectError(
            "lookup failed", cause=socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        )
        engines.append(engine)
        return engine

    controller._engine_factory = failing_factory
    controller.connect()

    assert controller.state is ConnectionState.CONNECTING
    assert handler.having(LogEvent.MQTT_DNS_ERROR)


def test_error_events_are_diagnosed_without_state_change():
    controller, engine, handler = connected_controller()

    engine.fire(ErrorOccurred(ConnectionRefusedError("refused")))
    engine.fire(ErrorOccurred(TimeoutError("timed out")))
    engine.fire(ErrorOccurred(RuntimeError("boom")))
    controller.process_pending()

    assert controller.state is ConnectionState.CONNECTED
    assert handler.having(LogEvent.MQTT_CONNECTION_REFUSED)
    assert handler.having(LogEvent.MQTT_CONNECTION_TIMEOUT)
    diagnoses = [e['metadata']['diagnosis'] for e in handler.having(LogEvent.MQTT_ERROR)]
    assert diagnoses == ["refused", "timeout", "unknown"]


def test_reconnect_cycle_states():
    controller, engine, handler = connected_controller()

    engine.fire(Disconnected(reason_code=7, reason="Unspecified error"))
    controller.process_pending()
    assert controller.state is ConnectionState.RECONNECTING

    engine.fire(Offline())
    controller.process_pending()
    assert controller.state is ConnectionState.RECONNECTING

    engine.fire(Reconnecting(attempt=1))
    controller.process_pending()
    assert controller.state is ConnectionState.CONNECTING

    engine.fire(Connected(session_present=True))
    controller.process_pending()
    assert controller.state is ConnectionState.CONNECTED
    assert handler.having(LogEvent.MQTT_SESSION_RESUMED)


# ─────────────────────────────────────────────────────────────────────────────
# Subscriptions
# ─────────────────────────────────────────────────────────────────────────────

def test_every_connected_transition_subscribes_once():
    """Re-entering CONNECTED issues exactly one request with the full filter set."""
    controller, engines, handler = make_controller()
    controller.connect()
    engine = engines[0]

    # No subscription before the first Connected
    engine.fire(Reconnecting(attempt=1))
    controller.process_pending()
    assert engine.subscribe_calls == []

    for cycle in range(3):
        engine.fire(Connected(session_present=False))
        engine.fire(Offline())
        engine.fire(Reconnecting(attempt=cycle + 1))
        controller.process_pending()

    assert len(engine.subscribe_calls) == 3
    for call in engine.subscribe_calls:
        assert call == tuple(SUBSCRIPTIONS)
    assert controller.subscriber.requests_issued == 3


def test_grants_are_logged_per_filter():
    controller, engine, handler = connected_controller()

    engine.fire(SubscriptionGranted(request_id=1, granted=(1, 0x80)))
    controller.process_pending()

    granted = handler.having(LogEvent.SUBSCRIPTION_GRANTED)
    assert [e['metadata']['topic_filter'] for e in granted] == ["sensors/+/temperature"]
    assert granted[0]['message'] == "Subscribed to: sensors/+/temperature (QoS: 1)"
    assert handler.having(LogEvent.SUBSCRIPTION_REFUSED)
    assert handler.having(LogEvent.SUBSCRIPTION_READY)
    assert controller.subscriber.granted == {"sensors/+/temperature": 1}


def test_subscription_failure_is_not_retried():
    controller, engine, handler = connected_controller()

    engine.fire(SubscriptionFailed(request_id=1, cause=SubscribeError("refused")))
    controller.process_pending()

    assert handler.having(LogEvent.SUBSCRIPTION_ERROR)
    assert len(engine.subscribe_calls) == 1


def test_subscribe_error_is_logged():
    controller, engines, handler = make_controller()
    controller.connect()
    engines[0].fail_subscribe = True

    engines[0].fire(Connected())
    controller.process_pending()

    assert controller.state is ConnectionState.CONNECTED
    assert handler.having(LogEvent.SUBSCRIPTION_ERROR)


# ─────────────────────────────────────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────────────────────────────────────

def test_messages_received_counts_every_delivery():
    """Counter grows by N for N deliveries, malformed payloads included."""
    controller, engine, handler = connected_controller()
    observations = []
    controller.add_observer(observations.append)

    payloads = [
        b'{"temperature": 21.5, "device_id": "sensorA"}',
        b'cmd: restart device at http://10.0.0.5/reset',
        b'{"broken": ',
        b'\xff\xfe\xfd',
        b'',
    ]
    for payload in payloads:
        engine.fire(MessageReceived(InboundMessage(topic="sensors/a/temperature", payload=payload)))
    controller.process_pending()

    assert controller.messages_received == len(payloads)
    assert [o.sequence for o in observations] == [1, 2, 3, 4, 5]
    assert [o.content.kind for o in observations] == ["json", "text", "text", "text", "text"]
    assert observations[0].analysis.numeric_fields == (("temperature", 21.5),)
    assert observations[1].analysis.command_like is True
    assert observations[3].content.decode_error is True

    assert len(handler.having(LogEvent.MESSAGE_RECEIVED)) == 5
    assert len(handler.having(LogEvent.MESSAGE_STRUCTURED)) == 1
    assert len(handler.having(LogEvent.MESSAGE_PLAIN_TEXT)) == 4
    assert len(handler.having(LogEvent.MESSAGE_ANALYZED)) == 5


def test_observer_failure_does_not_stop_pipeline():
    controller, engine, handler = connected_controller()
    seen = []

    def broken_observer(observation):
        raise RuntimeError("sink down")

    controller.add_observer(broken_observer)
    controller.add_observer(seen.append)

    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b"1")))
    controller.process_pending()

    assert controller.messages_received == 1
    assert len(seen) == 1
    assert handler.having(LogEvent.OBSERVER_ERROR)


def test_long_text_is_truncated_in_logs():
    controller, engine, handler = connected_controller()

    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b"x" * 5000)))
    controller.process_pending()

    entry = handler.having(LogEvent.MESSAGE_PLAIN_TEXT)[0]
    assert len(entry['metadata']['text']) == 4096
    assert entry['metadata']['truncated'] is True


def test_large_json_is_truncated_in_logs():
    controller, engine, handler = connected_controller()

    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b'{"n": 1}')))
    big = json.dumps({"blob": "x" * 5000}).encode()
    engine.fire(MessageReceived(InboundMessage(topic="a", payload=big)))
    controller.process_pending()

    small, large = handler.having(LogEvent.MESSAGE_STRUCTURED)
    assert small['metadata']['document'] == {"n": 1}
    assert small['metadata']['truncated'] is False
    assert large['metadata']['document'] == big.decode()[:4096]
    assert large['metadata']['truncated'] is True
    assert controller.messages_received == 2


# ─────────────────────────────────────────────────────────────────────────────
# Diagnostic publish and stats
# ─────────────────────────────────────────────────────────────────────────────

def test_publish_while_disconnected_reports_not_connected():
    controller, engines, handler = make_controller()

    # No engine yet
    assert controller.publish_diagnostic() is False

    # Engine exists but the handshake has not completed
    controller.connect()
    assert controller.publish_diagnostic("test/topic", "hello") is False

    assert engines[0].publishes == []
    assert len(handler.having(LogEvent.MQTT_PUBLISH_FAILED)) == 2


def test_publish_diagnostic_default_payload():
    controller, engine, handler = connected_controller(publish_qos=2)
    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b"hello")))
    controller.process_pending()

    assert controller.publish_diagnostic() is True

    topic, payload, qos, retain = engine.publishes[0]
    assert topic == "test/tapline-client"
    assert qos == 2
    assert retain is False
    document = json.loads(payload)
    assert document['client_id'] == "tapline_test01"
    assert document['messages_received'] == 1
    assert document['status'] == "active"
    assert "timestamp" in document
    assert handler.having(LogEvent.MQTT_PUBLISH_SUCCESS)


def test_publish_error_returns_false():
    controller, engine, handler = connected_controller()
    engine.fail_publish = True

    assert controller.publish_diagnostic(payload="ping") is False
    assert handler.having(LogEvent.MQTT_PUBLISH_ERROR)


def test_get_stats():
    controller, engine, handler = connected_controller()
    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b"{}")))
    controller.process_pending()

    stats = controller.get_stats()

    assert stats == {
        'messages_received': 1,
        'client_id': "tapline_test01",
        'connected': True,
        'broker': "mqtt://localhost:1883",
        'state': "connected",
    }


# ─────────────────────────────────────────────────────────────────────────────
# Shutdown
# ─────────────────────────────────────────────────────────────────────────────

def test_disconnect_closes_gracefully():
    controller, engine, handler = connected_controller()

    assert controller.disconnect(timeout=1.0) is True

    assert engine.end_calls == [False]
    assert controller.state is ConnectionState.CLOSED
    assert handler.having(LogEvent.MQTT_SHUTDOWN_REQUESTED)
    assert handler.having(LogEvent.MQTT_CLOSED)

    # Closing twice is harmless
    assert controller.disconnect(timeout=1.0) is True
    assert engine.end_calls == [False]


def test_events_after_close_are_ignored():
    controller, engine, handler = connected_controller()
    controller.disconnect(timeout=1.0)

    engine.fire(Connected())
    engine.fire(MessageReceived(InboundMessage(topic="a", payload=b"late")))
    controller.process_pending()

    assert controller.state is ConnectionState.CLOSED
    assert controller.messages_received == 0
    assert len(engine.subscribe_calls) == 1
    assert controller.publish_diagnostic() is False

    with pytest.raises(SessionClosedError):
        controller.connect()


def test_disconnect_forces_end_after_timeout():
    controller, engine, handler = connected_controller()
    engine.ack_graceful_close = False

    assert controller.disconnect(timeout=0.05) is False

    assert engine.end_calls == [False, True]
    assert controller.state is ConnectionState.CLOSED
    assert controller.wait(timeout=0) is True


def test_disconnect_waits_for_close_from_network_thread():
    """Closed emitted later by another thread still counts as a clean close."""
    controller, engine, handler = connected_controller()
    engine.ack_graceful_close = False

    def end(force=False):
        engine.end_calls.append(force)
        if force:
            engine.fire(Closed())
        else:
            threading.Timer(0.05, engine.fire, args=(Closed(),)).start()

    engine.end = end

    assert controller.disconnect(timeout=1.0) is True

    assert engine.end_calls == [False]
    assert controller.state is ConnectionState.CLOSED
    assert handler.having(LogEvent.MQTT_CLOSED)


def test_disconnect_without_engine():
    controller, engines, handler = make_controller()

    assert controller.disconnect(timeout=0.1) is True
    assert controller.state is ConnectionState.CLOSED
    assert engines == []


def test_event_loop_thread():
    controller, engines, handler = make_controller()
    controller.connect()
    engine = engines[0]
    controller.start()
    assert controller.is_running()

    engine.fire(Connected())
    for i in range(10):
        engine.fire(MessageReceived(InboundMessage(topic="load", payload=str(i).encode())))

    deadline = time.monotonic() + 5.0
    while controller.messages_received < 10 and time.monotonic() < deadline:
        time.sleep(0.01)

    assert controller.messages_received == 10
    assert controller.is_connected()

    assert controller.disconnect(timeout=2.0) is True
    controller._thread.join(timeout=2.0)
    assert not controller.is_running()


# ─────────────────────────────────────────────────────────────────────────────
# TLS trust
# ─────────────────────────────────────────────────────────────────────────────

def test_loaded_ca_bundle_forces_strict_verification():
    """CA bundle present and readable: verification forced on despite config."""
    with tempfile.TemporaryDirectory() as tmp:
        ca_path = Path(tmp) / "broker_ca.pem"
        ca_path.write_bytes(generate_ca_pem())

        controller, engines, handler = make_controller(
            broker="mqtts://broker.example.com",
            trust=TrustPolicy(ca_bundle_path=ca_path, verify=False),
        )
        controller.connect()

    options = engines[0].connects[0]
    assert options.trust.verify is True
    assert options.trust.ca_loaded
    assert handler.having(LogEvent.TLS_CA_LOADED)
    # Configured options are left untouched
    assert controller.options.trust.verify is False


def test_missing_ca_bundle_keeps_configured_verification():
    controller, engines, handler = make_controller(
        broker="mqtts://broker.example.com",
        trust=TrustPolicy(ca_bundle_path=Path("/nonexistent/broker_ca.pem"), verify=False),
    )
    controller.connect()

    options = engines[0].connects[0]
    assert options.trust.verify is False
    assert not options.trust.ca_loaded
    assert handler.having(LogEvent.TLS_CA_MISSING)


# ─────────────────────────────────────────────────────────────────────────────
# paho engine callback translation
# ─────────────────────────────────────────────────────────────────────────────

def test_paho_engine_translates_callbacks():
    events = []
    identity = ClientIdentity(client_id="tapline_paho01")
    options = ConnectionOptions(broker=BrokerAddress.parse("mqtt://localhost:1883"))
    engine = PahoEngine(identity, options)
    engine.set_event_sink(events.append)

    ok = SimpleNamespace(is_failure=False, value=0)
    engine._on_connect(None, None, SimpleNamespace(session_present=True), ok, None)
    engine._on_subscribe(None, None, 3, [1, 0], None)
    engine._on_subscribe(None, None, 4, [0x80], None)
    engine._on_publish(None, None, 5, ok, None)
    engine._on_disconnect(None, None, None, SimpleNamespace(value=7), None)

    assert events[0] == Connected(session_present=True)
    assert events[1] == SubscriptionGranted(request_id=3, granted=(1, 0))
    assert isinstance(events[2], SubscriptionFailed) and events[2].request_id == 4
    assert events[3].request_id == 5
    assert isinstance(events[4], Disconnected) and not events[4].requested
    assert isinstance(events[5], Offline)
    assert events[6] == Reconnecting(attempt=1)

    refused = SimpleNamespace(is_failure=True, value=135)
    engine._on_connect(None, None, SimpleNamespace(session_present=False), refused, None)
    assert isinstance(events[7], ErrorOccurred)
    assert isinstance(events[7].cause.cause, ConnectionRefusedError)

    # Not connected: end() closes immediately
    engine.end()
    assert events[-1] == Closed()


def test_paho_retry_failure_is_diagnosed():
    events = []
    identity = ClientIdentity(client_id="tapline_paho02")
    options = ConnectionOptions(broker=BrokerAddress.parse("mqtt://127.0.0.1:1"))
    engine = PahoEngine(identity, options)
    engine.set_event_sink(events.append)

    def refuse():
        raise ConnectionRefusedError(111, "Connection refused")

    engine._paho_reconnect = refuse

    # paho's network thread calls reconnect(), swallows the OSError and
    # then reports on_connect_fail
    with pytest.raises(ConnectionRefusedError):
        engine.client.reconnect()
    engine._on_connect_fail(engine.client, None)

    assert isinstance(events[0], ErrorOccurred)
    assert isinstance(events[0].cause.cause, ConnectionRefusedError)
    assert events[1] == Reconnecting(attempt=1)

    controller, fake, handler = connected_controller()
    fake.fire(events[0])
    controller.process_pending()

    assert handler.having(LogEvent.MQTT_CONNECTION_REFUSED)
    assert [e['metadata']['diagnosis'] for e in handler.having(LogEvent.MQTT_ERROR)] == ["refused"]

    # The failure is consumed: a later report without a retry error stays unknown
    engine._on_connect_fail(engine.client, None)
    assert events[2].cause.cause is None


def test_paho_forced_end_closes_socket():
    events = []
    identity = ClientIdentity(client_id="tapline_paho03")
    options = ConnectionOptions(broker=BrokerAddress.parse("mqtt://localhost:1883"))
    engine = PahoEngine(identity, options)
    engine.set_event_sink(events.append)

    sock = SimpleNamespace(closed=False)
    sock.close = lambda: setattr(sock, 'closed', True)
    engine.client.socket = lambda: sock

    engine.end(force=True)

    assert sock.closed is True
    assert events == [Closed()]

    # Already closed: nothing more happens
    engine.end(force=True)
    assert events == [Closed()]
