"""
Session Controller
==================

Bounded Context: Connection Lifecycle

Owns the connection state, the run statistics and the single event loop that
reacts to protocol engine events.

State machine::

    DISCONNECTED ──connect()──▶ CONNECTING ──Connected──▶ CONNECTED
                                    ▲                        │
                                    │ Reconnecting           │ Offline / Disconnected
                                    │                        ▼
                                    └──────────────── RECONNECTING

    any state ──ShutdownRequested / Closed──▶ CLOSED (terminal)

ErrorOccurred never changes state: it is diagnosed and logged, recovery is
the engine's job.

Threading:
- paho's network thread only enqueues events
- One loop (start() thread or run()) drains the queue in order; every state
  and counter mutation happens there
- get_stats() and publish_diagnostic() read a lock-protected snapshot

Example:
    >>> controller = SessionController(
    ...     identity=ClientIdentity.generate(),
    ...     options=ConnectionOptions(broker=BrokerAddress.parse("mqtts://broker:8883")),
    ...     subscriber=TopicSubscriber([Subscription.catch_all()], logger),
    ...     logger=logger
    ... )
    >>> controller.connect()
    >>> controller.start()
    >>> ...
    >>> controller.disconnect(timeout=5.0)
"""

import json
import queue
import threading
import time
from typing import Callable, Iterable, List, Optional, Union

from .analyzer import DEFAULT_RECOGNIZED_FIELDS, analyze
from .classifier import classify
from .engine import (
    Closed,
    Connected,
    Disconnected,
    EngineEvent,
    EngineFactory,
    ErrorOccurred,
    MessageReceived,
    Offline,
    PahoEngine,
    ProtocolEngine,
    PublishCompleted,
    Reconnecting,
    ShutdownRequested,
    SubscriptionFailed,
    SubscriptionGranted,
)
from .errors import (
    ConfigurationError,
    ConnectError,
    PublishError,
    SessionClosedError,
    TransportDiagnosis,
    diagnose,
)
from .logging import LogEvent, StructuredLogger
from .schemas import (
    ClientIdentity,
    ConnectionOptions,
    ConnectionState,
    InboundMessage,
    Observation,
    PlainText,
    RunStats,
    Timestamp,
)
from .subscriber import TopicSubscriber
from .tls import apply_trust

DEFAULT_DIAGNOSTIC_TOPIC = "test/tapline-client"

# Longest payload text copied into a log line
MAX_LOGGED_TEXT = 4096

Observer = Callable[[Observation], None]

_DIAGNOSIS_EVENTS = {
    TransportDiagnosis.DNS: (
        LogEvent.MQTT_DNS_ERROR, "DNS error: cannot resolve the broker hostname"),
    TransportDiagnosis.REFUSED: (
        LogEvent.MQTT_CONNECTION_REFUSED, "Connection error: the broker refused the connection"),
    TransportDiagnosis.TIMEOUT: (
        LogEvent.MQTT_CONNECTION_TIMEOUT, "Timeout error: the connection took too long"),
    TransportDiagnosis.TLS: (
        LogEvent.MQTT_TLS_ERROR, "TLS error: handshake or certificate verification failed"),
}


class SessionController:
    """
    Connection lifecycle state machine and message pipeline driver.

    Attributes:
        identity: Client identity
        options: Connection options as configured (before trust setup)
        subscriber: Topic subscriber invoked on every Connected transition
        logger: Structured logger (stats/observability sink)
        publish_qos: QoS for diagnostic publishes
        diagnostic_topic: Default diagnostic publish topic
    """

    def __init__(
        self,
        identity: ClientIdentity,
        options: ConnectionOptions,
        subscriber: TopicSubscriber,
        logger: StructuredLogger,
        engine_factory: EngineFactory = PahoEngine,
        publish_qos: int = 1,
        diagnostic_topic: str = DEFAULT_DIAGNOSTIC_TOPIC,
        recognized_fields: Iterable[str] = DEFAULT_RECOGNIZED_FIELDS
    ):
        self.identity = identity
        self.options = options
        self.subscriber = subscriber
        self.logger = logger
        self.publish_qos = publish_qos
        self.diagnostic_topic = diagnostic_topic
        self.recognized_fields = tuple(recognized_fields)
        self._engine_factory = engine_factory

        # Engine handle (exactly one per controller)
        self._engine: Optional[ProtocolEngine] = None

        # Ordered event channel
        self._events: "queue.Queue[EngineEvent]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

        # State
        self._state = ConnectionState.DISCONNECTED
        self._messages_received = 0
        self._stats_lock = threading.Lock()
        self._closed = threading.Event()
        self._observers: List[Observer] = []

    # ===== Properties =====

    @property
    def state(self) -> ConnectionState:
        with self._stats_lock:
            return self._state

    @property
    def messages_received(self) -> int:
        with self._stats_lock:
            return self._messages_received

    @property
    def engine(self) -> Optional[ProtocolEngine]:
        return self._engine

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_observer(self, observer: Observer) -> None:
        """Register a callable receiving one Observation per inbound message."""
        self._observers.append(observer)

    # ===== Commands =====

    def connect(self) -> None:
        """
        Build the protocol engine and start connecting.

        Runs the TLS trust setup, constructs the engine, registers for its
        events and issues the connect command. A transport failure on the
        first attempt is logged; the engine keeps retrying.

        Raises:
            ConfigurationError: If the engine cannot be constructed
            SessionClosedError: If the session was already closed
        """
        state = self.state
        if state is ConnectionState.CLOSED:
            raise SessionClosedError("Session is closed; create a new controller")
        if self._engine is not None and state is not ConnectionState.DISCONNECTED:
            return

        options = apply_trust(self.options, self.logger)
        broker = str(options.broker)

        try:
            engine = self._engine_factory(self.identity, options)
        except ConfigurationError as e:
            self.logger.error(
                event=LogEvent.MQTT_ERROR,
                message="Error creating MQTT client",
                exc_info=e,
                metadata={'broker': broker}
            )
            raise

        if self._engine is not None:
            self._engine.end(force=True)
        self._engine = engine
        engine.set_event_sink(self._events.put)

        self.logger.info(
            event=LogEvent.MQTT_CLIENT_CREATED,
            message=f"MQTT client created - ID: {self.identity.client_id}",
            metadata={'broker': broker, 'client_id': self.identity.client_id}
        )

        self._set_state(ConnectionState.CONNECTING)
        self.logger.info(
            event=LogEvent.MQTT_CONNECTING,
            message="Connecting to MQTT broker",
            metadata={
                'broker': broker,
                'keepalive': options.keepalive,
                'tls': options.broker.use_tls,
                'verify': options.trust.verify,
                'clean_session': options.clean_session
            }
        )

        try:
            engine.connect(options)
        except ConnectError as e:
            self._log_error(e)

    def start(self) -> None:
        """Run the event loop in a background thread (non-blocking)."""
        if self.is_running():
            return
        self._thread = threading.Thread(
            target=self.run, name="tapline-session", daemon=True
        )
        self._thread.start()

    def run(self, poll_interval: float = 0.5) -> None:
        """Process events in arrival order until the engine reports Closed."""
        while not self._closed.is_set():
            try:
                event = self._events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self.handle_event(event)

    def process_pending(self) -> int:
        """
        Drain queued events on the calling thread.

        Only for use when no loop thread is running (tests, shutdown).

        Returns:
            Number of events processed
        """
        processed = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return processed
            self.handle_event(event)
            processed += 1

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the engine acknowledged close."""
        return self._closed.wait(timeout)

    def _wait_closed(self, timeout: float) -> bool:
        if self.is_running():
            return self._closed.wait(timeout)

        # No loop thread: drain here, Closed may arrive later from paho's thread
        deadline = time.monotonic() + timeout
        while not self._closed.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                event = self._events.get(timeout=remaining)
            except queue.Empty:
                break
            self.handle_event(event)
        return self._closed.is_set()

    def disconnect(self, timeout: float = 5.0) -> bool:
        """
        Close the connection gracefully.

        Sends DISCONNECT (so the broker drops the last will) and waits for
        the engine's Closed event. After the timeout the engine is torn down
        forcibly.

        Returns:
            True if the engine acknowledged close within the timeout
        """
        if self._closed.is_set():
            return True

        self._events.put(ShutdownRequested())
        if self._wait_closed(timeout):
            return True

        self.logger.warning(
            event=LogEvent.MQTT_SHUTDOWN_REQUESTED,
            message="Close not acknowledged in time, forcing shutdown",
            metadata={'timeout': timeout}
        )
        if self._engine is not None:
            self._engine.end(force=True)
        if not self.is_running():
            self.process_pending()
        return False

    def publish_diagnostic(
        self,
        topic: Optional[str] = None,
        payload: Optional[Union[str, bytes]] = None
    ) -> bool:
        """
        Publish a test message.

        Args:
            topic: Target topic (default: diagnostic_topic)
            payload: Payload (default: JSON status record with the client id
                and messages received so far)

        Returns:
            True if the publish was handed to the engine; False when not
            connected or the engine refused it
        """
        topic = topic or self.diagnostic_topic
        snapshot = self.snapshot()

        if not snapshot.connected or self._engine is None:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Client not connected. Cannot publish message.",
                metadata={'topic': topic, 'state': snapshot.state.value}
            )
            return False

        if payload is None:
            payload = json.dumps({
                'timestamp': Timestamp.now().value,
                'client_id': snapshot.client_id,
                'messages_received': snapshot.messages_received,
                'status': 'active',
            })

        try:
            request_id = self._engine.publish(topic, payload, qos=self.publish_qos)
        except PublishError as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_ERROR,
                message="Error publishing test message",
                exc_info=e,
                metadata={'topic': topic}
            )
            return False

        self.logger.info(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message=f"Test message published on: {topic}",
            metadata={'topic': topic, 'qos': self.publish_qos, 'request_id': request_id}
        )
        return True

    # ===== Queries =====

    def snapshot(self) -> RunStats:
        """Frozen copy of the current statistics."""
        with self._stats_lock:
            return RunStats(
                messages_received=self._messages_received,
                client_id=self.identity.client_id,
                state=self._state,
                broker=str(self.options.broker),
            )

    def get_stats(self) -> dict:
        """
        Get session statistics.

        Returns:
            Dictionary with messages_received, client_id, connected, broker, state
        """
        return self.snapshot().to_dict()

    # ===== Event handling (single event path) =====

    def handle_event(self, event: EngineEvent) -> None:
        """Apply one engine event to the session."""
        if isinstance(event, Closed):
            self._on_closed()
            return

        if self.state is ConnectionState.CLOSED:
            self.logger.debug(
                event=LogEvent.MQTT_CLOSED,
                message=f"Ignoring {type(event).__name__} after close"
            )
            return

        if isinstance(event, MessageReceived):
            self._on_message(event.message)
        elif isinstance(event, Connected):
            self._on_connected(event)
        elif isinstance(event, Disconnected):
            self._on_disconnected(event)
        elif isinstance(event, Offline):
            self._on_offline()
        elif isinstance(event, Reconnecting):
            self._on_reconnecting(event)
        elif isinstance(event, ErrorOccurred):
            self._log_error(event.cause)
        elif isinstance(event, SubscriptionGranted):
            self.subscriber.on_granted(event)
        elif isinstance(event, SubscriptionFailed):
            self.subscriber.on_failed(event)
        elif isinstance(event, PublishCompleted):
            self.logger.debug(
                event=LogEvent.MQTT_PUBLISH_SUCCESS,
                message="Publish acknowledged",
                metadata={'request_id': event.request_id, 'reason_code': event.reason_code}
            )
        elif isinstance(event, ShutdownRequested):
            self._on_shutdown_requested()
        else:
            raise TypeError(f"Unknown engine event: {event!r}")

    def _set_state(self, state: ConnectionState) -> None:
        with self._stats_lock:
            self._state = state

    def _on_connected(self, event: Connected) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Connected to MQTT broker",
            metadata={
                'broker': str(self.options.broker),
                'username': self.identity.credentials.username,
                'client_id': self.identity.client_id
            }
        )

        if event.session_present:
            self.logger.info(
                event=LogEvent.MQTT_SESSION_RESUMED,
                message="Previous session restored",
                metadata={'session_present': True}
            )
        else:
            self.logger.info(
                event=LogEvent.MQTT_SESSION_NEW,
                message="New session started",
                metadata={'session_present': False}
            )

        self.subscriber.on_connected(self._engine)

    def _on_disconnected(self, event: Disconnected) -> None:
        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Disconnected from MQTT broker",
            metadata={
                'broker': str(self.options.broker),
                'reason_code': event.reason_code,
                'reason': event.reason,
                'requested': event.requested
            }
        )
        if not event.requested and self.state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.RECONNECTING)

    def _on_offline(self) -> None:
        self.logger.warning(
            event=LogEvent.MQTT_OFFLINE,
            message="MQTT client offline - no connection to the broker",
            metadata={'broker': str(self.options.broker)}
        )
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            self._set_state(ConnectionState.RECONNECTING)

    def _on_reconnecting(self, event: Reconnecting) -> None:
        self.logger.info(
            event=LogEvent.MQTT_RECONNECTING,
            message="Trying to reconnect to the MQTT broker...",
            metadata={'attempt': event.attempt}
        )
        if self.state in (ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED):
            self._set_state(ConnectionState.CONNECTING)

    def _on_shutdown_requested(self) -> None:
        self.logger.info(
            event=LogEvent.MQTT_SHUTDOWN_REQUESTED,
            message="Closing MQTT connection...",
            metadata=self.get_stats()
        )
        self._set_state(ConnectionState.CLOSED)
        if self._engine is None:
            self._on_closed()
        else:
            self._engine.end(force=False)

    def _on_closed(self) -> None:
        if self._closed.is_set():
            return
        self._set_state(ConnectionState.CLOSED)
        self.logger.info(
            event=LogEvent.MQTT_CLOSED,
            message="MQTT connection ended",
            metadata={'messages_received': self.messages_received}
        )
        self._closed.set()

    def _log_error(self, cause: BaseException) -> None:
        diagnosis = diagnose(cause)
        self.logger.error(
            event=LogEvent.MQTT_ERROR,
            message=f"MQTT error: {cause}",
            exc_info=cause,
            metadata={'diagnosis': diagnosis.value, 'state': self.state.value}
        )
        if diagnosis in _DIAGNOSIS_EVENTS:
            event, message = _DIAGNOSIS_EVENTS[diagnosis]
            self.logger.error(
                event=event,
                message=message,
                metadata={'broker': str(self.options.broker)}
            )

    # ===== Message pipeline =====

    def _on_message(self, message: InboundMessage) -> None:
        # Counted before classification so malformed payloads count too
        with self._stats_lock:
            self._messages_received += 1
            sequence = self._messages_received

        self.logger.info(
            event=LogEvent.MESSAGE_RECEIVED,
            message=f"Message #{sequence} received",
            metadata={
                'sequence': sequence,
                'topic': message.topic,
                'received_at': message.received_at.isoformat(),
                'size': message.size,
                'qos': message.qos,
                'retain': message.retain,
                'packet_id': message.packet_id
            }
        )

        content = classify(message.payload)
        if isinstance(content, PlainText):
            self.logger.info(
                event=LogEvent.MESSAGE_PLAIN_TEXT,
                message="Type: plain text",
                metadata={
                    'topic': message.topic,
                    'text': content.raw[:MAX_LOGGED_TEXT],
                    'truncated': len(content.raw) > MAX_LOGGED_TEXT,
                    'decode_error': content.decode_error
                }
            )
        else:
            rendered = json.dumps(content.document, ensure_ascii=False, default=str)
            truncated = len(rendered) > MAX_LOGGED_TEXT
            self.logger.info(
                event=LogEvent.MESSAGE_STRUCTURED,
                message="Type: valid JSON",
                metadata={
                    'topic': message.topic,
                    'document': rendered[:MAX_LOGGED_TEXT] if truncated else content.document,
                    'truncated': truncated
                }
            )

        analysis = analyze(content, self.recognized_fields)
        self.logger.info(
            event=LogEvent.MESSAGE_ANALYZED,
            message=f"Message #{sequence} analyzed",
            metadata={'topic': message.topic, 'content_type': content.kind, **analysis.to_dict()}
        )

        observation = Observation(
            message=message, content=content, analysis=analysis, sequence=sequence
        )
        for observer in list(self._observers):
            try:
                observer(observation)
            except Exception as e:
                self.logger.error(
                    event=LogEvent.OBSERVER_ERROR,
                    message="Observer failed while handling message",
                    exc_info=e,
                    metadata={'observer': repr(observer), 'sequence': sequence}
                )
