"""
paho-mqtt Protocol Engine
=========================

Bounded Context: MQTT Infrastructure

ProtocolEngine backed by paho-mqtt. paho callbacks run in its network thread;
each one is translated into an EngineEvent and handed to the sink, which
queues it for the session controller.

Callback → event mapping:
    on_connect (success)      → Connected(session_present)
    on_connect (refused)      → ErrorOccurred(ConnectError)
    on_message                → MessageReceived
    on_subscribe              → SubscriptionGranted / SubscriptionFailed
    on_publish                → PublishCompleted
    on_disconnect (requested) → Disconnected(requested=True), Closed
    on_disconnect (dropped)   → Disconnected, Offline, Reconnecting
    on_connect_fail           → ErrorOccurred(ConnectError with the retry's OSError), Reconnecting

Reconnection:
    paho's loop_start() thread reconnects on its own using
    reconnect_delay_set(); the controller only observes.
"""

import threading
from typing import Sequence, Union

import paho.mqtt.client as mqtt

from ..errors import ConfigurationError, ConnectError, PublishError, SubscribeError
from ..schemas import ClientIdentity, ConnectionOptions, InboundMessage, Subscription
from ..tls import build_ssl_context
from .base import ProtocolEngine
from .events import (
    SUBACK_FAILURE,
    Closed,
    Connected,
    Disconnected,
    ErrorOccurred,
    MessageReceived,
    Offline,
    PublishCompleted,
    Reconnecting,
    SubscriptionFailed,
    SubscriptionGranted,
)


def _code_value(reason_code) -> int:
    return getattr(reason_code, 'value', reason_code)


class PahoEngine(ProtocolEngine):
    """
    paho-mqtt implementation of ProtocolEngine.

    Attributes:
        identity: Client identity (client id, credentials)
        broker: Broker address
        client: Underlying paho client

    Thread Safety:
        Commands may be issued from any thread; paho serializes them.
        Events are emitted from paho's network thread.
    """

    def __init__(
        self,
        identity: ClientIdentity,
        options: ConnectionOptions,
        protocol: int = mqtt.MQTTv311
    ):
        """
        Build the paho client.

        Args:
            identity: Client identity
            options: Connection options (broker transport, session flag)
            protocol: MQTT protocol version (default: 3.1.1)

        Raises:
            ConfigurationError: If paho rejects the client parameters
        """
        super().__init__()
        self.identity = identity
        self.broker = options.broker

        try:
            self.client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=identity.client_id,
                clean_session=options.clean_session,
                protocol=protocol,
                transport=options.broker.transport,
                reconnect_on_failure=True,
            )
        except ValueError as e:
            raise ConfigurationError(f"Cannot create MQTT client: {e}") from e

        credentials = identity.credentials
        if credentials.present:
            self.client.username_pw_set(credentials.username, credentials.password)

        if options.broker.transport == "websockets":
            self.client.ws_set_options(path=options.broker.path)

        # Callbacks
        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self.client.on_subscribe = self._on_subscribe
        self.client.on_publish = self._on_publish

        # paho's network thread swallows the OSError of a failed retry before
        # on_connect_fail runs; keep it so the failure can be diagnosed
        self._paho_reconnect = self.client.reconnect
        self.client.reconnect = self._reconnect

        # State
        self._lock = threading.Lock()
        self._closing = False
        self._closed = False
        self._reconnect_attempts = 0
        self._last_failure = None

    # ===== Commands =====

    def connect(self, options: ConnectionOptions) -> None:
        if options.last_will is not None:
            will = options.last_will
            self.client.will_set(will.topic, will.payload, qos=will.qos, retain=will.retain)

        if options.broker.use_tls:
            self.client.tls_set_context(build_ssl_context(options.trust))
            if not options.trust.verify:
                self.client.tls_insecure_set(True)

        self.client.connect_timeout = options.connect_timeout
        self.client.reconnect_delay_set(
            min_delay=options.reconnect_min_delay,
            max_delay=options.reconnect_max_delay,
        )

        host, port, keepalive = options.broker.host, options.broker.port, options.keepalive
        failure = None
        try:
            self.client.connect(host, port, keepalive=keepalive)
        except ValueError as e:
            raise ConfigurationError(f"Invalid connection parameters: {e}") from e
        except OSError as e:
            # Let the network thread retry from a clean asynchronous state
            failure, self._last_failure = e, None
            self.client.connect_async(host, port, keepalive=keepalive)

        self.client.loop_start()

        if failure is not None:
            raise ConnectError(f"Connection to {self.broker} failed: {failure}", cause=failure)

    def subscribe(self, subscriptions: Sequence[Subscription]) -> int:
        topics = [(s.topic_filter, s.qos) for s in subscriptions]
        try:
            result, mid = self.client.subscribe(topics)
        except ValueError as e:
            raise SubscribeError(f"Invalid subscription: {e}") from e

        if result != mqtt.MQTT_ERR_SUCCESS or mid is None:
            raise SubscribeError(f"Subscribe request failed: {mqtt.error_string(result)}")
        return mid

    def publish(
        self,
        topic: str,
        payload: Union[str, bytes],
        qos: int = 0,
        retain: bool = False
    ) -> int:
        try:
            info = self.client.publish(topic, payload, qos=qos, retain=retain)
        except ValueError as e:
            raise PublishError(f"Invalid publish: {e}") from e

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Publish failed: {mqtt.error_string(info.rc)}")
        return info.mid

    def end(self, force: bool = False) -> None:
        with self._lock:
            if self._closed:
                return
            self._closing = True

        if force:
            sock = self.client.socket()
            self.client.loop_stop()
            if sock is not None:
                sock.close()
            self._emit_closed()
            return

        result = self.client.disconnect()
        if result != mqtt.MQTT_ERR_SUCCESS:
            # Not connected: no DISCONNECT to send and no callback will follow
            self.client.loop_stop()
            self._emit_closed()

    # ===== paho callbacks (run in paho's network thread) =====

    def _emit_closed(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._emit(Closed())

    def _schedule_reconnect(self) -> None:
        self._reconnect_attempts += 1
        self._emit(Reconnecting(attempt=self._reconnect_attempts))

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            refused = ConnectionRefusedError(f"Broker refused connection: {reason_code}")
            self._emit(ErrorOccurred(ConnectError(str(refused), cause=refused)))
            return

        self._reconnect_attempts = 0
        self._emit(Connected(session_present=bool(flags.session_present)))

    def _reconnect(self):
        try:
            return self._paho_reconnect()
        except OSError as e:
            self._last_failure = e
            raise

    def _on_connect_fail(self, client, userdata) -> None:
        failure, self._last_failure = self._last_failure, None
        if self._closing:
            return
        message = f"Connection attempt to {self.broker} failed"
        if failure is not None:
            message = f"{message}: {failure}"
        self._emit(ErrorOccurred(ConnectError(message, cause=failure)))
        self._schedule_reconnect()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        requested = self._closing
        self._emit(Disconnected(
            reason_code=_code_value(reason_code),
            reason=str(reason_code),
            requested=requested,
        ))

        if requested:
            self._emit_closed()
        else:
            self._emit(Offline())
            self._schedule_reconnect()

    def _on_message(self, client, userdata, msg: mqtt.MQTTMessage) -> None:
        try:
            topic = msg.topic
        except UnicodeDecodeError as e:
            self._emit(ErrorOccurred(e))
            return

        self._emit(MessageReceived(InboundMessage(
            topic=topic,
            payload=bytes(msg.payload),
            qos=msg.qos,
            retain=bool(msg.retain),
            packet_id=msg.mid or None,
        )))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        granted = tuple(_code_value(code) for code in reason_code_list)
        if granted and all(code >= SUBACK_FAILURE for code in granted):
            self._emit(SubscriptionFailed(
                request_id=mid,
                cause=SubscribeError(f"Broker refused every filter (codes={list(granted)})"),
            ))
            return
        self._emit(SubscriptionGranted(request_id=mid, granted=granted))

    def _on_publish(self, client, userdata, mid, reason_code, properties) -> None:
        self._emit(PublishCompleted(request_id=mid, reason_code=_code_value(reason_code)))
