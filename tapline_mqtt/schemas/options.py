"""
Connection Options
==================

Bounded Context: Session Configuration

Immutable description of how to reach the broker: address, timing, TLS trust
policy, session flags and the last-will registration.

Types:
- BrokerAddress: Parsed broker URL (mqtt://, mqtts://, ws://, wss://, ...)
- LastWill: Message the broker publishes if we vanish without a DISCONNECT
- TrustPolicy: CA bundle location, loaded PEM data and verification flag
- ConnectionOptions: Everything the protocol engine needs to connect

Invariant:
    A TrustPolicy carrying CA data always has verify=True. with_ca_data() is
    the only way to attach CA data and it forces strict verification.
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from ..errors import ConfigurationError
from .common import Timestamp, validate_qos, validate_topic_name

DEFAULT_PORTS = {
    'mqtt': 1883,
    'tcp': 1883,
    'mqtts': 8883,
    'ssl': 8883,
    'ws': 80,
    'wss': 443,
}

TLS_SCHEMES = {'mqtts', 'ssl', 'wss'}
WEBSOCKET_SCHEMES = {'ws', 'wss'}

DEFAULT_WILL_TOPIC = "clients/disconnect"


@dataclass(frozen=True)
class BrokerAddress:
    """
    Parsed broker address.

    Attributes:
        scheme: URL scheme (mqtt, tcp, mqtts, ssl, ws, wss)
        host: Broker hostname or IP
        port: Broker port
        path: WebSocket path (ws/wss only)

    Example:
        >>> addr = BrokerAddress.parse("mqtts://broker.example.com:8883")
        >>> addr.use_tls, addr.port
        (True, 8883)
    """
    scheme: str
    host: str
    port: int
    path: str = ""

    def __post_init__(self):
        if self.scheme not in DEFAULT_PORTS:
            raise ConfigurationError(
                f"Unsupported broker scheme: {self.scheme!r}. "
                f"Must be one of {sorted(DEFAULT_PORTS)}"
            )
        if not self.host:
            raise ConfigurationError("Broker host cannot be empty")
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(
                f"Broker port must be in [1, 65535], got {self.port}"
            )

    @classmethod
    def parse(cls, url: str) -> 'BrokerAddress':
        """
        Parse a broker URL.

        Raises:
            ConfigurationError: If the URL is malformed
        """
        if not url or '://' not in url:
            raise ConfigurationError(f"Malformed broker address: {url!r}")

        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise ConfigurationError(f"Malformed broker address: {url!r} ({e})") from e

        scheme = parts.scheme.lower()
        if port is None:
            port = DEFAULT_PORTS.get(scheme, 0)

        path = parts.path if scheme in WEBSOCKET_SCHEMES else ""
        if scheme in WEBSOCKET_SCHEMES and not path:
            path = "/mqtt"

        return cls(scheme=scheme, host=parts.hostname or "", port=port, path=path)

    @property
    def use_tls(self) -> bool:
        return self.scheme in TLS_SCHEMES

    @property
    def transport(self) -> str:
        """paho-mqtt transport name."""
        return "websockets" if self.scheme in WEBSOCKET_SCHEMES else "tcp"

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ':' in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}{self.path}"

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class LastWill:
    """
    Last-will declaration.

    Attributes:
        topic: Topic the broker publishes the will on
        payload: Will payload
        qos: Will QoS
        retain: Will retain flag
    """
    topic: str
    payload: Union[str, bytes]
    qos: int = 1
    retain: bool = False

    def __post_init__(self):
        validate_topic_name(self.topic)
        validate_qos(self.qos)

    @classmethod
    def for_client(
        cls,
        client_id: str,
        topic: str = DEFAULT_WILL_TOPIC,
        qos: int = 1,
        retain: bool = False
    ) -> 'LastWill':
        """Default will: a JSON notice that this client went away unexpectedly."""
        payload = json.dumps({
            'client_id': client_id,
            'timestamp': Timestamp.now().value,
            'message': 'Client disconnected unexpectedly',
        })
        return cls(topic=topic, payload=payload, qos=qos, retain=retain)


@dataclass(frozen=True)
class TrustPolicy:
    """
    TLS trust policy.

    Attributes:
        ca_bundle_path: Where to look for the CA bundle (PEM)
        verify: Verify the broker certificate chain and hostname
        ca_data: PEM text of the loaded bundle (None until loaded)
    """
    ca_bundle_path: Optional[Path] = None
    verify: bool = False
    ca_data: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if self.ca_data is not None and not self.verify:
            raise ConfigurationError("A loaded CA bundle requires strict verification")

    @property
    def ca_loaded(self) -> bool:
        return self.ca_data is not None

    def with_ca_data(self, ca_data: str) -> 'TrustPolicy':
        """Attach loaded CA data; strict verification is forced on."""
        return replace(self, ca_data=ca_data, verify=True)


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Immutable connection options.

    Attributes:
        broker: Broker address
        keepalive: Keepalive interval (seconds)
        connect_timeout: Handshake timeout (seconds)
        reconnect_min_delay: First reconnect backoff (seconds)
        reconnect_max_delay: Backoff ceiling (seconds)
        trust: TLS trust policy (ignored for non-TLS brokers)
        clean_session: Ask the broker for a fresh session on every connect
        last_will: Last-will declaration (optional)
    """
    broker: BrokerAddress
    keepalive: int = 60
    connect_timeout: float = 30.0
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 30
    trust: TrustPolicy = field(default_factory=TrustPolicy)
    clean_session: bool = True
    last_will: Optional[LastWill] = None

    def __post_init__(self):
        if self.keepalive <= 0:
            raise ConfigurationError(f"keepalive must be > 0, got {self.keepalive}")
        if self.connect_timeout <= 0:
            raise ConfigurationError(
                f"connect_timeout must be > 0, got {self.connect_timeout}"
            )
        if self.reconnect_min_delay <= 0:
            raise ConfigurationError(
                f"reconnect_min_delay must be > 0, got {self.reconnect_min_delay}"
            )
        if self.reconnect_max_delay < self.reconnect_min_delay:
            raise ConfigurationError(
                "reconnect_max_delay must be >= reconnect_min_delay, got "
                f"{self.reconnect_max_delay} < {self.reconnect_min_delay}"
            )

    def with_trust(self, trust: TrustPolicy) -> 'ConnectionOptions':
        return replace(self, trust=trust)
