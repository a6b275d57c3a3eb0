"""
Configuration schema for the Tapline monitor.

This module defines the configuration structure for the monitor application:
broker connection, TLS trust, last will, subscriptions and log destinations.
Everything is loaded from YAML and validated at startup; invalid values raise
ConfigurationError.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from tapline_mqtt.errors import ConfigurationError
from tapline_mqtt.schemas import (
    CATCH_ALL_FILTER,
    BrokerAddress,
    ClientIdentity,
    ConnectionOptions,
    Credentials,
    LastWill,
    Subscription,
    TrustPolicy,
    validate_qos,
    validate_topic_filter,
    validate_topic_name,
)
from tapline_mqtt.analyzer import DEFAULT_RECOGNIZED_FIELDS
from tapline_mqtt.schemas.options import DEFAULT_WILL_TOPIC
from tapline_mqtt.session import DEFAULT_DIAGNOSTIC_TOPIC

DEFAULT_CA_BUNDLE = Path("certificates/broker_ca.pem")

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker and session configuration."""

    broker: str = "mqtt://localhost:1883"
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    client_id: Optional[str] = None  # None: generated at startup
    keepalive: int = 60
    connect_timeout: float = 30.0  # seconds
    reconnect_period: int = 1  # seconds
    reconnect_max_delay: int = 30
    clean_session: bool = True
    qos: int = 1  # At least once

    topics: Tuple[str, ...] = (CATCH_ALL_FILTER,)
    diagnostic_topic: str = DEFAULT_DIAGNOSTIC_TOPIC
    diagnostic_delay: float = 5.0  # seconds after start, 0 disables

    def __post_init__(self):
        """Validate MQTT configuration."""
        # Fails fast on unsupported schemes and bad ports
        BrokerAddress.parse(self.broker)

        validate_qos(self.qos)

        if self.keepalive <= 0:
            raise ConfigurationError(
                f"keepalive must be > 0, got {self.keepalive}"
            )

        if self.connect_timeout <= 0:
            raise ConfigurationError(
                f"connect_timeout must be > 0, got {self.connect_timeout}"
            )

        if self.reconnect_period <= 0:
            raise ConfigurationError(
                f"reconnect_period must be > 0, got {self.reconnect_period}"
            )

        if self.diagnostic_delay < 0:
            raise ConfigurationError(
                f"diagnostic_delay must be >= 0, got {self.diagnostic_delay}"
            )

        if not self.topics:
            raise ConfigurationError("At least one topic filter is required")
        for topic_filter in self.topics:
            validate_topic_filter(topic_filter)

        validate_topic_name(self.diagnostic_topic)

        if self.client_id is not None and not self.client_id:
            raise ConfigurationError("client_id cannot be empty (omit it to generate one)")


@dataclass(frozen=True)
class TLSConfig:
    """
    TLS trust configuration.

    verify is only the fallback: when the CA bundle loads, strict
    verification is used regardless.
    """

    ca_bundle: Optional[Path] = DEFAULT_CA_BUNDLE
    verify: bool = False  # self-signed brokers


@dataclass(frozen=True)
class WillConfig:
    """Last-will configuration."""

    enabled: bool = True
    topic: str = DEFAULT_WILL_TOPIC
    qos: int = 1
    retain: bool = False

    def __post_init__(self):
        """Validate will configuration."""
        validate_topic_name(self.topic)
        validate_qos(self.qos)


@dataclass(frozen=True)
class LoggingConfig:
    """Log destinations and level."""

    level: str = "info"
    log_file: Optional[Path] = Path("logs/monitor.log")
    error_log_file: Optional[Path] = Path("logs/monitor-errors.log")

    def __post_init__(self):
        """Validate logging configuration."""
        if self.level.lower() not in LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid logging level: {self.level}. "
                f"Must be one of {sorted(LOG_LEVELS)}"
            )

    @property
    def level_value(self) -> int:
        return LOG_LEVELS[self.level.lower()]


@dataclass(frozen=True)
class MonitorConfig:
    """
    Main configuration for the monitor application.

    This configuration is loaded from YAML and validated at startup.
    Immutable after construction (frozen dataclass).
    """

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    tls: TLSConfig = field(default_factory=TLSConfig)
    will: WillConfig = field(default_factory=WillConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    recognized_fields: Tuple[str, ...] = DEFAULT_RECOGNIZED_FIELDS

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "MonitorConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            mqtt:
              broker: "mqtts://broker.example.com:8883"
              username: "monitor"
              password: "secret"
              keepalive: 60
              qos: 1
              topics: ["#"]

            tls:
              ca_bundle: "certificates/broker_ca.pem"
              verify: false

            logging:
              level: "info"
              log_file: "logs/monitor.log"

        Raises:
            ConfigurationError: On unreadable YAML or invalid values
        """
        try:
            with open(yaml_path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {yaml_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {yaml_path}: {e}") from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        """Build configuration from an already parsed mapping."""
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config root must be a mapping, got {type(data).__name__}"
            )

        try:
            mqtt_data = dict(data.get("mqtt") or {})
            if "topics" in mqtt_data:
                topics = mqtt_data["topics"]
                mqtt_data["topics"] = (topics,) if isinstance(topics, str) else tuple(topics)
            mqtt_config = MQTTConfig(**mqtt_data)

            tls_data = dict(data.get("tls") or {})
            if "ca_bundle" in tls_data:
                ca_bundle = tls_data["ca_bundle"]
                tls_data["ca_bundle"] = Path(ca_bundle) if ca_bundle else None
            tls_config = TLSConfig(**tls_data)

            will_config = WillConfig(**(data.get("will") or {}))

            logging_data = dict(data.get("logging") or {})
            for key in ("log_file", "error_log_file"):
                if key in logging_data:
                    value = logging_data[key]
                    logging_data[key] = Path(value) if value else None
            logging_config = LoggingConfig(**logging_data)

            recognized = tuple(data.get("recognized_fields", DEFAULT_RECOGNIZED_FIELDS))
        except TypeError as e:
            # Unknown keys or wrong value types
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return cls(
            mqtt=mqtt_config,
            tls=tls_config,
            will=will_config,
            logging=logging_config,
            recognized_fields=recognized,
        )

    # ===== Builders for the session layer =====

    def build_identity(self) -> ClientIdentity:
        """Client identity from credentials and (optional) fixed client id."""
        credentials = Credentials(
            username=self.mqtt.username,
            password=self.mqtt.password,
        )
        if self.mqtt.client_id is None:
            return ClientIdentity.generate(credentials=credentials)
        return ClientIdentity(client_id=self.mqtt.client_id, credentials=credentials)

    def build_options(self, identity: ClientIdentity) -> ConnectionOptions:
        """Connection options; the will payload names the given client."""
        last_will = None
        if self.will.enabled:
            last_will = LastWill.for_client(
                identity.client_id,
                topic=self.will.topic,
                qos=self.will.qos,
                retain=self.will.retain,
            )

        return ConnectionOptions(
            broker=BrokerAddress.parse(self.mqtt.broker),
            keepalive=self.mqtt.keepalive,
            connect_timeout=self.mqtt.connect_timeout,
            reconnect_min_delay=self.mqtt.reconnect_period,
            reconnect_max_delay=max(self.mqtt.reconnect_max_delay, self.mqtt.reconnect_period),
            trust=TrustPolicy(ca_bundle_path=self.tls.ca_bundle, verify=self.tls.verify),
            clean_session=self.mqtt.clean_session,
            last_will=last_will,
        )

    def build_subscriptions(self) -> List[Subscription]:
        return [Subscription(topic_filter=t, qos=self.mqtt.qos) for t in self.mqtt.topics]

    def with_overrides(
        self,
        broker: Optional[str] = None,
        topics: Optional[List[str]] = None,
        qos: Optional[int] = None,
        diagnostic_delay: Optional[float] = None,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        no_log_file: bool = False,
    ) -> "MonitorConfig":
        """
        Apply command-line overrides (None keeps the configured value).

        Raises:
            ConfigurationError: If an override is invalid
        """
        mqtt_changes: Dict[str, Any] = {}
        if broker is not None:
            mqtt_changes["broker"] = broker
        if topics:
            mqtt_changes["topics"] = tuple(topics)
        if qos is not None:
            mqtt_changes["qos"] = qos
        if diagnostic_delay is not None:
            mqtt_changes["diagnostic_delay"] = diagnostic_delay

        logging_changes: Dict[str, Any] = {}
        if log_level is not None:
            logging_changes["level"] = log_level
        if no_log_file:
            logging_changes["log_file"] = None
            logging_changes["error_log_file"] = None
        elif log_file is not None:
            logging_changes["log_file"] = log_file

        return replace(
            self,
            mqtt=replace(self.mqtt, **mqtt_changes),
            logging=replace(self.logging, **logging_changes),
        )
