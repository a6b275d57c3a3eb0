"""
Structured JSON Logger
=====================

Bounded Context: Session Observability

This module provides a structured logger that outputs JSON logs, one object
per line. It is the stats/observability sink of the session controller: every
lifecycle transition, subscription grant and classified message ends up here.

Design:
- One JSON object per line, safe to grep or ship to an aggregator
- Callable from paho, timer and loop threads (stdlib logging locks)
- Contextual metadata (topic, client_id, qos, ...)
- Event names come from LogEvent, never free text

Example:
    >>> logger = StructuredLogger(component="session")
    >>> logger.info(
    ...     event=LogEvent.MESSAGE_RECEIVED,
    ...     message="Message #1 received",
    ...     metadata={'topic': 'sensors/a', 'size': 42}
    ... )

Output:
    {"timestamp": "2025-10-24T15:30:45.123456+00:00", "level": "INFO",
     "component": "session", "event": "message.received",
     "message": "Message #1 received", "metadata": {"topic": "sensors/a", "size": 42}}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Iterable, Optional
from .events import LogEvent


class StructuredLogger:
    """
    Logger whose records are JSON lines tagged with a component and a LogEvent.

    Attributes:
        component: Component name (e.g., "session", "monitor")
        logger: stdlib logger named tapline_mqtt.<component>
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        logger_name: Optional[str] = None,
        handlers: Optional[Iterable[logging.Handler]] = None
    ):
        """
        Attach the logger to its sinks.

        Args:
            component: Component identifier (e.g., "session")
            level: Minimum level written (default: INFO)
            logger_name: Custom logger name (default: tapline_mqtt.<component>)
            handlers: Explicit handlers (console, files). When given, records
                stop propagating to the root logger so each line is written once.
        """
        self.component = component
        self.logger_name = logger_name or f"tapline_mqtt.{component}"
        self.logger = logging.getLogger(self.logger_name)
        self.logger.setLevel(level)

        if handlers is not None:
            for handler in list(self.logger.handlers):
                self.logger.removeHandler(handler)
            for handler in handlers:
                handler.setFormatter(JSONFormatter())
                self.logger.addHandler(handler)
            self.logger.propagate = False
        elif not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def _log(
        self,
        level: str,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Render one entry and hand it to the stdlib logger.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            event: Typed log event
            message: Human-readable message
            metadata: Additional context (topic, qos, etc.)
            exc_info: Exception for WARNING/ERROR logs
        """
        log_level = getattr(logging, level)
        if not self.logger.isEnabledFor(log_level):
            return

        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'component': self.component,
            'event': event.value,
            'message': message,
        }

        if metadata:
            log_entry['metadata'] = metadata

        if exc_info:
            log_entry['exception'] = {
                'type': type(exc_info).__name__,
                'message': str(exc_info)
            }

        # Metadata may carry bytes, datetimes or enums; render them as text
        self.logger.log(
            log_level,
            json.dumps(log_entry, default=str, ensure_ascii=False),
            exc_info=exc_info if level == 'ERROR' else None
        )

    def debug(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Per-event detail (ignored events, publish acks)."""
        self._log('DEBUG', event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Normal lifecycle and traffic.

        Example:
            >>> logger.info(
            ...     event=LogEvent.SUBSCRIPTION_GRANTED,
            ...     message="Subscribed to: # (QoS: 1)",
            ...     metadata={'topic_filter': '#', 'qos': 1}
            ... )
        """
        self._log('INFO', event, message, metadata)

    def warning(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """Degraded but running: offline broker, fallback TLS, refused filter."""
        self._log('WARNING', event, message, metadata, exc_info)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """
        Failures; exc_info type and message land in the "exception" field.

        Example:
            >>> logger.error(
            ...     event=LogEvent.MQTT_DNS_ERROR,
            ...     message="DNS error: cannot resolve the broker hostname",
            ...     exc_info=e,
            ...     metadata={'broker': 'mqtts://broker:8883'}
            ... )
        """
        self._log('ERROR', event, message, metadata, exc_info)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)


class JSONFormatter(logging.Formatter):
    """Pass-through formatter: StructuredLogger already rendered the JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        # Exception type and message are already inside the JSON entry
        return record.getMessage()


def create_logger(
    component: str,
    level: int = logging.INFO,
    handlers: Optional[Iterable[logging.Handler]] = None
) -> StructuredLogger:
    """
    Build a StructuredLogger named tapline_mqtt.<component>.

    Example:
        >>> logger = create_logger("session", level=logging.DEBUG)
    """
    return StructuredLogger(component=component, level=level, handlers=handlers)
