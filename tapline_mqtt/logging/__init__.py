"""
Structured Logging for Tapline
==============================

Bounded Context: Session Observability

JSON-structured logging used as the stats/observability sink of the session
controller.

Design:
- One JSON line per record, written to stdout and the monitor log files
- Event names are LogEvent members grouped by prefix (mqtt., message., tls., ...)

Public API
----------
    LogEvent: Event taxonomy
    StructuredLogger: Component logger emitting JSON lines
    JSONFormatter: Pass-through formatter for pre-rendered JSON records
    create_logger: Shorthand constructor

Example:
    >>> from tapline_mqtt.logging import StructuredLogger, LogEvent
    >>> logger = StructuredLogger(component="session")
    >>> logger.info(
    ...     event=LogEvent.MQTT_CONNECTED,
    ...     message="Connected to broker",
    ...     metadata={'broker': 'mqtts://broker.example.com:8883'}
    ... )
"""

from .events import LogEvent
from .structured import JSONFormatter, StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'JSONFormatter',
    'StructuredLogger',
    'create_logger',
]
