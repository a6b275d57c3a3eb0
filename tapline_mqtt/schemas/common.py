"""
Common Schema Types
==================

Bounded Context: MQTT Data Structures

Types and validators shared across identity, options and message schemas.

Design Principles:
- Frozen dataclasses
- Validation: Constructors validate invariants and raise ConfigurationError

Types:
- Timestamp: UTC ISO 8601 string for JSON payloads
- validate_qos: QoS level check (0, 1, 2)
- validate_topic_filter / validate_topic_name: MQTT topic syntax checks
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from ..errors import ConfigurationError

QOS_LEVELS = (0, 1, 2)


def validate_qos(qos: int) -> int:
    """Return qos unchanged if it is a valid MQTT QoS level."""
    if isinstance(qos, bool) or qos not in QOS_LEVELS:
        raise ConfigurationError(f"MQTT QoS must be 0, 1, or 2, got {qos!r}")
    return qos


def validate_topic_filter(topic_filter: str) -> str:
    """
    Check MQTT topic filter syntax.

    '+' must occupy a whole level; '#' must occupy the last level.

    Raises:
        ConfigurationError: If the filter is empty or malformed
    """
    if not isinstance(topic_filter, str):
        raise ConfigurationError(f"Topic filter must be a string, got {topic_filter!r}")
    if not topic_filter:
        raise ConfigurationError("Topic filter cannot be empty")

    levels = topic_filter.split('/')
    for index, level in enumerate(levels):
        if '#' in level and (level != '#' or index != len(levels) - 1):
            raise ConfigurationError(
                f"'#' must be the whole last level of a topic filter, got {topic_filter!r}"
            )
        if '+' in level and level != '+':
            raise ConfigurationError(
                f"'+' must occupy a whole topic level, got {topic_filter!r}"
            )
    return topic_filter


def validate_topic_name(topic: str) -> str:
    """Check that a publish topic is non-empty and wildcard-free."""
    if not topic:
        raise ConfigurationError("Topic cannot be empty")
    if '+' in topic or '#' in topic:
        raise ConfigurationError(f"Publish topic cannot contain wildcards, got {topic!r}")
    return topic


@dataclass(frozen=True)
class Timestamp:
    """
    UTC wall-clock time as an ISO 8601 string, as carried in JSON payloads.

    Example:
        >>> Timestamp.now().value
        '2025-10-24T15:30:45.123456+00:00'
    """
    value: str

    @classmethod
    def now(cls) -> 'Timestamp':
        return cls(value=datetime.now(timezone.utc).isoformat())
