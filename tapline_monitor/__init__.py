"""
Tapline Monitor
===============

Long-running MQTT traffic monitor built on tapline_mqtt: loads YAML
configuration, sets up log sinks and runs one SessionController until
SIGINT/SIGTERM.
"""

from .config import (
    LoggingConfig,
    MonitorConfig,
    MQTTConfig,
    TLSConfig,
    WillConfig,
)
from .app import MonitorApp, build_handlers, setup_logging

__all__ = [
    'MonitorConfig',
    'MQTTConfig',
    'TLSConfig',
    'WillConfig',
    'LoggingConfig',
    'MonitorApp',
    'build_handlers',
    'setup_logging',
]
