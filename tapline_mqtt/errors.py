"""
Tapline error taxonomy.

Only ConfigurationError is fatal: it is raised before the protocol engine is
built and terminates the process. Everything after the handshake is logged and
the session keeps observing.
"""

import errno
import socket
import ssl
from enum import Enum
from typing import Optional


class TaplineError(Exception):
    """Base class for all tapline errors."""
    pass


class ConfigurationError(TaplineError, ValueError):
    """Malformed configuration that prevents building the protocol engine."""
    pass


class ConnectError(TaplineError):
    """A connection attempt to the broker failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SubscribeError(TaplineError):
    """The protocol engine could not issue a subscription request."""
    pass


class PublishError(TaplineError):
    """The protocol engine could not issue a publish."""
    pass


class SessionClosedError(TaplineError):
    """Raised when connecting a session that has already been closed."""
    pass


class TransportDiagnosis(str, Enum):
    """Diagnosis tag for recoverable transport failures."""

    DNS = "dns"
    REFUSED = "refused"
    TIMEOUT = "timeout"
    TLS = "tls"
    UNKNOWN = "unknown"


_DNS_ERRNOS = {
    getattr(socket, name)
    for name in ('EAI_NONAME', 'EAI_AGAIN', 'EAI_FAIL', 'EAI_NODATA')
    if hasattr(socket, name)
}


def diagnose(cause: Optional[BaseException]) -> TransportDiagnosis:
    """
    Classify a transport failure.

    ConnectError is unwrapped to its cause first.

    Args:
        cause: Exception reported by the protocol engine

    Returns:
        TransportDiagnosis tag for logging
    """
    if isinstance(cause, ConnectError) and cause.cause is not None:
        cause = cause.cause

    if isinstance(cause, socket.gaierror):
        return TransportDiagnosis.DNS
    if isinstance(cause, ConnectionRefusedError):
        return TransportDiagnosis.REFUSED
    if isinstance(cause, (TimeoutError, socket.timeout)):
        return TransportDiagnosis.TIMEOUT
    if isinstance(cause, ssl.SSLError):
        return TransportDiagnosis.TLS
    if isinstance(cause, OSError):
        if cause.errno in _DNS_ERRNOS:
            return TransportDiagnosis.DNS
        if cause.errno == errno.ECONNREFUSED:
            return TransportDiagnosis.REFUSED
        if cause.errno == errno.ETIMEDOUT:
            return TransportDiagnosis.TIMEOUT
    return TransportDiagnosis.UNKNOWN
