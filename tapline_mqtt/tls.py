"""
TLS Trust Setup
===============

Bounded Context: Transport Security

Loads the CA trust bundle before every connect attempt and derives the TLS
settings handed to the protocol engine.

Policy:
- Bundle read and usable  → attach it, force strict verification
- Bundle missing          → keep the configured verification flag (info log)
- Bundle unreadable/bad   → keep the configured verification flag (warning log)

The bundle is read with a single open/read attempt; there is no separate
existence check that could race with the read. Nothing here touches the
network.
"""

import ssl
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .logging import LogEvent, StructuredLogger
from .schemas import ConnectionOptions, TrustPolicy

PEM_CERT_MARKER = "-----BEGIN CERTIFICATE-----"


class TrustStatus(str, Enum):
    LOADED = "loaded"
    MISSING = "missing"
    UNREADABLE = "unreadable"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class TrustLoadResult:
    """Outcome of one CA bundle read attempt."""
    status: TrustStatus
    path: Optional[Path] = None
    ca_data: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def loaded(self) -> bool:
        return self.status is TrustStatus.LOADED


def read_ca_bundle(path: Optional[Union[str, Path]]) -> TrustLoadResult:
    """
    Read and sanity-check a PEM CA bundle.

    Args:
        path: Bundle location (None when no bundle is configured)

    Returns:
        TrustLoadResult describing what happened; never raises for I/O or
        content problems
    """
    if path is None:
        return TrustLoadResult(status=TrustStatus.NOT_CONFIGURED)

    path = Path(path)
    try:
        data = path.read_text(encoding='ascii')
    except FileNotFoundError as e:
        return TrustLoadResult(status=TrustStatus.MISSING, path=path, error=e)
    except (OSError, UnicodeDecodeError) as e:
        return TrustLoadResult(status=TrustStatus.UNREADABLE, path=path, error=e)

    if PEM_CERT_MARKER not in data:
        return TrustLoadResult(
            status=TrustStatus.UNREADABLE,
            path=path,
            error=ValueError("No PEM certificate found in CA bundle"),
        )

    try:
        ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT).load_verify_locations(cadata=data)
    except (ssl.SSLError, ValueError) as e:
        return TrustLoadResult(status=TrustStatus.UNREADABLE, path=path, error=e)

    return TrustLoadResult(status=TrustStatus.LOADED, path=path, ca_data=data)


def apply_trust(
    options: ConnectionOptions,
    logger: StructuredLogger
) -> ConnectionOptions:
    """
    Load the configured CA bundle into the connection options.

    Args:
        options: Options as configured
        logger: Structured logger for the trust decision

    Returns:
        Options with the loaded bundle attached (verification forced on), or
        the options unchanged when the bundle could not be used
    """
    if not options.broker.use_tls:
        return options

    trust = options.trust
    result = read_ca_bundle(trust.ca_bundle_path)
    metadata = {
        'ca_bundle': str(result.path) if result.path else None,
        'verify': trust.verify,
    }

    if result.loaded:
        logger.info(
            event=LogEvent.TLS_CA_LOADED,
            message="CA certificate loaded, strict verification enabled",
            metadata={**metadata, 'verify': True},
        )
        return options.with_trust(trust.with_ca_data(result.ca_data))

    if result.status is TrustStatus.UNREADABLE:
        logger.warning(
            event=LogEvent.TLS_CA_UNREADABLE,
            message="Error reading CA certificate, using basic TLS",
            metadata=metadata,
            exc_info=result.error,
        )
    else:
        logger.info(
            event=LogEvent.TLS_CA_MISSING,
            message="CA certificate not found, using basic TLS",
            metadata=metadata,
        )
    return options


def build_ssl_context(trust: TrustPolicy) -> ssl.SSLContext:
    """
    Build the client SSL context for a trust policy.

    With CA data only that bundle is trusted. Without it the system store is
    used, and verification is disabled entirely when trust.verify is False.
    """
    if trust.ca_data is not None:
        context = ssl.create_default_context(cadata=trust.ca_data)
    else:
        context = ssl.create_default_context()

    if not trust.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context
