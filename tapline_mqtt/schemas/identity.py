"""
Client identity: who we are to the broker.

Built once at startup from configuration and never changed afterwards.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..errors import ConfigurationError

CLIENT_ID_PREFIX = "tapline_"


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for broker authentication."""
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def present(self) -> bool:
        return bool(self.username)


@dataclass(frozen=True)
class ClientIdentity:
    """
    Immutable client identity.

    Attributes:
        client_id: MQTT client identifier (unique per broker)
        credentials: Authentication credentials

    Example:
        >>> identity = ClientIdentity.generate(Credentials("big-data-001", "secret"))
        >>> identity.client_id
        'tapline_3f9a0c1d'
    """
    client_id: str
    credentials: Credentials = field(default_factory=Credentials)

    def __post_init__(self):
        if not self.client_id:
            raise ConfigurationError("client_id cannot be empty")
        # MQTT 3.1.1 client identifiers are UTF-8 strings of at most 65535 bytes
        if len(self.client_id.encode('utf-8')) > 65535:
            raise ConfigurationError("client_id is too long")

    @classmethod
    def generate(
        cls,
        credentials: Optional[Credentials] = None,
        prefix: str = CLIENT_ID_PREFIX
    ) -> 'ClientIdentity':
        """Create an identity with a random client id (prefix + 8 hex chars)."""
        return cls(
            client_id=f"{prefix}{uuid.uuid4().hex[:8]}",
            credentials=credentials or Credentials()
        )
