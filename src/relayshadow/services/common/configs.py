"""Shared configuration models for RelayShadow services.

Both the DVM and the request client talk to relays through a
[RelaySession][relayshadow.network.session.RelaySession]; the
[ConnectionConfig][relayshadow.services.common.configs.ConnectionConfig]
below carries the session's timing policy, and
[normalize_relay_list][relayshadow.services.common.configs.normalize_relay_list]
validates the relay lists of both configs.

Examples:
    ```yaml
    connection:
      connect_timeout: 10.0
      reconnect_delay: 5.0
      max_reconnect_attempts: 0  # retry forever
      ack_timeout: 5.0
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from relayshadow.models import Relay
from relayshadow.network import RelaySession


if TYPE_CHECKING:
    from collections.abc import Iterable


class ConnectionConfig(BaseModel):
    """Relay connection and publish acknowledgement timing.

    Attributes:
        connect_timeout: Bound on each connection attempt, in seconds.
        reconnect_delay: Fixed delay before each reconnect attempt.
        max_reconnect_attempts: Reconnect limit per relay (``0`` = unlimited).
        ack_timeout: Per-relay wait for an ``OK`` after publishing.
        allow_insecure: Skip TLS certificate verification.
    """

    connect_timeout: float = Field(default=10.0, ge=0.1, le=120.0)
    reconnect_delay: float = Field(default=5.0, ge=0.0, le=3600.0)
    max_reconnect_attempts: int = Field(default=0, ge=0)
    ack_timeout: float = Field(default=5.0, ge=0.1, le=120.0)
    allow_insecure: bool = False

    def build_session(self) -> RelaySession:
        """Create a [RelaySession][relayshadow.network.session.RelaySession] with this policy."""
        return RelaySession(
            connect_timeout=self.connect_timeout,
            reconnect_delay=self.reconnect_delay,
            max_reconnect_attempts=self.max_reconnect_attempts,
            ack_timeout=self.ack_timeout,
            allow_insecure=self.allow_insecure,
        )


def normalize_relay_list(urls: Iterable[str]) -> list[str]:
    """Validate and normalize relay URLs, dropping duplicates.

    Raises:
        ValueError: If any URL is not a valid ws/wss relay URL.
    """
    normalized: dict[str, None] = {}
    for url in urls:
        try:
            normalized.setdefault(Relay(url).url, None)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid relay URL '{url}': {e}") from e
    return list(normalized)
