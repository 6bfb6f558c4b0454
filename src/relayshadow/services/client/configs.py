"""Request client configuration models.

See Also:
    [DvmClient][relayshadow.services.client.DvmClient]: The client that
        consumes this configuration.
    [KeysConfig][relayshadow.utils.keys.KeysConfig]: Mixin providing
        Nostr key management fields.
"""

from __future__ import annotations

import re

from pydantic import Field, field_validator

from relayshadow.models import EventKind
from relayshadow.services.common.configs import ConnectionConfig, normalize_relay_list
from relayshadow.utils.keys import KeysConfig


ENV_CLIENT_PRIVATE_KEY = "CLIENT_PRIVATE_KEY"  # pragma: allowlist secret

_HEX_PUBKEY = re.compile(r"^[0-9a-f]{64}$")


def _client_connection() -> ConnectionConfig:
    return ConnectionConfig(connect_timeout=15.0, ack_timeout=10.0)


class DvmClientConfig(KeysConfig):
    """Configuration for the DVM request client.

    The client signs with the key in ``CLIENT_PRIVATE_KEY`` or, when that
    variable is unset, with a fresh ephemeral key pair.

    Attributes:
        relays: Relay URLs to publish requests to and listen on.
        dvm_pubkey: Hex public key of the DVM to address.
        kind: NIP-90 request event kind (responses are kind + 1000).
        connection: Connect, reconnect and acknowledgement timing.
        lookback: Seconds of past responses to ask relays for on subscribe.
        client_name: Sent in the request's ``client`` tag.
        client_version: Sent in the request's ``client`` tag.
    """

    keys_env: str = Field(default=ENV_CLIENT_PRIVATE_KEY, min_length=1)
    generate_keys: bool = Field(default=True)

    relays: list[str] = Field(min_length=1)
    dvm_pubkey: str | None = None
    kind: int = Field(default=int(EventKind.JOB_REQUEST), ge=5000, le=5999)
    connection: ConnectionConfig = Field(default_factory=_client_connection)
    lookback: int = Field(default=300, ge=0)
    client_name: str = Field(default="relayshadow", min_length=1)
    client_version: str = Field(default="1.0")

    @field_validator("relays")
    @classmethod
    def validate_relay_urls(cls, v: list[str]) -> list[str]:
        """Validate that all relay URLs are valid WebSocket URLs."""
        return normalize_relay_list(v)

    @field_validator("dvm_pubkey")
    @classmethod
    def validate_dvm_pubkey(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        if not _HEX_PUBKEY.match(v):
            raise ValueError("dvm_pubkey must be a 64-character hex public key")
        return v
