"""Nostr key management for RelayShadow.

Loads the service identity from an environment variable (nsec1 bech32 or
64-char hex). The request client may instead run with a fresh ephemeral
key pair, which is how one-off test requests are sent.

Warning:
    Private keys must **never** be stored in configuration files, source
    code, or logs. Use environment variables or a secret manager.

Examples:
    ```python
    import os

    os.environ["PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    keys = load_keys_from_env("PRIVATE_KEY")
    print(keys.public_key().to_hex())
    ```
"""

from __future__ import annotations

import os
from typing import Any

from nostr_sdk import Keys
from pydantic import BaseModel, Field, model_validator


ENV_PRIVATE_KEY = "PRIVATE_KEY"  # pragma: allowlist secret  # Default env var name


def load_keys_from_env(env_var: str) -> Keys:
    """Load Nostr keys from an environment variable.

    Args:
        env_var: Name of the environment variable holding the private key.

    Returns:
        A ``nostr_sdk.Keys`` instance ready for signing.

    Raises:
        ValueError: If the environment variable is not set or is empty.
        nostr_sdk.NostrSdkError: If the key value is malformed.
    """
    value = os.getenv(env_var)

    if not value:
        raise ValueError(
            f"{env_var} environment variable is required. Generate one with: openssl rand -hex 32"
        )

    return Keys.parse(value)


class KeysConfig(BaseModel):
    """Pydantic mixin that populates ``keys`` during validation.

    Keys come from the environment variable named by ``keys_env``. When
    ``generate_keys`` is true and that variable is unset, an ephemeral key
    pair is generated instead.

    Attributes:
        keys_env: Environment variable name for the private key.
        generate_keys: Fall back to a fresh key pair when ``keys_env`` is unset.
        keys: Loaded ``nostr_sdk.Keys`` (private key plus derived public key).

    Warning:
        ``keys`` holds a live private key; never serialize this model.
    """

    model_config = {"arbitrary_types_allowed": True}

    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for private key",
    )
    generate_keys: bool = Field(
        default=False,
        description="Generate an ephemeral key pair when keys_env is unset",
    )
    keys: Keys = Field(description="Keys loaded from keys_env (required)")

    @model_validator(mode="before")
    @classmethod
    def _load_keys_from_env(cls, data: Any) -> Any:
        """Auto-populate the ``keys`` field from the environment variable."""
        if isinstance(data, dict) and "keys" not in data:
            env_var = data.get("keys_env", cls.model_fields["keys_env"].default)
            generate = data.get("generate_keys", cls.model_fields["generate_keys"].default)
            if generate and not os.getenv(env_var):
                data["keys"] = Keys.generate()
            else:
                data["keys"] = load_keys_from_env(env_var)
        return data

    @property
    def pubkey(self) -> str:
        """Hex public key of the loaded identity."""
        return self.keys.public_key().to_hex()
