"""Nostr keys, message signing, and WebSocket transport.

The utils layer depends on [relayshadow.models][relayshadow.models] and on
the exception hierarchy in [relayshadow.core.exceptions][]. It is used by
[relayshadow.network][relayshadow.network] and
[relayshadow.services][relayshadow.services].

Attributes:
    keys: Key pair loading from environment variables with Pydantic
        validation, or ephemeral generation for the request client.
    signer: Signing and verification of
        [SignedMessage][relayshadow.models.message.SignedMessage] values
        over ``nostr_sdk``.
    transport: aiohttp WebSocket sockets and the connector seam used by
        [ConnectionManager][relayshadow.network.manager.ConnectionManager].
"""
