"""
Immutable signed Nostr protocol message.

[SignedMessage][relayshadow.models.message.SignedMessage] is the pure,
I/O-free representation of a NIP-01 event as it travels over the wire.
Its ``id`` and ``sig`` are a function of every other field: replacing any
field (``dataclasses.replace``) yields a message whose signature no longer
verifies and that must be re-signed.

Signing and verification live in
[relayshadow.utils.signer][relayshadow.utils.signer], which wraps
``nostr_sdk``; this module only checks structure.

See Also:
    [relayshadow.nips.nip90][]: Builds job requests and results on top of
        this model.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ._validation import validate_hex, validate_str_no_null, validate_timestamp
from .constants import EVENT_KIND_MAX


_ID_LENGTH = 64
_PUBKEY_LENGTH = 64
_SIG_LENGTH = 128


@dataclass(frozen=True, slots=True)
class SignedMessage:
    """A signed Nostr event.

    Attributes:
        id: Hex SHA-256 of the canonical serialization.
        pubkey: Hex x-only public key of the author.
        created_at: Unix timestamp of creation.
        kind: Event kind.
        tags: Ordered tag arrays; the first element of each is the tag name.
        content: Opaque payload.
        sig: Hex Schnorr signature over ``id``.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a hex field has the wrong length, the kind is out of
            range, or a tag is empty.
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str
    sig: str

    def __post_init__(self) -> None:
        validate_hex(self.id, "id", _ID_LENGTH)
        validate_hex(self.pubkey, "pubkey", _PUBKEY_LENGTH)
        validate_hex(self.sig, "sig", _SIG_LENGTH)
        validate_timestamp(self.created_at, "created_at")
        validate_timestamp(self.kind, "kind")
        if self.kind > EVENT_KIND_MAX:
            raise ValueError(f"kind must be <= {EVENT_KIND_MAX}, got {self.kind}")
        validate_str_no_null(self.content, "content")

        tags = tuple(tuple(tag) for tag in self.tags)
        for tag in tags:
            if not tag:
                raise ValueError("tags must not contain empty arrays")
            for value in tag:
                validate_str_no_null(value, "tag value")
        object.__setattr__(self, "tags", tags)

    # -------------------------------------------------------------------------
    # Tag access
    # -------------------------------------------------------------------------

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named *name*, in order."""
        return [tag[1] for tag in self.tags if tag[0] == name and len(tag) > 1]

    def first_tag_value(self, name: str) -> str | None:
        """Return the first value of the first tag named *name*, if any."""
        values = self.tag_values(name)
        return values[0] if values else None

    def is_addressed_to(self, pubkey: str) -> bool:
        """Whether a ``p`` tag names *pubkey* as a recipient."""
        return pubkey in self.tag_values("p")

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Any) -> SignedMessage:
        """Build a message from a decoded NIP-01 event object.

        Raises:
            TypeError: If *data* is not a mapping or a field has the wrong type.
            ValueError: If a required field is missing or invalid.
        """
        if not isinstance(data, dict):
            raise TypeError(f"event must be an object, got {type(data).__name__}")
        try:
            raw_tags = data["tags"]
            if not isinstance(raw_tags, list) or not all(isinstance(t, list) for t in raw_tags):
                raise TypeError("tags must be a list of lists")
            return cls(
                id=data["id"],
                pubkey=data["pubkey"],
                created_at=data["created_at"],
                kind=data["kind"],
                tags=tuple(tuple(t) for t in raw_tags),
                content=data["content"],
                sig=data["sig"],
            )
        except KeyError as e:
            raise ValueError(f"event is missing field {e.args[0]!r}") from None

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 JSON object form of this message."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        """Return the compact JSON encoding of this message."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
