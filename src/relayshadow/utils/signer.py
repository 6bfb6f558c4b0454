"""Sign and verify [SignedMessage][relayshadow.models.message.SignedMessage] values.

All cryptography (event id hashing, Schnorr signatures) is delegated to
``nostr_sdk``. This module converts between its ``Event`` type and the
pure [SignedMessage][relayshadow.models.message.SignedMessage] model used
everywhere else.

Verification is total: a message that fails structural checks, id
recomputation, or signature verification yields ``False``, never an
exception, so the router can silently drop it.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from nostr_sdk import Event, EventBuilder, Kind, NostrSdkError, Tag, Timestamp

from relayshadow.core.exceptions import SignatureError
from relayshadow.models.message import SignedMessage


if TYPE_CHECKING:
    from collections.abc import Sequence

    from nostr_sdk import Keys


def _to_message(event: Event) -> SignedMessage:
    return SignedMessage.from_dict(json.loads(event.as_json()))


def sign_message(
    keys: Keys,
    kind: int,
    content: str,
    tags: Sequence[Sequence[str]] = (),
    created_at: int | None = None,
) -> SignedMessage:
    """Build, hash, and sign a message with *keys*.

    Args:
        keys: Signing identity.
        kind: Event kind.
        content: Payload.
        tags: Tag arrays, each starting with the tag name.
        created_at: Unix timestamp; defaults to now.

    Returns:
        The signed, immutable message.

    Raises:
        SignatureError: If the SDK rejects the input or signing fails.
    """
    try:
        builder = EventBuilder(Kind(kind), content).tags([Tag.parse(list(tag)) for tag in tags])
        if created_at is not None:
            builder = builder.custom_created_at(Timestamp.from_secs(created_at))
        event = builder.sign_with_keys(keys)
        return _to_message(event)
    except (NostrSdkError, ValueError, TypeError, OverflowError) as e:
        raise SignatureError(f"failed to sign kind {kind} message: {e}") from e


def verify_message(message: SignedMessage) -> bool:
    """Whether *message* has a correct id and a valid signature by its author."""
    try:
        event = Event.from_json(message.to_json())
        return bool(event.verify())
    except (NostrSdkError, ValueError, TypeError):
        return False
