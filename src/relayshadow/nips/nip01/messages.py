"""
NIP-01 wire frames.

Relays and clients exchange JSON arrays whose first element names the
frame type. This module builds the outbound client frames (``REQ``,
``EVENT``, ``CLOSE``) and parses inbound relay frames (``EVENT``, ``OK``,
``NOTICE``, ``EOSE``, ``AUTH``, ``CLOSED``) into typed dataclasses.

Parsing is purely structural: an ``EVENT`` frame's message is returned as
the raw decoded object and validated later by the
[ProtocolRouter][relayshadow.network.router.ProtocolRouter].

See Also:
    [relayshadow.network.router][]: Dispatches parsed frames to handlers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from relayshadow.core.exceptions import ProtocolError


if TYPE_CHECKING:
    from relayshadow.models.message import SignedMessage

    from .filter import SubscriptionFilter


_MIN_FRAME_LEN = 2


class FrameType(StrEnum):
    """First element of a NIP-01 frame."""

    REQ = "REQ"
    EVENT = "EVENT"
    CLOSE = "CLOSE"
    OK = "OK"
    NOTICE = "NOTICE"
    EOSE = "EOSE"
    AUTH = "AUTH"
    CLOSED = "CLOSED"


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------


def _encode(frame: list[Any]) -> str:
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)


def req_frame(subscription_id: str, *filters: SubscriptionFilter) -> str:
    """Encode a ``["REQ", subscription_id, filter, ...]`` frame."""
    if not filters:
        raise ValueError("REQ requires at least one filter")
    return _encode([FrameType.REQ.value, subscription_id, *(f.to_dict() for f in filters)])


def event_frame(message: SignedMessage) -> str:
    """Encode an ``["EVENT", message]`` frame."""
    return _encode([FrameType.EVENT.value, message.to_dict()])


def close_frame(subscription_id: str) -> str:
    """Encode a ``["CLOSE", subscription_id]`` frame."""
    return _encode([FrameType.CLOSE.value, subscription_id])


# ---------------------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EventMessage:
    """``["EVENT", subscription_id, message]``: a stored or live message."""

    subscription_id: str
    event: dict[str, Any]


@dataclass(frozen=True, slots=True)
class OkMessage:
    """``["OK", message_id, accepted, reason]``: publish acknowledgement."""

    message_id: str
    accepted: bool
    reason: str = ""


@dataclass(frozen=True, slots=True)
class NoticeMessage:
    """``["NOTICE", text]``: human-readable relay notice."""

    text: str


@dataclass(frozen=True, slots=True)
class EoseMessage:
    """``["EOSE", subscription_id]``: end of stored events."""

    subscription_id: str


@dataclass(frozen=True, slots=True)
class AuthMessage:
    """``["AUTH", challenge]``: NIP-42 authentication challenge."""

    challenge: str


@dataclass(frozen=True, slots=True)
class ClosedMessage:
    """``["CLOSED", subscription_id, reason]``: subscription closed by relay."""

    subscription_id: str
    reason: str = ""


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    """A well-formed frame of a type this client does not handle."""

    frame_type: str
    args: tuple[Any, ...]


RelayMessage = (
    EventMessage
    | OkMessage
    | NoticeMessage
    | EoseMessage
    | AuthMessage
    | ClosedMessage
    | UnknownMessage
)


def _require_str(value: Any, frame_type: str, name: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"{frame_type} {name} must be a string, got {type(value).__name__}")
    return value


def _optional_str(frame: list[Any], index: int) -> str:
    if len(frame) > index and isinstance(frame[index], str):
        return frame[index]
    return ""


def parse_relay_message(raw: str) -> RelayMessage:
    """Parse one inbound text frame.

    Args:
        raw: The frame text as received from the WebSocket.

    Returns:
        The typed frame. Unrecognized frame types yield
        [UnknownMessage][relayshadow.nips.nip01.messages.UnknownMessage].

    Raises:
        ProtocolError: If the frame is not JSON, not an array, has fewer
            than two elements, or has arguments of the wrong type or arity.
    """
    try:
        frame = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        # ValueError covers JSONDecodeError and over-long integer literals
        raise ProtocolError(f"frame is not valid JSON: {e}") from None

    if not isinstance(frame, list):
        raise ProtocolError(f"frame must be an array, got {type(frame).__name__}")
    if len(frame) < _MIN_FRAME_LEN:
        raise ProtocolError(f"frame must have at least {_MIN_FRAME_LEN} elements")

    frame_type = frame[0]
    if not isinstance(frame_type, str):
        raise ProtocolError("frame type must be a string")

    match frame_type:
        case FrameType.EVENT:
            if len(frame) < 3:  # noqa: PLR2004
                raise ProtocolError("EVENT frame requires a subscription id and a message")
            sub_id = _require_str(frame[1], frame_type, "subscription id")
            if not isinstance(frame[2], dict):
                raise ProtocolError("EVENT message must be an object")
            return EventMessage(subscription_id=sub_id, event=frame[2])
        case FrameType.OK:
            if len(frame) < 3:  # noqa: PLR2004
                raise ProtocolError("OK frame requires a message id and an accepted flag")
            message_id = _require_str(frame[1], frame_type, "message id")
            if not isinstance(frame[2], bool):
                raise ProtocolError("OK accepted flag must be a boolean")
            return OkMessage(message_id=message_id, accepted=frame[2], reason=_optional_str(frame, 3))
        case FrameType.NOTICE:
            return NoticeMessage(text=_require_str(frame[1], frame_type, "text"))
        case FrameType.EOSE:
            return EoseMessage(subscription_id=_require_str(frame[1], frame_type, "subscription id"))
        case FrameType.AUTH:
            return AuthMessage(challenge=_require_str(frame[1], frame_type, "challenge"))
        case FrameType.CLOSED:
            return ClosedMessage(
                subscription_id=_require_str(frame[1], frame_type, "subscription id"),
                reason=_optional_str(frame, 2),
            )
        case _:
            return UnknownMessage(frame_type=frame_type, args=tuple(frame[1:]))
