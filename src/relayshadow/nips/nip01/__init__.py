"""NIP-01: basic protocol flow (wire frames and subscription filters)."""

from .filter import SubscriptionFilter
from .messages import (
    AuthMessage,
    ClosedMessage,
    EoseMessage,
    EventMessage,
    FrameType,
    NoticeMessage,
    OkMessage,
    RelayMessage,
    UnknownMessage,
    close_frame,
    event_frame,
    parse_relay_message,
    req_frame,
)


__all__ = [
    "AuthMessage",
    "ClosedMessage",
    "EoseMessage",
    "EventMessage",
    "FrameType",
    "NoticeMessage",
    "OkMessage",
    "RelayMessage",
    "SubscriptionFilter",
    "UnknownMessage",
    "close_frame",
    "event_frame",
    "parse_relay_message",
    "req_frame",
]
