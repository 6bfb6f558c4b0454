"""Multi-relay networking: endpoints, frame routing, and the owned session.

Attributes:
    RelayConnection: One endpoint with its state, last error, and reader task.
    ConnectionManager: Concurrent connect with partial-success semantics,
        fixed-delay reconnection, idempotent disconnect.
    ProtocolRouter: Inbound frame demultiplexing and pending acknowledgements.
    RelaySession: Subscriptions and acknowledged best-effort publishing.
"""

from .connection import ConnectionState, RelayConnection
from .manager import DEFAULT_CONNECT_TIMEOUT, DEFAULT_RECONNECT_DELAY, ConnectionManager
from .router import ErrorHandler, MessageHandler, ProtocolRouter, Verifier
from .session import DEFAULT_ACK_TIMEOUT, PublishOutcome, PublishResult, RelaySession


__all__ = [
    "DEFAULT_ACK_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_RECONNECT_DELAY",
    "ConnectionManager",
    "ConnectionState",
    "ErrorHandler",
    "MessageHandler",
    "ProtocolRouter",
    "PublishOutcome",
    "PublishResult",
    "RelayConnection",
    "RelaySession",
    "Verifier",
]
