"""
Protocol router: inbound frame demultiplexing.

[ProtocolRouter][relayshadow.network.router.ProtocolRouter] turns each
inbound text frame of one endpoint into a typed NIP-01 frame and acts on
it:

| frame    | action                                                          |
|----------|-----------------------------------------------------------------|
| EVENT    | validate; dispatch to handlers registered for ``(kind, recipient)`` |
| OK       | resolve the pending acknowledgement ``(url, message_id)``; a rejection is also reported to error handlers |
| NOTICE   | reported to error handlers, never fatal                          |
| EOSE     | logged                                                          |
| AUTH     | passed to [handle_auth()][relayshadow.network.router.ProtocolRouter.handle_auth], currently a logged no-op |
| CLOSED   | logged                                                          |
| other    | logged and ignored                                              |

Malformed frames are logged and dropped without affecting the endpoint.
Messages that fail structural or signature validation are dropped.

Handlers are synchronous and run on the endpoint's reader task; anything
slow must be scheduled as a separate task so the reader keeps draining
frames (including the acknowledgements that task may be waiting on).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from relayshadow.core.exceptions import ProtocolError
from relayshadow.core.logger import Logger
from relayshadow.models.message import SignedMessage
from relayshadow.nips.nip01 import (
    AuthMessage,
    ClosedMessage,
    EoseMessage,
    EventMessage,
    NoticeMessage,
    OkMessage,
    UnknownMessage,
    parse_relay_message,
)
from relayshadow.utils.signer import verify_message


MessageHandler = Callable[[str, SignedMessage], None]
ErrorHandler = Callable[[str, str], None]
Verifier = Callable[[SignedMessage], bool]


class ProtocolRouter:
    """Demultiplexes inbound frames and tracks pending acknowledgements.

    Args:
        verifier: Signature check applied to every inbound message.
    """

    def __init__(self, verifier: Verifier = verify_message) -> None:
        self._verifier = verifier
        self._interests: dict[tuple[int, str], list[MessageHandler]] = {}
        self._error_handlers: list[ErrorHandler] = []
        self._pending: dict[tuple[str, str], asyncio.Future[OkMessage]] = {}
        self._logger = Logger("router")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, kind: int, recipient: str, handler: MessageHandler) -> None:
        """Dispatch valid messages of *kind* addressed to *recipient* to *handler*."""
        self._interests.setdefault((kind, recipient), []).append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        """Receive ``(url, reason)`` for notices and rejected acknowledgements."""
        self._error_handlers.append(handler)

    # -------------------------------------------------------------------------
    # Acknowledgements
    # -------------------------------------------------------------------------

    def expect_ack(self, url: str, message_id: str) -> asyncio.Future[OkMessage]:
        """Register a pending acknowledgement and return its future."""
        key = (url, message_id)
        future = self._pending.get(key)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._pending[key] = future
        return future

    def discard_ack(self, url: str, message_id: str) -> None:
        self._pending.pop((url, message_id), None)

    def cancel_pending(self) -> int:
        """Cancel every pending acknowledgement. Returns how many were cancelled."""
        pending = list(self._pending.values())
        self._pending.clear()
        cancelled = 0
        for future in pending:
            if not future.done():
                future.cancel()
                cancelled += 1
        return cancelled

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Inbound frames
    # -------------------------------------------------------------------------

    def feed(self, url: str, raw: str) -> None:
        """Process one inbound frame from the endpoint *url*."""
        try:
            frame = parse_relay_message(raw)
        except ProtocolError as e:
            self._logger.debug("frame_malformed", url=url, error=str(e))
            return

        match frame:
            case EventMessage():
                self._on_event(url, frame)
            case OkMessage():
                self._on_ok(url, frame)
            case NoticeMessage():
                self._logger.warning("relay_notice", url=url, notice=frame.text)
                self._emit_error(url, f"notice: {frame.text}")
            case EoseMessage():
                self._logger.debug("end_of_stored_events", url=url, subscription=frame.subscription_id)
            case AuthMessage():
                self.handle_auth(url, frame.challenge)
            case ClosedMessage():
                self._logger.info(
                    "subscription_closed",
                    url=url,
                    subscription=frame.subscription_id,
                    reason=frame.reason,
                )
            case UnknownMessage():
                self._logger.debug("frame_ignored", url=url, frame_type=frame.frame_type)

    def handle_auth(self, url: str, challenge: str) -> None:
        """Respond to a NIP-42 authentication challenge.

        Authentication is not supported yet: the challenge is logged and no
        ``AUTH`` reply is sent.
        """
        self._logger.info("auth_challenge_ignored", url=url, challenge=challenge)

    def _on_event(self, url: str, frame: EventMessage) -> None:
        try:
            message = SignedMessage.from_dict(frame.event)
        except (TypeError, ValueError) as e:
            self._logger.debug("message_invalid", url=url, error=str(e))
            return

        handlers = [
            handler
            for (kind, recipient), registered in self._interests.items()
            if kind == message.kind and message.is_addressed_to(recipient)
            for handler in registered
        ]
        if not handlers:
            return

        if not self._verifier(message):
            self._logger.debug("message_bad_signature", url=url, message_id=message.id)
            return

        for handler in handlers:
            try:
                handler(url, message)
            except Exception as e:  # error boundary for one handler
                self._logger.error(
                    "handler_failed",
                    url=url,
                    message_id=message.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _on_ok(self, url: str, frame: OkMessage) -> None:
        future = self._pending.pop((url, frame.message_id), None)
        if future is not None and not future.done():
            future.set_result(frame)
        if not frame.accepted:
            self._logger.warning(
                "message_rejected",
                url=url,
                message_id=frame.message_id,
                reason=frame.reason,
            )
            self._emit_error(url, f"rejected {frame.message_id}: {frame.reason}")

    def _emit_error(self, url: str, reason: str) -> None:
        for handler in self._error_handlers:
            try:
                handler(url, reason)
            except Exception as e:  # error boundary for one handler
                self._logger.error("error_handler_failed", url=url, error=str(e))
