"""
Relay session: subscriptions and acknowledged publishing.

[RelaySession][relayshadow.network.session.RelaySession] is the single
owned object through which a DVM or a client talks to its relays. It
composes a [ConnectionManager][relayshadow.network.manager.ConnectionManager]
and a [ProtocolRouter][relayshadow.network.router.ProtocolRouter] and holds
all mutable network state of one instance: endpoints, subscriptions, and
pending acknowledgements.

Publishing is best-effort multicast. A message goes to every open endpoint
and each endpoint gets ``ack_timeout`` seconds to answer with ``OK``:

- ``accepted``: ``OK true``
- ``rejected``: ``OK false``
- ``timeout``: no answer in time; counted as indeterminate success
- ``failed``: the frame could not be sent

The publish succeeds if at least one endpoint is ``accepted`` or
``timeout``.

Examples:
    ```python
    session = RelaySession(ack_timeout=5.0)
    await session.connect(["wss://relay.example.com"])
    session.on_message(5600, my_pubkey, handle_request)
    await session.subscribe(SubscriptionFilter(kinds=(5600,), tags={"p": (my_pubkey,)}))
    result = await session.publish(signed)
    ```
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from relayshadow.core.exceptions import ConnectivityError
from relayshadow.core.logger import Logger
from relayshadow.nips.nip01 import close_frame, event_frame, req_frame
from relayshadow.utils.signer import verify_message
from relayshadow.utils.transport import make_connector

from .manager import DEFAULT_CONNECT_TIMEOUT, DEFAULT_RECONNECT_DELAY, ConnectionManager
from .router import ProtocolRouter


if TYPE_CHECKING:
    from collections.abc import Iterable

    from relayshadow.models.message import SignedMessage
    from relayshadow.nips.nip01 import SubscriptionFilter
    from relayshadow.utils.transport import Connector

    from .router import ErrorHandler, MessageHandler, Verifier


DEFAULT_ACK_TIMEOUT = 5.0


class PublishOutcome(StrEnum):
    """Per-endpoint result of a publish."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Outcome of publishing one message to every open endpoint.

    Attributes:
        message_id: Identity of the published message.
        outcomes: Outcome per endpoint URL.
        reasons: Relay-supplied or local reason per endpoint, when any.
    """

    message_id: str
    outcomes: dict[str, PublishOutcome] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return any(
            outcome in (PublishOutcome.ACCEPTED, PublishOutcome.TIMEOUT)
            for outcome in self.outcomes.values()
        )

    def count(self, outcome: PublishOutcome) -> int:
        return sum(1 for o in self.outcomes.values() if o is outcome)


class RelaySession:
    """Owned network session of one DVM or client instance.

    Args:
        connector: Socket factory; defaults to the aiohttp WebSocket
            connector with the given TLS policy.
        connect_timeout: Bound on each connection attempt.
        reconnect_delay: Fixed delay before each reconnect attempt.
        max_reconnect_attempts: Reconnect limit per endpoint (``0`` = unlimited).
        ack_timeout: Per-endpoint wait for a publish acknowledgement.
        allow_insecure: Skip TLS verification with the default connector.
        verifier: Signature check for inbound messages.
    """

    def __init__(
        self,
        connector: Connector | None = None,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = 0,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT,
        allow_insecure: bool = False,
        verifier: Verifier = verify_message,
    ) -> None:
        self._ack_timeout = ack_timeout
        self._subscriptions: dict[str, tuple[SubscriptionFilter, ...]] = {}
        self._router = ProtocolRouter(verifier=verifier)
        self._manager = ConnectionManager(
            connector or make_connector(allow_insecure=allow_insecure),
            connect_timeout=connect_timeout,
            reconnect_delay=reconnect_delay,
            max_reconnect_attempts=max_reconnect_attempts,
            on_frame=self._router.feed,
            on_open=self._resubscribe,
        )
        self._logger = Logger("session")

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def router(self) -> ProtocolRouter:
        return self._router

    @property
    def open_count(self) -> int:
        return self._manager.open_count

    @property
    def subscriptions(self) -> list[str]:
        return list(self._subscriptions)

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    async def connect(self, urls: Iterable[str]) -> int:
        """Open the endpoints; see [ConnectionManager.connect][relayshadow.network.manager.ConnectionManager.connect]."""
        return await self._manager.connect(urls)

    async def disconnect(self) -> None:
        """Drop subscriptions, cancel pending acknowledgements, close endpoints. Idempotent."""
        self._subscriptions.clear()
        cancelled = self._router.cancel_pending()
        if cancelled:
            self._logger.debug("pending_acks_cancelled", count=cancelled)
        await self._manager.disconnect()

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def on_message(self, kind: int, recipient: str, handler: MessageHandler) -> None:
        """Register *handler* for valid messages of *kind* addressed to *recipient*."""
        self._router.register(kind, recipient, handler)

    def on_error(self, handler: ErrorHandler) -> None:
        """Register *handler* for notices and rejected acknowledgements."""
        self._router.on_error(handler)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, *filters: SubscriptionFilter, prefix: str = "sub") -> str:
        """Send ``REQ`` to every open endpoint and remember it for reopens.

        Returns:
            The subscription id, ``<prefix>-<random hex>``.
        """
        subscription_id = f"{prefix}-{secrets.token_hex(8)}"
        frame = req_frame(subscription_id, *filters)
        self._subscriptions[subscription_id] = filters
        sent = await self._manager.broadcast(frame)
        self._logger.info(
            "subscribed",
            subscription=subscription_id,
            relays=sum(1 for err in sent.values() if err is None),
        )
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Send ``CLOSE`` to every open endpoint and forget the subscription."""
        if self._subscriptions.pop(subscription_id, None) is None:
            return
        await self._manager.broadcast(close_frame(subscription_id))
        self._logger.info("unsubscribed", subscription=subscription_id)

    async def _resubscribe(self, url: str) -> None:
        for subscription_id, filters in list(self._subscriptions.items()):
            await self._manager.send(url, req_frame(subscription_id, *filters))
            self._logger.debug("resubscribed", url=url, subscription=subscription_id)

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, message: SignedMessage) -> PublishResult:
        """Send *message* to every open endpoint and collect acknowledgements."""
        urls = self._manager.open_urls
        if not urls:
            self._logger.warning("publish_no_relays", message_id=message.id)
            return PublishResult(message_id=message.id)

        frame = event_frame(message)
        results = await asyncio.gather(*(self._publish_one(url, frame, message.id) for url in urls))

        outcomes: dict[str, PublishOutcome] = {}
        reasons: dict[str, str] = {}
        for url, (outcome, reason) in zip(urls, results, strict=True):
            outcomes[url] = outcome
            if reason:
                reasons[url] = reason

        result = PublishResult(message_id=message.id, outcomes=outcomes, reasons=reasons)
        self._logger.info(
            "message_published" if result.success else "message_publish_failed",
            message_id=message.id,
            kind=message.kind,
            accepted=result.count(PublishOutcome.ACCEPTED),
            rejected=result.count(PublishOutcome.REJECTED),
            timeout=result.count(PublishOutcome.TIMEOUT),
            failed=result.count(PublishOutcome.FAILED),
        )
        return result

    async def _publish_one(self, url: str, frame: str, message_id: str) -> tuple[PublishOutcome, str]:
        future = self._router.expect_ack(url, message_id)
        try:
            try:
                await self._manager.send(url, frame)
            except ConnectivityError as e:
                return PublishOutcome.FAILED, str(e)

            try:
                ack = await asyncio.wait_for(future, timeout=self._ack_timeout)
            except TimeoutError:
                return PublishOutcome.TIMEOUT, ""
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if future.cancelled() and (task is None or not task.cancelling()):
                    return PublishOutcome.FAILED, "session disconnected"
                raise

            if ack.accepted:
                return PublishOutcome.ACCEPTED, ack.reason
            return PublishOutcome.REJECTED, ack.reason
        finally:
            self._router.discard_ack(url, message_id)
