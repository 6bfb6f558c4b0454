"""Request client for the relay recommendation DVM.

[DvmClient][relayshadow.services.client.service.DvmClient] publishes signed
job requests and collects the results addressed back to it. Results are
delivered to registered callbacks in arrival order, each one exactly once
even when several relays carry it. A result counts only when signed by the
DVM its request was addressed to. Results are kept per request id so
[wait_for_response()][relayshadow.services.client.service.DvmClient.wait_for_response]
never misses a result that arrived before it was called.

Examples:
    ```python
    config = DvmClientConfig(relays=["wss://relay.damus.io"], dvm_pubkey=dvm)
    async with DvmClient(config) as client:
        request_id = await client.send_request(threat_level="high")
        result = await client.wait_for_response(request_id, timeout=60)
        print(result.payload)
    ```
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Self

from relayshadow.core.exceptions import ConnectivityError, PublishingError, RelayTimeoutError
from relayshadow.core.logger import Logger
from relayshadow.core.yaml import load_yaml
from relayshadow.models.constants import RESULT_KIND_OFFSET, RequestType, ThreatLevel
from relayshadow.nips.nip01 import SubscriptionFilter
from relayshadow.nips.nip90 import DEFAULT_USE_CASE, build_job_request_tags, decode_job_result
from relayshadow.utils.signer import sign_message

from .configs import DvmClientConfig


_MAX_SEEN_IDS = 10_000
_MAX_TRACKED_REQUESTS = 1_000


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from types import TracebackType

    from relayshadow.models import SignedMessage
    from relayshadow.network import RelaySession
    from relayshadow.nips.nip90 import JobResult


class DvmClient:
    """Sends job requests to a DVM and correlates its results.

    Args:
        config: Client configuration.
        session: Relay session to use instead of one built from
            ``config.connection``.
    """

    def __init__(self, config: DvmClientConfig, *, session: RelaySession | None = None) -> None:
        self._config = config
        self._session = session if session is not None else config.connection.build_session()
        self._pubkey = config.keys.public_key().to_hex()
        self._callbacks: list[Callable[[JobResult], None]] = []
        self._seen: set[str] = set()
        self._responses: dict[str, list[JobResult]] = {}
        self._targets: dict[str, str] = {}
        self._waiters: dict[str, list[asyncio.Future[JobResult]]] = {}
        self._subscription_id: str | None = None
        self._logger = Logger("client")

        self._session.on_message(self.response_kind, self._pubkey, self._on_response)

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> Self:
        """Create a client from a YAML configuration file."""
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Create a client by parsing *data* into ``DvmClientConfig``."""
        return cls(DvmClientConfig(**data), **kwargs)

    @property
    def config(self) -> DvmClientConfig:
        return self._config

    @property
    def pubkey(self) -> str:
        """Hex public key the client signs with and receives results on."""
        return self._pubkey

    @property
    def response_kind(self) -> int:
        return self._config.kind + RESULT_KIND_OFFSET

    @property
    def session(self) -> RelaySession:
        return self._session

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(self) -> int:
        """Connect to the configured relays and subscribe to our results.

        Returns:
            Number of relays that opened.

        Raises:
            AggregateConnectionFailure: If no relay could be opened.
        """
        opened = await self._session.connect(self._config.relays)
        self._subscription_id = await self._session.subscribe(
            SubscriptionFilter(
                kinds=(self.response_kind,),
                tags={"p": (self._pubkey,)},
                since=int(time.time()) - self._config.lookback,
            ),
            prefix="client",
        )
        self._logger.info("client_connected", opened=opened, pubkey=self._pubkey)
        return opened

    async def disconnect(self) -> None:
        """Close every relay and fail pending waits. Idempotent."""
        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.set_exception(ConnectivityError("client disconnected"))
        self._waiters.clear()
        self._subscription_id = None
        await self._session.disconnect()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def send_request(
        self,
        *,
        request_type: str = RequestType.RECOMMEND.value,
        threat_level: str = ThreatLevel.MEDIUM.value,
        max_results: int | None = None,
        use_case: str = DEFAULT_USE_CASE,
        current_relays: Iterable[str] = (),
        context: str | None = None,
        dvm_pubkey: str | None = None,
    ) -> str:
        """Sign and publish one job request.

        Args:
            request_type: ``recommend``, ``analyze``, ``discover`` or ``health``.
            threat_level: Scoring policy for ``recommend``.
            max_results: Number of results; the DVM default when omitted.
            use_case: Caller-declared use case.
            current_relays: Relays the caller already uses.
            context: Free-text content of the request.
            dvm_pubkey: DVM to address; defaults to ``config.dvm_pubkey``.

        Returns:
            The request id, used to correlate results.

        Raises:
            ValueError: If no DVM public key is configured or given.
            SignatureError: If signing fails.
            PublishingError: If no relay accepted the request.
        """
        target = dvm_pubkey or self._config.dvm_pubkey
        if not target:
            raise ValueError("dvm_pubkey is required")

        tags = build_job_request_tags(
            target,
            request_type=request_type,
            threat_level=threat_level,
            max_results=max_results,
            use_case=use_case,
            current_relays=current_relays,
            client=(self._config.client_name, self._config.client_version),
        )
        message = sign_message(self._config.keys, self._config.kind, context or "", tags)
        self._targets[message.id] = target
        self._prune()

        result = await self._session.publish(message)
        if not result.success:
            self._targets.pop(message.id, None)
            raise PublishingError(
                f"no relay accepted request {message.id}",
                outcomes=dict(result.outcomes),
            )

        self._logger.info(
            "request_sent",
            request_id=message.id,
            request_type=request_type,
            dvm=target,
        )
        return message.id

    def on_response(self, callback: Callable[[JobResult], None]) -> None:
        """Call *callback* once per distinct result, in arrival order."""
        self._callbacks.append(callback)

    def responses(self, request_id: str) -> list[JobResult]:
        """Results received so far for *request_id*, in arrival order."""
        return list(self._responses.get(request_id, ()))

    async def wait_for_response(self, request_id: str, timeout: float) -> JobResult:  # noqa: ASYNC109
        """Return the first result for *request_id*, waiting up to *timeout* seconds.

        Raises:
            RelayTimeoutError: If no result arrives in time.
            ConnectivityError: If the client disconnects while waiting.
        """
        received = self._responses.get(request_id)
        if received:
            return received[0]

        future: asyncio.Future[JobResult] = asyncio.get_running_loop().create_future()
        waiters = self._waiters.setdefault(request_id, [])
        waiters.append(future)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            raise RelayTimeoutError(f"no response to {request_id} within {timeout:g}s") from e
        finally:
            if future in waiters:
                waiters.remove(future)
            if not waiters:
                self._waiters.pop(request_id, None)

    # -------------------------------------------------------------------------
    # Inbound results
    # -------------------------------------------------------------------------

    def _expected_author(self, request_id: str | None) -> str | None:
        if request_id is not None and request_id in self._targets:
            return self._targets[request_id]
        return self._config.dvm_pubkey

    def _prune(self) -> None:
        """Bound the per-request bookkeeping.

        The seen set is cleared at ``_MAX_SEEN_IDS``; the oldest request ids
        nobody is waiting on are dropped beyond ``_MAX_TRACKED_REQUESTS``.
        """
        if len(self._seen) >= _MAX_SEEN_IDS:
            self._seen.clear()
        for mapping in (self._responses, self._targets):
            excess = len(mapping) - _MAX_TRACKED_REQUESTS
            if excess <= 0:
                continue
            stale = [rid for rid in mapping if rid not in self._waiters][:excess]
            for request_id in stale:
                del mapping[request_id]

    def _on_response(self, url: str, message: SignedMessage) -> None:
        if message.id in self._seen:
            return
        self._seen.add(message.id)

        result = decode_job_result(message)
        expected = self._expected_author(result.request_id)
        if expected is not None and message.pubkey != expected:
            self._logger.warning(
                "response_unexpected_author",
                url=url,
                response_id=message.id,
                request_id=result.request_id,
                author=message.pubkey,
            )
            return
        self._prune()
        self._logger.info(
            "response_received",
            url=url,
            response_id=result.id,
            request_id=result.request_id,
            status=str(result.status) if result.status is not None else None,
        )

        if result.request_id is not None:
            self._responses.setdefault(result.request_id, []).append(result)
            for future in self._waiters.get(result.request_id, ()):
                if not future.done():
                    future.set_result(result)

        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:  # Intentionally broad: error boundary for user callbacks
                self._logger.error("response_callback_failed", response_id=result.id, error=str(e))
