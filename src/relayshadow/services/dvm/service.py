"""NIP-90 Data Vending Machine service for relay recommendations.

Listens for kind 5600 job requests addressed to its own public key on the
configured relays, answers each one with exactly one kind 6600 result, and
optionally announces itself with a NIP-89 handler event at startup.

Requests arrive as they are published: the
[RelaySession][relayshadow.network.session.RelaySession] routes every
valid, correctly signed request to
[_on_request()][relayshadow.services.dvm.service.Dvm._on_request], which
spawns one task per request so a slow store query never blocks the relay
reader. Each task decodes the request, runs the handler for its type, and
publishes a ``success`` result or, when anything fails, an ``error``
result. ``run()`` is periodic housekeeping: it checks that at least one
relay is open, reports metrics, and bounds the dedup set.

See Also:
    [JobHandlers][relayshadow.services.dvm.handlers.JobHandlers]: Builds
        the payload of each request type.
    [BaseService][relayshadow.core.base_service.BaseService]: Abstract
        base class providing lifecycle and metrics.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, ClassVar

from relayshadow.core.base_service import BaseService
from relayshadow.core.exceptions import ConnectivityError, SignatureError
from relayshadow.models.constants import RESULT_KIND_OFFSET, EventKind, JobStatus, ServiceName
from relayshadow.nips.nip01 import SubscriptionFilter
from relayshadow.nips.nip90 import (
    announcement_content,
    announcement_tags,
    decode_job_request,
    encode_payload,
    error_payload,
    job_result_tags,
)
from relayshadow.utils.signer import sign_message

from .configs import DvmConfig
from .handlers import SOURCE_FALLBACK, JobHandlers


if TYPE_CHECKING:
    from types import TracebackType

    from relayshadow.analysis import FallbackProvider
    from relayshadow.core.store import Store
    from relayshadow.models import SignedMessage
    from relayshadow.network import PublishResult, RelaySession

# Maximum number of processed request IDs to track before resetting
_MAX_PROCESSED_IDS = 10_000

# Seconds in-flight jobs get to finish on shutdown before being cancelled
_SHUTDOWN_GRACE = 10.0


class Dvm(BaseService[DvmConfig]):
    """NIP-90 Data Vending Machine answering relay recommendation requests.

    Lifecycle:
        1. ``__aenter__``: connect to relays, register the request handler,
           subscribe to requests addressed to us, optionally publish the
           NIP-89 announcement.
        2. Requests are handled as they arrive; ``run()`` does housekeeping.
        3. ``__aexit__``: let in-flight jobs finish, then disconnect.

    Args:
        store: Analytics store.
        config: Service configuration.
        session: Relay session to use instead of one built from
            ``config.connection``.
        fallback: Fallback provider to use instead of the configured table.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.DVM
    CONFIG_CLASS: ClassVar[type[DvmConfig]] = DvmConfig

    def __init__(
        self,
        store: Store,
        config: DvmConfig | None = None,
        *,
        session: RelaySession | None = None,
        fallback: FallbackProvider | None = None,
    ) -> None:
        super().__init__(store, config)
        self._session = session if session is not None else self._config.connection.build_session()
        self._handlers = JobHandlers(
            store,
            self._config,
            fallback if fallback is not None else self._config.fallback.provider(),
        )
        self._pubkey = self._config.keys.public_key().to_hex()
        self._processed_ids: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._counters = _JobCounters()
        self._subscription_id: str | None = None

    @property
    def pubkey(self) -> str:
        return self._pubkey

    @property
    def response_kind(self) -> int:
        return self._config.kind + RESULT_KIND_OFFSET

    @property
    def session(self) -> RelaySession:
        return self._session

    @property
    def pending_jobs(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Dvm:
        await super().__aenter__()

        self._session.on_message(self._config.kind, self._pubkey, self._on_request)
        self._session.on_error(self._on_relay_error)

        opened = await self._session.connect(self._config.relays)
        self._logger.info(
            "relays_ready",
            opened=opened,
            configured=len(self._config.relays),
            pubkey=self._pubkey,
        )

        self._subscription_id = await self._session.subscribe(
            SubscriptionFilter(
                kinds=(self._config.kind,),
                tags={"p": (self._pubkey,)},
                since=int(time.time()) - self._config.lookback,
            ),
            prefix="dvm",
        )

        if self._config.announce:
            await self._publish_announcement()

        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self._drain_tasks()
        await self._session.disconnect()
        self._subscription_id = None
        self._logger.info("relays_closed")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def _drain_tasks(self) -> None:
        tasks = list(self._tasks)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=_SHUTDOWN_GRACE)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._logger.warning("jobs_cancelled", count=len(pending))

    async def run(self) -> None:
        """Check relay connectivity, report metrics, and bound the dedup set.

        Raises:
            ConnectivityError: If no relay is open. Reconnect loops keep
                running; the failure only counts toward
                ``max_consecutive_failures``.
        """
        counters, self._counters = self._counters, _JobCounters()
        self._manage_dedup_set()
        self._report_metrics(counters)
        if self._session.open_count == 0:
            raise ConnectivityError("no relay connected")

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def _on_request(self, url: str, message: SignedMessage) -> None:
        """Accept one routed request; runs on the relay reader task."""
        if message.id in self._processed_ids:
            return
        self._processed_ids.add(message.id)
        self._counters.received += 1

        task = asyncio.create_task(self._process(message), name=f"job:{message.id[:16]}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._logger.debug("job_accepted", request_id=message.id, url=url)

    async def _process(self, message: SignedMessage) -> None:
        """Decode, handle, and answer one request. Publishes exactly one response."""
        start = time.monotonic()
        request_type = "unknown"
        try:
            request = decode_job_request(message, max_results_limit=self._config.max_results_limit)
            request_type = request.request_type.value
            self._logger.info(
                "job_received",
                request_id=message.id,
                request_type=request_type,
                threat_level=request.threat_level,
                customer=message.pubkey,
            )
            payload = await self._handlers.handle(request)
            status = JobStatus.SUCCESS
        except asyncio.CancelledError:
            raise
        except Exception as e:  # Intentionally broad: error boundary for one request
            payload = error_payload(str(e) or type(e).__name__)
            status = JobStatus.ERROR
            self._counters.failed += 1
            self._logger.error(
                "job_failed",
                request_id=message.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            self._counters.processed += 1
            if payload.get("analysis", {}).get("source") == SOURCE_FALLBACK:
                self._counters.fallback += 1

        result = await self._respond(message, payload, status)
        duration = time.monotonic() - start
        self.observe_job(request_type, duration)
        if status is JobStatus.SUCCESS:
            self._logger.info(
                "job_completed",
                request_id=message.id,
                request_type=request_type,
                published=result is not None and result.success,
                duration_ms=round(duration * 1000, 1),
            )

    async def _respond(
        self,
        request: SignedMessage,
        payload: dict[str, Any],
        status: JobStatus,
    ) -> PublishResult | None:
        """Sign and publish the response to *request*.

        Never raises except on cancellation; a response that could not be
        signed or sent counts as rejected.
        """
        try:
            response = sign_message(
                self._config.keys,
                self.response_kind,
                encode_payload(payload),
                job_result_tags(request.id, request.pubkey, status),
            )
            result = await self._session.publish(response)
        except asyncio.CancelledError:
            raise
        except SignatureError as e:
            self._counters.rejected += 1
            self._logger.error("response_sign_failed", request_id=request.id, error=str(e))
            return None
        except Exception as e:  # Intentionally broad: the job task must always finish
            self._counters.rejected += 1
            self._logger.error(
                "response_failed",
                request_id=request.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if not result.success:
            self._counters.rejected += 1
            self._logger.error(
                "response_publish_failed",
                request_id=request.id,
                response_id=response.id,
                outcomes={url: str(o) for url, o in result.outcomes.items()},
            )
        return result

    def _on_relay_error(self, url: str, reason: str) -> None:
        self._logger.debug("relay_error", url=url, reason=reason)
        self.inc_counter("relay_errors")

    # -------------------------------------------------------------------------
    # Announcement
    # -------------------------------------------------------------------------

    async def _publish_announcement(self) -> None:
        """Publish the NIP-89 handler announcement. Failures are logged, not raised."""
        try:
            announcement = sign_message(
                self._config.keys,
                int(EventKind.HANDLER_INFO),
                announcement_content(self._config.name, self._config.about),
                announcement_tags(self._config.kind),
            )
        except SignatureError as e:
            self._logger.warning("announcement_failed", error=str(e))
            return

        result = await self._session.publish(announcement)
        if result.success:
            self._logger.info("announcement_published", kind=self._config.kind)
        else:
            self._logger.warning("announcement_failed", error="no relay accepted it")

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def _manage_dedup_set(self) -> None:
        """Clear the processed IDs set when it exceeds the maximum size.

        Replay protection: cleared at ``_MAX_PROCESSED_IDS`` to bound memory.
        The ``since`` bound on the subscription limits what a reconnect can
        replay after a reset.
        """
        if len(self._processed_ids) >= _MAX_PROCESSED_IDS:
            self._processed_ids.clear()

    def _report_metrics(self, counters: _JobCounters) -> None:
        """Update Prometheus metrics and log cycle stats."""
        self.inc_counter("jobs_received", counters.received)
        self.inc_counter("jobs_processed", counters.processed)
        self.inc_counter("jobs_failed", counters.failed)
        self.inc_counter("jobs_rejected", counters.rejected)
        self.inc_counter("jobs_fallback", counters.fallback)
        self.set_gauge("relays_connected", self._session.open_count)
        self.set_gauge("pending_jobs", len(self._tasks))
        self._logger.info(
            "cycle_stats",
            jobs_received=counters.received,
            processed=counters.processed,
            failed=counters.failed,
            rejected=counters.rejected,
            fallback=counters.fallback,
            relays_connected=self._session.open_count,
            pending_jobs=len(self._tasks),
        )


class _JobCounters:
    """Job counters accumulated between two ``run()`` cycles."""

    __slots__ = ("failed", "fallback", "processed", "received", "rejected")

    def __init__(self) -> None:
        self.received: int = 0
        self.processed: int = 0
        self.failed: int = 0
        self.rejected: int = 0
        self.fallback: int = 0
