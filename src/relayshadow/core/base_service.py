"""
Lifecycle scaffolding shared by RelayShadow's long-running processes.

A service is constructed around a connected
[Store][relayshadow.core.store.Store], entered with ``async with`` and then
driven by [run_forever()][relayshadow.core.base_service.BaseService.run_forever],
which awaits ``run()`` once per ``interval`` until someone calls
[request_shutdown()][relayshadow.core.base_service.BaseService.request_shutdown]
or too many cycles in a row have failed.

The DVM is event driven: job requests are handled the moment they arrive,
and ``run()`` only does the periodic bookkeeping (connection gauges,
dedup cache pruning).
"""

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from relayshadow.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    JOB_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .store import Store
from .yaml import load_yaml


class BaseServiceConfig(BaseModel):
    """Cycle timing, failure tolerance and metrics for a looping service."""

    interval: float = Field(default=60.0, ge=5.0, description="Seconds between cycles")
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Failed cycles in a row that stop the service, 0 never stops",
    )
    metrics: MetricsConfig = Field(default_factory=MetricsConfig, description="Prometheus export")


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Common base for services.

    Subclasses declare ``SERVICE_NAME`` (logger name and metric label) and
    ``CONFIG_CLASS`` (parsed by ``from_dict``/``from_yaml``), and implement
    [run()][relayshadow.core.base_service.BaseService.run].
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, store: Store, config: ConfigT | None = None) -> None:
        self._store = store
        if config is None:
            config = cast("ConfigT", self.CONFIG_CLASS())
        self._config: ConfigT = config
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @classmethod
    def from_yaml(cls, config_path: str, store: Store, **kwargs: Any) -> Self:
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: Store, **kwargs: Any) -> Self:
        return cls(store=store, config=cast("ConfigT", cls.CONFIG_CLASS(**data)), **kwargs)

    @property
    def config(self) -> ConfigT:
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """One bounded unit of periodic work."""
        ...

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current cycle. Signal-handler safe."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to ``timeout`` seconds; ``True`` means shutdown arrived first."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def _cycle(self) -> Exception | None:
        """Run one cycle and record its outcome; the error is returned, not raised."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # Intentionally broad: a failed cycle must not end the loop
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            return e

        self.inc_counter("cycles_success")
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                time.monotonic() - started
            )
        self.set_gauge("last_cycle_timestamp", time.time())
        return None

    async def run_forever(self) -> None:
        """Repeat ``run()`` every ``interval`` seconds until told to stop.

        A failing cycle is logged and counted (``cycles_failed`` plus an
        ``errors_<Type>`` counter). Once ``max_consecutive_failures`` cycles
        fail back to back the loop gives up; a single success resets the
        streak. Cancellation is never swallowed.
        """
        interval = self._config.interval
        limit = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("run_forever_started", interval=interval, max_consecutive_failures=limit)

        streak = 0
        while self.is_running:
            error = await self._cycle()
            if error is None:
                streak = 0
                self._logger.debug("cycle_completed", next_cycle_s=interval)
            else:
                streak += 1
                self._logger.error(
                    "run_cycle_error",
                    error=str(error),
                    error_type=type(error).__name__,
                    consecutive_failures=streak,
                )
            self.set_gauge("consecutive_failures", streak)

            if limit and streak >= limit:
                self._logger.critical(
                    "max_consecutive_failures_reached", failures=streak, limit=limit
                )
                break
            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Metrics (no-ops unless metrics.enabled)
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        if self._config.metrics.enabled:
            SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        if self._config.metrics.enabled:
            SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)

    def observe_job(self, request_type: str, duration: float) -> None:
        """Record how long answering one job request took."""
        if self._config.metrics.enabled:
            JOB_DURATION_SECONDS.labels(
                service=self.SERVICE_NAME, request_type=request_type
            ).observe(duration)
