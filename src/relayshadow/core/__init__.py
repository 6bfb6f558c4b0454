"""Core layer providing the infrastructure for RelayShadow services.

Sits in the middle of the diamond DAG -- depends only on
``relayshadow.models`` and is depended upon by ``relayshadow.services``.

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][relayshadow.core.pool.Pool].
    Store: Read facade over the analytics store. Services use
        [Store][relayshadow.core.store.Store], never
        [Pool][relayshadow.core.pool.Pool] directly.
    BaseService: Abstract generic base class with lifecycle management,
        factory methods, and Prometheus metrics helpers.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.

See Also:
    [relayshadow.core.exceptions][]: The exception hierarchy shared by
        every layer above models.
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .exceptions import (
    AggregateConnectionFailure,
    ConfigurationError,
    ConnectionFailure,
    ConnectionPoolError,
    ConnectivityError,
    DatabaseError,
    ProtocolError,
    PublishingError,
    RelayShadowError,
    RelayTimeoutError,
    SignatureError,
    StoreQueryError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    JOB_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .store import Store, StoreConfig, StoreTimeoutsConfig
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "JOB_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "AggregateConnectionFailure",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "ConnectionFailure",
    "ConnectionPoolError",
    "ConnectivityError",
    "DatabaseConfig",
    "DatabaseError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "ProtocolError",
    "PublishingError",
    "RelayShadowError",
    "RelayTimeoutError",
    "ServerSettingsConfig",
    "SignatureError",
    "Store",
    "StoreConfig",
    "StoreQueryError",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
