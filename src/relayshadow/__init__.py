r"""RelayShadow -- Nostr relay recommendation Data Vending Machine.

A NIP-90 service that answers signed job requests with relay
recommendations scored for the requester's threat level and social graph,
relay setup analyses, discovery suggestions, and network health
summaries. Relay analytics are read from a PostgreSQL store maintained by
an external pipeline.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
                 services             DVM and request client
             /   |    |    \
         core  nips network analysis  Infrastructure, protocol, scoring
             \   |    |    /
             utils / models           Keys, signing, transport; pure dataclasses
```

Attributes:
    models: Pure frozen dataclasses. Zero I/O.
    core: Connection pool, store facade, base service, exceptions,
        logging, metrics.
    nips: NIP-01 wire frames, NIP-90 job codecs, NIP-89 announcement.
    utils: Nostr key management, signing, WebSocket transport.
    network: Multi-relay connection manager, frame router, relay session.
    analysis: Pure scoring, coverage, discovery, and health functions.
    services: The DVM and its request client.

Note:
    For lightweight usage, import directly from subpackages::

        from relayshadow.models import Relay
        from relayshadow.network import RelaySession

    Top-level imports (``from relayshadow import Dvm``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("relayshadow")

__all__ = [
    "BaseService",
    "ConfigT",
    "Dvm",
    "DvmClient",
    "DvmClientConfig",
    "DvmConfig",
    "Logger",
    "Pool",
    "PoolConfig",
    "Relay",
    "RelayRecord",
    "RelaySession",
    "SignedMessage",
    "Store",
    "StoreConfig",
    "ThreatLevel",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("relayshadow.core", "BaseService"),
    "ConfigT": ("relayshadow.core", "ConfigT"),
    "Logger": ("relayshadow.core", "Logger"),
    "Pool": ("relayshadow.core", "Pool"),
    "PoolConfig": ("relayshadow.core", "PoolConfig"),
    "Store": ("relayshadow.core", "Store"),
    "StoreConfig": ("relayshadow.core", "StoreConfig"),
    "Relay": ("relayshadow.models", "Relay"),
    "RelayRecord": ("relayshadow.models", "RelayRecord"),
    "SignedMessage": ("relayshadow.models", "SignedMessage"),
    "ThreatLevel": ("relayshadow.models", "ThreatLevel"),
    "RelaySession": ("relayshadow.network", "RelaySession"),
    "Dvm": ("relayshadow.services", "Dvm"),
    "DvmConfig": ("relayshadow.services", "DvmConfig"),
    "DvmClient": ("relayshadow.services", "DvmClient"),
    "DvmClientConfig": ("relayshadow.services", "DvmClientConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'relayshadow' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
