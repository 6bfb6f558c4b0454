"""Shared infrastructure for RelayShadow services.

Attributes:
    configs: Relay connection policy and relay list validation shared by
        the DVM and the request client.
    queries: Analytics store query functions, centralized in one module so
        services never write inline SQL.
"""

from .configs import ConnectionConfig, normalize_relay_list
from .queries import (
    fetch_discovery_candidates,
    fetch_followed_pubkeys,
    fetch_health_records,
    fetch_publisher_weights,
    fetch_relay_records,
    fetch_user_relays,
)


__all__ = [
    "ConnectionConfig",
    "fetch_discovery_candidates",
    "fetch_followed_pubkeys",
    "fetch_health_records",
    "fetch_publisher_weights",
    "fetch_relay_records",
    "fetch_user_relays",
    "normalize_relay_list",
]
