"""DVM service configuration models.

See Also:
    [Dvm][relayshadow.services.dvm.Dvm]: The service class that consumes
        these configurations.
    [BaseServiceConfig][relayshadow.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures``,
        and ``metrics`` fields.
    [KeysConfig][relayshadow.utils.keys.KeysConfig]: Mixin providing
        Nostr key management fields.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from relayshadow.analysis.fallback import FallbackRelay, StaticFallbackProvider
from relayshadow.core.base_service import BaseServiceConfig
from relayshadow.models import EventKind, Relay
from relayshadow.nips.nip90 import DEFAULT_MAX_RESULTS_LIMIT
from relayshadow.services.common.configs import ConnectionConfig, normalize_relay_list
from relayshadow.utils.keys import KeysConfig


DEFAULT_HANDLER_NAME = "RelayShadow"
DEFAULT_HANDLER_ABOUT = (
    "Relay recommendations scored for your threat level and social graph, "
    "relay setup analysis, discovery and network health."
)


class FallbackRelayConfig(BaseModel):
    """One relay of a static fallback table."""

    url: str
    score: float = Field(ge=0.0, le=10.0)
    reason: str = ""

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        return Relay(v).url


class FallbackConfig(BaseModel):
    """Static recommendations served when the analytics store is unavailable.

    Attributes:
        tables: Relay lists keyed by threat level. Levels listed here
            replace the built-in table for that level; the others keep it.
    """

    tables: dict[str, list[FallbackRelayConfig]] = Field(default_factory=dict)

    def provider(self) -> StaticFallbackProvider:
        """Build the fallback provider with these overrides applied."""
        return StaticFallbackProvider(
            {
                level: [FallbackRelay(r.url, r.score, r.reason) for r in relays]
                for level, relays in self.tables.items()
            }
        )


class DvmConfig(BaseServiceConfig, KeysConfig):
    """Configuration for the DVM service.

    Inherits key management from
    [KeysConfig][relayshadow.utils.keys.KeysConfig] for Nostr signing.

    Attributes:
        relays: Relay URLs to listen on and publish to.
        kind: NIP-90 request event kind (result = kind + 1000).
        connection: Connect, reconnect and acknowledgement timing.
        lookback: Seconds of past requests to ask relays for on subscribe.
        max_results_limit: Hard ceiling on a request's ``max_results``.
        following_limit: Followed publishers considered for recommendations.
        coverage_following_limit: Followed publishers considered for setup
            analysis.
        use_social_graph: Whether recommendations get the social bonus.
        fallback: Static recommendations for when analytics are missing.
        announce: Whether to publish a NIP-89 handler announcement at startup.
        name: Handler name in the announcement.
        about: Handler description in the announcement.
    """

    relays: list[str] = Field(min_length=1)
    kind: int = Field(default=int(EventKind.JOB_REQUEST), ge=5000, le=5999)

    @field_validator("relays")
    @classmethod
    def validate_relay_urls(cls, v: list[str]) -> list[str]:
        """Validate that all relay URLs are valid WebSocket URLs."""
        return normalize_relay_list(v)

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    lookback: int = Field(default=3600, ge=0)
    max_results_limit: int = Field(default=DEFAULT_MAX_RESULTS_LIMIT, ge=1, le=500)
    following_limit: int = Field(default=1000, ge=1, le=10_000)
    coverage_following_limit: int = Field(default=500, ge=1, le=10_000)
    use_social_graph: bool = Field(default=True)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    announce: bool = Field(default=True)
    name: str = Field(default=DEFAULT_HANDLER_NAME, min_length=1)
    about: str = Field(default=DEFAULT_HANDLER_ABOUT)
