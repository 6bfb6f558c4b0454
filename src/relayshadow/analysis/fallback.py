"""
Static fallback recommendations.

When the analytics store is empty or fails, recommendations come from a
[FallbackProvider][relayshadow.analysis.fallback.FallbackProvider]. The
default [StaticFallbackProvider][relayshadow.analysis.fallback.StaticFallbackProvider]
serves a small table of well-known relays per threat level; any level can
be replaced through configuration without touching the scoring code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from relayshadow.models.constants import ThreatLevel
from relayshadow.models.recommendation import Recommendation, SocialFactors

from .scoring import partition, tier_for


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from relayshadow.models.recommendation import TieredRecommendations


@dataclass(frozen=True, slots=True)
class FallbackRelay:
    """One known-good relay with a fixed score and reason."""

    url: str
    score: float
    reason: str


_HIGH_PRIVACY = (
    FallbackRelay("wss://nostr.wine", 9.5, "Strong privacy policies"),
    FallbackRelay("wss://relay.nostr.bg", 9.2, "No logging policy"),
    FallbackRelay("wss://bitcoiner.social", 9.0, "Bitcoin-focused community"),
)

DEFAULT_FALLBACK_TABLE: dict[str, tuple[FallbackRelay, ...]] = {
    ThreatLevel.LOW: (
        FallbackRelay("wss://relay.damus.io", 8.5, "Popular and reliable"),
        FallbackRelay("wss://nos.lol", 8.2, "Good performance"),
        FallbackRelay("wss://relay.snort.social", 8.0, "Well maintained"),
    ),
    ThreatLevel.MEDIUM: (
        FallbackRelay("wss://nostr.wine", 9.0, "Privacy focused"),
        FallbackRelay("wss://relay.nostr.bg", 8.7, "European location"),
        FallbackRelay("wss://nostr.mom", 8.5, "Community maintained"),
    ),
    ThreatLevel.HIGH: _HIGH_PRIVACY,
    ThreatLevel.NATION_STATE: _HIGH_PRIVACY,
}


class FallbackProvider(Protocol):
    """Source of default relays when analytics are unavailable."""

    def relays_for(self, threat_level: str) -> Sequence[FallbackRelay]: ...


class StaticFallbackProvider:
    """Table-backed [FallbackProvider][relayshadow.analysis.fallback.FallbackProvider].

    Args:
        overrides: Replacement relay lists keyed by threat level, merged
            over [DEFAULT_FALLBACK_TABLE][relayshadow.analysis.fallback.DEFAULT_FALLBACK_TABLE].
    """

    def __init__(self, overrides: Mapping[str, Sequence[FallbackRelay]] | None = None) -> None:
        self._table: dict[str, tuple[FallbackRelay, ...]] = {
            str(level): relays for level, relays in DEFAULT_FALLBACK_TABLE.items()
        }
        for level, relays in (overrides or {}).items():
            self._table[level] = tuple(relays)

    def relays_for(self, threat_level: str) -> tuple[FallbackRelay, ...]:
        """Relays for *threat_level*; unrecognized levels get the medium table."""
        relays = self._table.get(threat_level)
        if relays is None:
            relays = self._table.get(ThreatLevel.MEDIUM, ())
        return relays


def fallback_recommendations(
    provider: FallbackProvider,
    threat_level: str,
    max_results: int,
) -> TieredRecommendations:
    """Tiered recommendations from *provider*, in table order."""
    relays = list(provider.relays_for(threat_level))[: max(max_results, 0)]
    return partition(
        Recommendation(
            url=relay.url,
            score=relay.score,
            scores={"overall": relay.score},
            social=SocialFactors(),
            reasoning=relay.reason,
            tier=tier_for(i),
        )
        for i, relay in enumerate(relays)
    )
