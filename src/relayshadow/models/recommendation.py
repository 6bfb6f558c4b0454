"""
Derived, ephemeral analysis results.

These dataclasses are produced per request by
[relayshadow.analysis][relayshadow.analysis] and serialized into job
response payloads. Each exposes ``to_dict()`` returning the JSON shape
published on the wire; numeric values are rounded there, never in the
ranking itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import Tier


_SCORE_DIGITS = 2


@dataclass(frozen=True, slots=True)
class SocialFactors:
    """Social-graph inputs to a recommendation.

    Attributes:
        following_users: Followed publishers that publish on the relay.
        influence_weight: Sum of their weighted contributions.
        bonus: Ranking bonus derived from ``following_users``.
    """

    following_users: int = 0
    influence_weight: float = 0.0
    bonus: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "following_users": self.following_users,
            "influence_weight": round(self.influence_weight, _SCORE_DIGITS),
            "bonus": round(self.bonus, _SCORE_DIGITS),
        }


@dataclass(frozen=True, slots=True)
class Recommendation:
    """One ranked relay recommendation.

    Attributes:
        url: Normalized relay URL.
        score: Final ranking key (threat-adjusted score plus social bonus).
        scores: Component scores by name (``overall``, ``privacy``, ...).
        social: Social-graph factors that contributed to ``score``.
        reasoning: Human-readable justification.
        tier: Priority partition the recommendation landed in.
    """

    url: str
    score: float
    scores: dict[str, float]
    social: SocialFactors
    reasoning: str
    tier: Tier

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "tier": str(self.tier),
            "score": round(self.score, _SCORE_DIGITS),
            "scores": {k: round(v, _SCORE_DIGITS) for k, v in self.scores.items()},
            "social": self.social.to_dict(),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True, slots=True)
class TieredRecommendations:
    """Recommendations partitioned into primary, backup, and discovery tiers."""

    primary: tuple[Recommendation, ...] = ()
    backup: tuple[Recommendation, ...] = ()
    discovery: tuple[Recommendation, ...] = ()

    def __len__(self) -> int:
        return len(self.primary) + len(self.backup) + len(self.discovery)

    def all(self) -> list[Recommendation]:
        """Return every recommendation in rank order."""
        return [*self.primary, *self.backup, *self.discovery]

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "primary": [r.to_dict() for r in self.primary],
            "backup": [r.to_dict() for r in self.backup],
            "discovery": [r.to_dict() for r in self.discovery],
        }


@dataclass(frozen=True, slots=True)
class DiscoveryRecommendation:
    """A relay worth exploring for content from influential publishers."""

    url: str
    discovery_score: float
    unique_quality_publishers: int
    avg_publisher_influence: float
    reasoning: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "discovery_score": round(self.discovery_score, _SCORE_DIGITS),
            "unique_quality_publishers": self.unique_quality_publishers,
            "avg_publisher_influence": round(self.avg_publisher_influence, _SCORE_DIGITS),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True, slots=True)
class AnalysisMetric:
    """One line of a relay setup analysis.

    Attributes:
        category: Metric group (``coverage``, ``quality``, ``diversity``).
        value: Display value (e.g. ``"50% (5/10)"``).
        recommendation: Suggestion derived from the value.
    """

    category: str
    value: str
    recommendation: str

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category,
            "value": self.value,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True, slots=True)
class HealthSummary:
    """Network-wide relay health aggregate."""

    total_relays: int = 0
    healthy_relays: int = 0
    unhealthy_relays: int = 0
    average_uptime: float = 0.0
    average_latency: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_relays": self.total_relays,
            "healthy_relays": self.healthy_relays,
            "unhealthy_relays": self.unhealthy_relays,
            "average_uptime": round(self.average_uptime, 2),
            "average_latency": round(self.average_latency, 1),
        }
