"""Pure scoring and analysis over relay analytics records.

No I/O happens here: the services layer fetches records from the store and
passes them in.

Attributes:
    scoring: Threat-adjusted scoring, eligibility, social bonus, tiered ranking.
    coverage: Social-graph coverage and relay setup analysis.
    discovery: Ranking of relays carrying influential publishers.
    health: Network-wide health aggregate.
    fallback: Swappable static recommendations used when analytics are missing.
"""

from .coverage import analyze_setup, coverage_metric, format_percentage
from .discovery import DEFAULT_DISCOVERY_RESULTS, discovery_score, rank_discovery
from .fallback import (
    DEFAULT_FALLBACK_TABLE,
    FallbackProvider,
    FallbackRelay,
    StaticFallbackProvider,
    fallback_recommendations,
)
from .health import summarize_health
from .scoring import (
    FollowingStats,
    following_stats,
    is_eligible,
    rank,
    social_bonus,
    threat_adjusted_score,
)


__all__ = [
    "DEFAULT_DISCOVERY_RESULTS",
    "DEFAULT_FALLBACK_TABLE",
    "FallbackProvider",
    "FallbackRelay",
    "FollowingStats",
    "StaticFallbackProvider",
    "analyze_setup",
    "coverage_metric",
    "discovery_score",
    "fallback_recommendations",
    "following_stats",
    "format_percentage",
    "is_eligible",
    "rank",
    "rank_discovery",
    "social_bonus",
    "summarize_health",
    "threat_adjusted_score",
]
