"""
Recommendation scoring engine.

Pure functions over [RelayRecord][relayshadow.models.records.RelayRecord]
values. A relay's ranking key is its threat-adjusted score plus an
optional social bonus:

| threat level   | adjusted score                                         |
|----------------|--------------------------------------------------------|
| ``low``        | overall + 0.2 x performance                            |
| ``medium``     | overall + 0.1 x privacy                                |
| ``high``       | 0.4 x privacy + 0.3 x reliability + 0.3 x performance  |
| ``nation-state`` | 0.6 x privacy + 0.4 x reliability                    |
| unrecognized   | overall                                                |

Only eligible relays are ranked (strict lower bounds on privacy and
reliability per threat level; relays known to be down are never
eligible). The social bonus is ``ln(following_users + 1) x 0.5``.

Ranking is by key descending, then URL ascending, so equal keys always
come out in the same order. The top five land in the primary tier, the
next three in the backup tier, the rest in the discovery tier.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from relayshadow.models.constants import ThreatLevel, Tier
from relayshadow.models.recommendation import Recommendation, SocialFactors, TieredRecommendations


if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from relayshadow.models.records import PublisherWeight, RelayRecord


PRIMARY_TIER_SIZE = 5
BACKUP_TIER_SIZE = 3
SOCIAL_BONUS_FACTOR = 0.5

# (min privacy, min reliability), both strict; None means unconstrained
ELIGIBILITY: dict[str, tuple[float | None, float]] = {
    ThreatLevel.LOW: (None, 3.0),
    ThreatLevel.MEDIUM: (2.0, 3.0),
    ThreatLevel.HIGH: (3.0, 4.0),
    ThreatLevel.NATION_STATE: (4.0, 5.0),
}
UNRECOGNIZED_MIN_RELIABILITY = 1.0

# Reasoning thresholds, checked in this order
_SOCIAL_REASON_MIN_USERS = 5
_PRIVACY_REASON_MIN = 8.0
_RELIABILITY_REASON_MIN = 8.0
_PERFORMANCE_REASON_MIN = 7.0
_DIVERSITY_REASON_MIN = 7.0


@dataclass(frozen=True, slots=True)
class FollowingStats:
    """Followed publishers seen on one relay."""

    following_users: int
    influence_weight: float


def threat_adjusted_score(record: RelayRecord, threat_level: str) -> float:
    """Score *record* under the weighting policy of *threat_level*."""
    match threat_level:
        case ThreatLevel.LOW:
            return record.overall + 0.2 * record.performance
        case ThreatLevel.MEDIUM:
            return record.overall + 0.1 * record.privacy
        case ThreatLevel.HIGH:
            return 0.4 * record.privacy + 0.3 * record.reliability + 0.3 * record.performance
        case ThreatLevel.NATION_STATE:
            return 0.6 * record.privacy + 0.4 * record.reliability
        case _:
            return record.overall


def is_eligible(record: RelayRecord, threat_level: str) -> bool:
    """Whether *record* passes the eligibility filter of *threat_level*."""
    if record.is_up is False:
        return False
    min_privacy, min_reliability = ELIGIBILITY.get(
        threat_level, (None, UNRECOGNIZED_MIN_RELIABILITY)
    )
    if min_privacy is not None and not record.privacy > min_privacy:
        return False
    return record.reliability > min_reliability


def social_bonus(following_users: int) -> float:
    """Ranking bonus for a relay used by *following_users* followed publishers."""
    if following_users <= 0:
        return 0.0
    return math.log(following_users + 1) * SOCIAL_BONUS_FACTOR


def following_stats(
    weights: Iterable[PublisherWeight],
    followed: Iterable[str],
) -> dict[str, FollowingStats]:
    """Aggregate publisher weights of *followed* pubkeys per relay.

    Returns:
        For each relay carrying at least one followed publisher, the number
        of distinct followed publishers and the sum of their contributions.
    """
    followed_set = set(followed)
    users: dict[str, set[str]] = {}
    influence: dict[str, float] = {}
    for weight in weights:
        if weight.pubkey not in followed_set:
            continue
        users.setdefault(weight.relay_url, set()).add(weight.pubkey)
        influence[weight.relay_url] = influence.get(weight.relay_url, 0.0) + weight.contribution
    return {
        url: FollowingStats(following_users=len(pubkeys), influence_weight=influence[url])
        for url, pubkeys in users.items()
    }


def reasoning_for(record: RelayRecord, following_users: int) -> str:
    """Pick the justification text for a recommendation."""
    if following_users > _SOCIAL_REASON_MIN_USERS:
        return f"High quality relay used by {following_users} of your followed users"
    if record.privacy > _PRIVACY_REASON_MIN:
        return "Excellent privacy protections and transparency"
    if record.reliability > _RELIABILITY_REASON_MIN and record.performance > _PERFORMANCE_REASON_MIN:
        return "Highly reliable with excellent performance"
    if record.diversity > _DIVERSITY_REASON_MIN:
        return "Good network diversity with quality publishers"
    return "Solid overall performance across all metrics"


def tier_for(rank: int) -> Tier:
    """Tier of the recommendation at zero-based *rank*."""
    if rank < PRIMARY_TIER_SIZE:
        return Tier.PRIMARY
    if rank < PRIMARY_TIER_SIZE + BACKUP_TIER_SIZE:
        return Tier.BACKUP
    return Tier.DISCOVERY


def partition(recommendations: Iterable[Recommendation]) -> TieredRecommendations:
    """Group already-tiered recommendations, preserving order."""
    groups: dict[Tier, list[Recommendation]] = {tier: [] for tier in Tier}
    for rec in recommendations:
        groups[rec.tier].append(rec)
    return TieredRecommendations(
        primary=tuple(groups[Tier.PRIMARY]),
        backup=tuple(groups[Tier.BACKUP]),
        discovery=tuple(groups[Tier.DISCOVERY]),
    )


def _component_scores(record: RelayRecord) -> dict[str, float]:
    return {
        "overall": record.overall,
        "privacy": record.privacy,
        "reliability": record.reliability,
        "performance": record.performance,
        "diversity": record.diversity,
        "activity": record.activity,
        "publisher_quality": record.publisher_quality,
    }


def rank(
    records: Iterable[RelayRecord],
    threat_level: str,
    max_results: int,
    social: Mapping[str, FollowingStats] | None = None,
) -> TieredRecommendations:
    """Filter, score, rank, and tier *records*.

    Args:
        records: Candidate relays.
        threat_level: Scoring and eligibility policy.
        max_results: Number of recommendations to keep.
        social: Per-relay following stats; ``None`` disables the social bonus.

    Returns:
        At most *max_results* recommendations ordered by ranking key.
    """
    scored: list[tuple[float, RelayRecord, SocialFactors]] = []
    for record in records:
        if not is_eligible(record, threat_level):
            continue
        stats = social.get(record.url) if social is not None else None
        factors = (
            SocialFactors(
                following_users=stats.following_users,
                influence_weight=stats.influence_weight,
                bonus=social_bonus(stats.following_users),
            )
            if stats is not None
            else SocialFactors()
        )
        scored.append((threat_adjusted_score(record, threat_level) + factors.bonus, record, factors))

    scored.sort(key=lambda item: (-item[0], item[1].url))

    return partition(
        Recommendation(
            url=record.url,
            score=key,
            scores=_component_scores(record),
            social=factors,
            reasoning=reasoning_for(record, factors.following_users),
            tier=tier_for(i),
        )
        for i, (key, record, factors) in enumerate(scored[: max(max_results, 0)])
    )
