"""
Discovery ranking.

Finds relays outside a user's current set that carry content from
influential publishers. Candidates need more than 6.0 reliability and at
least three quality publishers; the score is::

    2.0 x avg_publisher_influence + 1.5 x ln(quality_publishers) + 0.3 x overall
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from relayshadow.models.recommendation import DiscoveryRecommendation


if TYPE_CHECKING:
    from collections.abc import Iterable

    from relayshadow.models.records import RelayRecord


DEFAULT_DISCOVERY_RESULTS = 5
MIN_RELIABILITY = 6.0
MIN_QUALITY_PUBLISHERS = 3


def discovery_score(avg_influence: float, quality_publishers: int, overall: float) -> float:
    return 2.0 * avg_influence + 1.5 * math.log(quality_publishers) + 0.3 * overall


def discovery_reasoning(quality_publishers: int, avg_influence: float) -> str:
    if quality_publishers > 10 and avg_influence > 5.0:  # noqa: PLR2004
        return f"Hidden gem: {quality_publishers} high-influence publishers"
    if avg_influence > 7.0:  # noqa: PLR2004
        return "High-influence publishers worth discovering"
    if quality_publishers > 15:  # noqa: PLR2004
        return "Large community of quality publishers to explore"
    return "Quality publishers for content discovery"


def rank_discovery(
    records: Iterable[RelayRecord],
    *,
    exclude: Iterable[str] = (),
    max_results: int = DEFAULT_DISCOVERY_RESULTS,
) -> list[DiscoveryRecommendation]:
    """Rank discovery candidates by score descending, then URL ascending."""
    excluded = set(exclude)
    candidates = [
        r
        for r in records
        if r.url not in excluded
        and r.reliability > MIN_RELIABILITY
        and r.quality_publishers >= MIN_QUALITY_PUBLISHERS
    ]
    scored = sorted(
        (
            (discovery_score(r.avg_publisher_influence, r.quality_publishers, r.overall), r)
            for r in candidates
        ),
        key=lambda item: (-item[0], item[1].url),
    )
    return [
        DiscoveryRecommendation(
            url=r.url,
            discovery_score=score,
            unique_quality_publishers=r.quality_publishers,
            avg_publisher_influence=r.avg_publisher_influence,
            reasoning=discovery_reasoning(r.quality_publishers, r.avg_publisher_influence),
        )
        for score, r in scored[: max(max_results, 0)]
    ]
