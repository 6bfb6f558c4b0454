"""
Relay setup analysis.

Measures how well a set of relays covers the publishers a user follows and
how the set scores on privacy, reliability, and size. A followed publisher
is covered when at least one relay of the set carries weighted content
from them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relayshadow.models.recommendation import AnalysisMetric


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from relayshadow.models.records import PublisherWeight, RelayRecord


COVERAGE_LOW = 50.0
COVERAGE_HIGH = 80.0

NO_DATA = "n/a"
NO_DATA_RECOMMENDATION = "No analytics available for these relays yet"


def format_percentage(value: float) -> str:
    """At most one decimal, without a trailing ``.0``."""
    return f"{value:.1f}".rstrip("0").rstrip(".")


def coverage_recommendation(percentage: float) -> str:
    if percentage < COVERAGE_LOW:
        return "Consider adding more relays to better connect with your network"
    if percentage <= COVERAGE_HIGH:
        return "Good coverage, consider adding 1-2 more relays to reach the followed users you miss"
    return "Excellent coverage of your followed users"


def coverage_metric(
    followed: Iterable[str],
    weights: Iterable[PublisherWeight],
    relays: Iterable[str],
) -> AnalysisMetric:
    """Share of *followed* publishers carried by at least one of *relays*.

    Following nobody yields ``"0% (0/0)"``.
    """
    followed_set = set(followed)
    relay_set = set(relays)
    covered = {w.pubkey for w in weights if w.relay_url in relay_set and w.pubkey in followed_set}

    total = len(followed_set)
    percentage = len(covered) * 100.0 / total if total else 0.0
    return AnalysisMetric(
        category="coverage",
        value=f"{format_percentage(percentage)}% ({len(covered)}/{total})",
        recommendation=coverage_recommendation(percentage),
    )


def _average(values: Sequence[float]) -> float | None:
    return sum(values) / len(values) if values else None


def privacy_metric(records: Sequence[RelayRecord]) -> AnalysisMetric:
    average = _average([r.privacy for r in records])
    if average is None:
        return AnalysisMetric("quality", NO_DATA, NO_DATA_RECOMMENDATION)
    if average < 4.0:  # noqa: PLR2004
        text = "Consider adding more privacy-focused relays"
    elif average < 6.0:  # noqa: PLR2004
        text = "Moderate privacy protection"
    else:
        text = "Good privacy-focused relay selection"
    return AnalysisMetric("quality", f"{average:.2f}", text)


def reliability_metric(records: Sequence[RelayRecord]) -> AnalysisMetric:
    average = _average([r.reliability for r in records])
    if average is None:
        return AnalysisMetric("quality", NO_DATA, NO_DATA_RECOMMENDATION)
    if average < 6.0:  # noqa: PLR2004
        text = "Some relays may be unreliable"
    elif average < 8.0:  # noqa: PLR2004
        text = "Generally reliable relay selection"
    else:
        text = "Excellent reliability across your relays"
    return AnalysisMetric("quality", f"{average:.2f}", text)


def relay_count_metric(count: int) -> AnalysisMetric:
    if count < 3:  # noqa: PLR2004
        text = "Add more relays for redundancy"
    elif count < 5:  # noqa: PLR2004
        text = "Good number of relays"
    elif count > 10:  # noqa: PLR2004
        text = "Consider reducing for better performance"
    else:
        text = "Excellent relay diversity"
    return AnalysisMetric("diversity", str(count), text)


def analyze_setup(
    relays: Sequence[str],
    followed: Iterable[str],
    weights: Iterable[PublisherWeight],
    records: Iterable[RelayRecord],
) -> dict[str, AnalysisMetric]:
    """Build the four setup metrics for *relays*.

    Args:
        relays: The relay set under analysis.
        followed: Publishers the user follows.
        weights: Publisher weights of those publishers.
        records: Analytics of the relays; records for other relays are ignored.

    Returns:
        ``following_coverage``, ``average_privacy_score``,
        ``average_reliability`` and ``relay_count`` metrics.
    """
    relay_set = set(relays)
    known = [r for r in records if r.url in relay_set]
    return {
        "following_coverage": coverage_metric(followed, weights, relay_set),
        "average_privacy_score": privacy_metric(known),
        "average_reliability": reliability_metric(known),
        "relay_count": relay_count_metric(len(relay_set)),
    }
