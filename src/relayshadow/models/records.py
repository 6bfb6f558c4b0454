"""
Read-only analytics records borrowed from the external store.

[RelayRecord][relayshadow.models.records.RelayRecord] carries the
per-relay attributes the scoring engine and analyzers consume;
[PublisherWeight][relayshadow.models.records.PublisherWeight] maps a
(relay, publisher) pair to its influence contribution. Both are produced
and refreshed by the analytics pipeline and are never written by
RelayShadow.

See Also:
    [relayshadow.services.common.queries][]: Builds these records from
        store rows.
    [relayshadow.analysis][]: Pure functions over these records.
"""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import validate_score, validate_str_no_null


@dataclass(frozen=True, slots=True)
class RelayRecord:
    """Per-relay analytic attributes.

    Component scores are on a 0-10 scale. Missing store values are
    coerced to ``0.0`` by the query layer before construction, except
    ``is_up`` where ``None`` means "status unknown".

    Attributes:
        url: Normalized relay URL (the record's identity).
        overall: Composite score precomputed by the analytics pipeline.
        privacy: Privacy component score.
        reliability: Reliability component score.
        performance: Performance component score.
        diversity: Network diversity component score.
        activity: Activity component score.
        publisher_quality: Publisher quality component score.
        total_events: Number of events observed on the relay.
        unique_publishers: Number of distinct publishers observed.
        events_per_day: Average daily event volume.
        uptime: Uptime fraction in ``[0, 1]``.
        avg_rtt: Average read round-trip time in milliseconds.
        is_up: Last observed status, ``None`` when never checked.
        quality_publishers: Publishers above the influence threshold
            (discovery only).
        avg_publisher_influence: Mean influence of those publishers
            (discovery only).
    """

    url: str
    overall: float = 0.0
    privacy: float = 0.0
    reliability: float = 0.0
    performance: float = 0.0
    diversity: float = 0.0
    activity: float = 0.0
    publisher_quality: float = 0.0
    total_events: int = 0
    unique_publishers: int = 0
    events_per_day: float = 0.0
    uptime: float = 0.0
    avg_rtt: float = 0.0
    is_up: bool | None = None
    quality_publishers: int = 0
    avg_publisher_influence: float = 0.0

    def __post_init__(self) -> None:
        validate_str_no_null(self.url, "url")
        for name in (
            "overall",
            "privacy",
            "reliability",
            "performance",
            "diversity",
            "activity",
            "publisher_quality",
            "events_per_day",
            "uptime",
            "avg_rtt",
            "avg_publisher_influence",
        ):
            validate_score(getattr(self, name), name)


@dataclass(frozen=True, slots=True)
class PublisherWeight:
    """Influence contribution of one publisher on one relay.

    Attributes:
        relay_url: Normalized relay URL.
        pubkey: Hex public key of the publisher.
        influence: Publisher influence score.
        contribution: Weighted contribution of the publisher to the relay.
    """

    relay_url: str
    pubkey: str
    influence: float = 0.0
    contribution: float = 0.0

    def __post_init__(self) -> None:
        validate_str_no_null(self.relay_url, "relay_url")
        validate_str_no_null(self.pubkey, "pubkey")
        validate_score(self.influence, "influence")
        validate_score(self.contribution, "contribution")
