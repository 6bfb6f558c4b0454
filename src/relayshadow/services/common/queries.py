"""Analytics store queries for RelayShadow services.

All SQL used by services is centralized here. Each function accepts a
[Store][relayshadow.core.store.Store] and returns model instances; rows
that fail model construction are skipped with a warning.

The store is read-only from RelayShadow's point of view. The tables are
produced by the external analytics pipeline:

- ``relay_recommendations``: per-relay component scores and operational stats
- ``relay_publisher_weights``: (relay, publisher) influence contributions
- ``relay_analytics``: uptime, latency, and status per relay
- ``events`` / ``events_relays``: raw events and where they were seen

Numeric columns may be ``NULL`` or ``NUMERIC``; they are coerced to
``float`` (``NULL`` becomes ``0.0``) before reaching the models, except
``current_status`` where ``NULL`` stays "unknown".

Warning:
    Every query uses the store's default timeout (``timeouts.query``).
    Failures surface as
    [StoreQueryError][relayshadow.core.exceptions.StoreQueryError].
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from relayshadow.models.records import PublisherWeight, RelayRecord


if TYPE_CHECKING:
    from collections.abc import Sequence

    from relayshadow.core.store import Store

logger = logging.getLogger(__name__)


DEFAULT_MIN_PUBLISHER_INFLUENCE = 2.0

_RECORD_COLUMNS = """
    rr.url,
    rr.overall_score,
    rr.privacy_score,
    rr.reliability_score,
    rr.performance_score,
    rr.diversity_score,
    rr.activity_score,
    rr.publisher_quality_score,
    rr.total_events,
    rr.unique_publishers,
    rr.events_per_day,
    rr.uptime_percentage,
    rr.avg_rtt_read,
    rr.current_status
"""


# =============================================================================
# Private helpers
# =============================================================================


def _num(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _int(value: Any) -> int:
    return int(value) if value is not None else 0


def _record_from_row(row: Any) -> RelayRecord:
    keys = set(row.keys())
    return RelayRecord(
        url=row["url"],
        overall=_num(row["overall_score"]),
        privacy=_num(row["privacy_score"]),
        reliability=_num(row["reliability_score"]),
        performance=_num(row["performance_score"]),
        diversity=_num(row["diversity_score"]),
        activity=_num(row["activity_score"]),
        publisher_quality=_num(row["publisher_quality_score"]),
        total_events=_int(row["total_events"]),
        unique_publishers=_int(row["unique_publishers"]),
        events_per_day=_num(row["events_per_day"]),
        uptime=_num(row["uptime_percentage"]),
        avg_rtt=_num(row["avg_rtt_read"]),
        is_up=row["current_status"],
        quality_publishers=_int(row["quality_publishers"]) if "quality_publishers" in keys else 0,
        avg_publisher_influence=(
            _num(row["avg_publisher_influence"]) if "avg_publisher_influence" in keys else 0.0
        ),
    )


async def _fetch_records(store: Store, query: str, *args: Any) -> list[RelayRecord]:
    rows = await store.fetch(query, *args)
    records: list[RelayRecord] = []
    for row in rows:
        try:
            records.append(_record_from_row(row))
        except (ValueError, TypeError) as e:
            logger.warning("Skipping invalid relay record %s: %s", row["url"], e)
    return records


# =============================================================================
# Relay queries
# =============================================================================


async def fetch_relay_records(
    store: Store,
    urls: Sequence[str] | None = None,
) -> list[RelayRecord]:
    """Fetch relay analytics records, optionally restricted to *urls*.

    Returns:
        Records ordered by URL. An empty *urls* sequence yields no records.
    """
    if urls is None:
        return await _fetch_records(
            store,
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM relay_recommendations rr
            ORDER BY rr.url
            """,
        )
    if not urls:
        return []
    return await _fetch_records(
        store,
        f"""
        SELECT {_RECORD_COLUMNS}
        FROM relay_recommendations rr
        WHERE rr.url = ANY($1::text[])
        ORDER BY rr.url
        """,
        list(urls),
    )


async def fetch_discovery_candidates(
    store: Store,
    min_influence: float = DEFAULT_MIN_PUBLISHER_INFLUENCE,
) -> list[RelayRecord]:
    """Fetch relays with their quality-publisher count and average influence.

    Quality publishers are those whose influence exceeds *min_influence*.
    Relays without any are not returned.
    """
    return await _fetch_records(
        store,
        f"""
        WITH candidates AS (
            SELECT relay_url,
                   COUNT(DISTINCT pubkey) AS quality_publishers,
                   AVG(publisher_influence) AS avg_publisher_influence
            FROM relay_publisher_weights
            WHERE publisher_influence > $1
            GROUP BY relay_url
        )
        SELECT {_RECORD_COLUMNS},
               c.quality_publishers,
               c.avg_publisher_influence
        FROM candidates c
        JOIN relay_recommendations rr ON rr.url = c.relay_url
        ORDER BY rr.url
        """,
        min_influence,
    )


async def fetch_health_records(store: Store) -> list[RelayRecord]:
    """Fetch uptime, latency, and status of every monitored relay."""
    rows = await store.fetch(
        """
        SELECT url, uptime_percentage, avg_rtt_read, current_status
        FROM relay_analytics
        ORDER BY url
        """
    )
    records: list[RelayRecord] = []
    for row in rows:
        try:
            records.append(
                RelayRecord(
                    url=row["url"],
                    uptime=_num(row["uptime_percentage"]),
                    avg_rtt=_num(row["avg_rtt_read"]),
                    is_up=row["current_status"],
                )
            )
        except (ValueError, TypeError) as e:
            logger.warning("Skipping invalid health record %s: %s", row["url"], e)
    return records


# =============================================================================
# Social graph queries
# =============================================================================


async def fetch_followed_pubkeys(store: Store, pubkey: str, limit: int) -> list[str]:
    """Fetch up to *limit* publishers from *pubkey*'s latest contact list."""
    rows = await store.fetch(
        """
        SELECT DISTINCT tag->>1 AS followed
        FROM (
            SELECT tags
            FROM events
            WHERE pubkey = $1 AND kind = 3
            ORDER BY created_at DESC
            LIMIT 1
        ) latest,
        jsonb_array_elements(latest.tags) AS tag
        WHERE tag->>0 = 'p' AND length(tag->>1) = 64
        LIMIT $2
        """,
        pubkey,
        limit,
    )
    return [row["followed"] for row in rows]


async def fetch_publisher_weights(store: Store, pubkeys: Sequence[str]) -> list[PublisherWeight]:
    """Fetch the per-relay weights of *pubkeys*. No query runs for an empty list."""
    if not pubkeys:
        return []
    rows = await store.fetch(
        """
        SELECT relay_url, pubkey, publisher_influence, weighted_contribution
        FROM relay_publisher_weights
        WHERE pubkey = ANY($1::text[])
        """,
        list(pubkeys),
    )
    weights: list[PublisherWeight] = []
    for row in rows:
        try:
            weights.append(
                PublisherWeight(
                    relay_url=row["relay_url"],
                    pubkey=row["pubkey"],
                    influence=_num(row["publisher_influence"]),
                    contribution=_num(row["weighted_contribution"]),
                )
            )
        except (ValueError, TypeError) as e:
            logger.warning("Skipping invalid publisher weight %s: %s", row["relay_url"], e)
    return weights


async def fetch_user_relays(store: Store, pubkey: str, limit: int = 10) -> list[str]:
    """Fetch the relays *pubkey*'s own events were seen on, most recent first."""
    rows = await store.fetch(
        """
        SELECT er.relay_url, MAX(er.seen_at) AS last_seen
        FROM events e
        JOIN events_relays er ON er.event_id = e.id
        WHERE e.pubkey = $1
        GROUP BY er.relay_url
        ORDER BY last_seen DESC
        LIMIT $2
        """,
        pubkey,
        limit,
    )
    return [row["relay_url"] for row in rows]
