"""Per-request-type job handlers of the DVM.

[JobHandlers][relayshadow.services.dvm.handlers.JobHandlers] turns a
decoded [JobRequest][relayshadow.nips.nip90.request.JobRequest] into the
JSON payload of its response. Store reads go through
[relayshadow.services.common.queries][]; scoring and analysis are the pure
functions of [relayshadow.analysis][].

Only ``recommend`` degrades gracefully: a store failure or an empty result
switches it to the static fallback table. The other request types let
store errors propagate so the service answers with an error response.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from relayshadow.analysis import (
    analyze_setup,
    fallback_recommendations,
    following_stats,
    rank,
    rank_discovery,
    summarize_health,
)
from relayshadow.core.exceptions import DatabaseError
from relayshadow.core.logger import Logger
from relayshadow.models import RequestType, normalize_relay_url
from relayshadow.services.common.queries import (
    fetch_discovery_candidates,
    fetch_followed_pubkeys,
    fetch_health_records,
    fetch_publisher_weights,
    fetch_relay_records,
    fetch_user_relays,
)


if TYPE_CHECKING:
    from relayshadow.analysis import FallbackProvider
    from relayshadow.core.store import Store
    from relayshadow.models import TieredRecommendations
    from relayshadow.nips.nip90 import JobRequest

    from .configs import DvmConfig


ALGORITHM_VERSION = "2.0"
INFERRED_RELAYS_LIMIT = 10

SOURCE_ANALYTICS = "analytics"
SOURCE_FALLBACK = "fallback"


class JobHandlers:
    """Builds response payloads for each request type.

    Args:
        store: Analytics store.
        config: DVM configuration (limits and social graph toggle).
        fallback: Static recommendations used when analytics are missing.
    """

    def __init__(self, store: Store, config: DvmConfig, fallback: FallbackProvider) -> None:
        self._store = store
        self._config = config
        self._fallback = fallback
        self._logger = Logger("dvm")

    async def handle(self, request: JobRequest) -> dict[str, Any]:
        """Dispatch *request* to its handler and return the payload."""
        match request.request_type:
            case RequestType.ANALYZE:
                return await self.analyze(request)
            case RequestType.DISCOVER:
                return await self.discover(request)
            case RequestType.HEALTH:
                return await self.health(request)
            case _:
                return await self.recommend(request)

    # -------------------------------------------------------------------------
    # recommend
    # -------------------------------------------------------------------------

    async def recommend(self, request: JobRequest) -> dict[str, Any]:
        """Rank relays for the requester's threat level and social graph.

        Falls back to the static table when the store fails or no relay is
        eligible; the payload then carries ``source: "fallback"``.
        """
        tiers: TieredRecommendations | None = None
        total_analyzed = 0
        social_used = False

        try:
            records = await fetch_relay_records(self._store)
            social = None
            if self._config.use_social_graph:
                followed = await fetch_followed_pubkeys(
                    self._store, request.requester, self._config.following_limit
                )
                if followed:
                    weights = await fetch_publisher_weights(self._store, followed)
                    social = following_stats(weights, followed)
                    social_used = True
            tiers = rank(records, request.threat_level, request.max_results, social)
            total_analyzed = len(records)
        except DatabaseError as e:
            self._logger.warning(
                "recommend_store_failed",
                request_id=request.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        source = SOURCE_ANALYTICS
        if not tiers:
            tiers = fallback_recommendations(
                self._fallback, request.threat_level, request.max_results
            )
            source = SOURCE_FALLBACK
            social_used = False
            total_analyzed = len(tiers)
            self._logger.info(
                "recommend_fallback_used",
                request_id=request.id,
                threat_level=request.threat_level,
                relays=len(tiers),
            )

        return {
            "type": "relay_recommendations",
            "recommendations": tiers.to_dict(),
            "analysis": {
                "threat_level": request.threat_level,
                "use_case": request.use_case,
                "total_analyzed": total_analyzed,
                "social_graph_used": social_used,
                "source": source,
                "algorithm_version": ALGORITHM_VERSION,
            },
            "timestamp": int(time.time()),
        }

    # -------------------------------------------------------------------------
    # analyze
    # -------------------------------------------------------------------------

    async def analyze(self, request: JobRequest) -> dict[str, Any]:
        """Analyze the requester's relay setup.

        Without ``current_relays`` in the request, the relays the
        requester's own events were seen on are used instead.
        """
        relays = list(request.current_relays)
        inferred = False
        if not relays:
            seen = await fetch_user_relays(self._store, request.requester, INFERRED_RELAYS_LIMIT)
            relays = list(
                dict.fromkeys(url for url in map(normalize_relay_url, seen) if url is not None)
            )
            inferred = True

        followed = await fetch_followed_pubkeys(
            self._store, request.requester, self._config.coverage_following_limit
        )
        weights = await fetch_publisher_weights(self._store, followed)
        records = await fetch_relay_records(self._store, relays)
        metrics = analyze_setup(relays, followed, weights, records)

        return {
            "type": "setup_analysis",
            "current_relays": relays,
            "inferred": inferred,
            "analysis": {name: metric.to_dict() for name, metric in metrics.items()},
            "timestamp": int(time.time()),
        }

    # -------------------------------------------------------------------------
    # discover / health
    # -------------------------------------------------------------------------

    async def discover(self, request: JobRequest) -> dict[str, Any]:
        """Rank relays carrying influential publishers the requester does not use yet."""
        candidates = await fetch_discovery_candidates(self._store)
        recommendations = rank_discovery(
            candidates,
            exclude=request.current_relays,
            max_results=request.max_results,
        )
        return {
            "type": "discovery_recommendations",
            "recommendations": [r.to_dict() for r in recommendations],
            "timestamp": int(time.time()),
        }

    async def health(self, request: JobRequest) -> dict[str, Any]:  # noqa: ARG002
        summary = summarize_health(await fetch_health_records(self._store))
        return {
            "type": "health_summary",
            "summary": summary.to_dict(),
            "timestamp": int(time.time()),
        }
