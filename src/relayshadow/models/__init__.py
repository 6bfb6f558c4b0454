"""Pure frozen dataclasses with zero I/O for relays, messages, and analytics.

The models layer is the foundation of the diamond DAG. It depends only on
the Python standard library and ``rfc3986``. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``
so invalid instances never escape the constructor.

Attributes:
    Relay: Validated, normalized ws/wss relay URL.
    SignedMessage: Immutable NIP-01 event; structural validation only.
    RelayRecord: Per-relay analytics attributes read from the store.
    PublisherWeight: (relay, publisher) influence contribution.
    Recommendation: Ranked, tiered relay recommendation.

See Also:
    [relayshadow.utils.signer][]: Signs and verifies
        [SignedMessage][relayshadow.models.message.SignedMessage] instances.
    [relayshadow.analysis][]: Pure scoring over
        [RelayRecord][relayshadow.models.records.RelayRecord] instances.
"""

from .constants import (
    EVENT_KIND_MAX,
    RESULT_KIND_OFFSET,
    EventKind,
    JobStatus,
    RequestType,
    ServiceName,
    ThreatLevel,
    Tier,
)
from .message import SignedMessage
from .recommendation import (
    AnalysisMetric,
    DiscoveryRecommendation,
    HealthSummary,
    Recommendation,
    SocialFactors,
    TieredRecommendations,
)
from .records import PublisherWeight, RelayRecord
from .relay import Relay, normalize_relay_url


__all__ = [
    "EVENT_KIND_MAX",
    "RESULT_KIND_OFFSET",
    "AnalysisMetric",
    "DiscoveryRecommendation",
    "EventKind",
    "HealthSummary",
    "JobStatus",
    "PublisherWeight",
    "Recommendation",
    "Relay",
    "RelayRecord",
    "RequestType",
    "ServiceName",
    "SignedMessage",
    "SocialFactors",
    "ThreatLevel",
    "Tier",
    "TieredRecommendations",
    "normalize_relay_url",
]
