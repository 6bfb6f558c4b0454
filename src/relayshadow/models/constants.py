"""Shared constants for the models layer.

Defines enumerations used across the models, analysis, and services
layers. Placing them here avoids circular dependencies between packages
that sit above the models layer in the dependency graph.

See Also:
    [relayshadow.analysis.scoring][]: Uses
        [ThreatLevel][relayshadow.models.constants.ThreatLevel] to select
        the scoring policy.
    [relayshadow.nips.nip90][]: Uses
        [RequestType][relayshadow.models.constants.RequestType] to decode
        job requests.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    Attributes:
        DVM: The Data Vending Machine server
            ([Dvm][relayshadow.services.dvm.Dvm]).
        CLIENT: The request client
            ([DvmClient][relayshadow.services.client.DvmClient]).
    """

    DVM = "dvm"
    CLIENT = "client"


class EventKind(IntEnum):
    """Nostr event kinds produced or consumed by RelayShadow.

    Attributes:
        CONTACTS: Kind 3 -- contact list (NIP-02), source of the social graph.
        JOB_REQUEST: Kind 5600 -- relay recommendation job request (NIP-90).
        JOB_RESULT: Kind 6600 -- job result, always ``JOB_REQUEST + 1000``.
        JOB_FEEDBACK: Kind 7000 -- job feedback (NIP-90).
        HANDLER_INFO: Kind 31990 -- handler announcement (NIP-89).
    """

    CONTACTS = 3
    JOB_REQUEST = 5600
    JOB_RESULT = 6600
    JOB_FEEDBACK = 7000
    HANDLER_INFO = 31_990


# Offset between a NIP-90 request kind and its result kind
RESULT_KIND_OFFSET = 1000

EVENT_KIND_MAX = 65_535


class ThreatLevel(StrEnum):
    """Caller-supplied risk tier controlling the scoring policy.

    Higher tiers shift weight from performance toward privacy and
    reliability. Values outside this enum are tolerated by the scoring
    engine and scored with the overall score as-is.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    NATION_STATE = "nation-state"


class RequestType(StrEnum):
    """Job request types understood by the DVM."""

    RECOMMEND = "recommend"
    ANALYZE = "analyze"
    DISCOVER = "discover"
    HEALTH = "health"


class Tier(StrEnum):
    """Priority partition of ranked recommendations."""

    PRIMARY = "primary"
    BACKUP = "backup"
    DISCOVERY = "discovery"


class JobStatus(StrEnum):
    """Value of the ``status`` tag on job responses."""

    SUCCESS = "success"
    ERROR = "error"
