"""
NIP-90 job request encoding and two-stage decoding.

A relay recommendation job request carries its parameters in ``param``
tags, ``relay`` tags, and optionally a JSON object in the content. Decoding
happens in two explicit stages:

1. **Tag extraction** into a typed
   [JobParams][relayshadow.nips.nip90.request.JobParams] starting from the
   defaults.
2. **JSON merge**: if the content is a JSON object, each known field it
   carries overrides the tag value, provided it has the right type. Any
   other non-empty content becomes the free-text ``context``.

Unknown request types decode to ``recommend``; unknown threat levels are
kept verbatim and scored with the unrecognized-level policy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relayshadow.core.exceptions import ProtocolError
from relayshadow.models.constants import RequestType, ThreatLevel
from relayshadow.models.relay import normalize_relay_url


if TYPE_CHECKING:
    from collections.abc import Iterable

    from relayshadow.models.message import SignedMessage


DEFAULT_MAX_RESULTS = 10
DEFAULT_DISCOVER_MAX_RESULTS = 5
DEFAULT_MAX_RESULTS_LIMIT = 50
DEFAULT_USE_CASE = "social"

_MIN_PARAM_TAG_LEN = 3

# JSON content keys accepted for each field, first match wins
_JSON_KEYS: dict[str, tuple[str, ...]] = {
    "request_type": ("request_type", "requestType", "type"),
    "threat_level": ("threat_level", "threatLevel"),
    "max_results": ("max_results", "maxResults"),
    "use_case": ("use_case", "useCase"),
    "current_relays": ("current_relays", "currentRelays"),
    "context": ("context", "query"),
}


@dataclass(slots=True)
class JobParams:
    """Mutable decoding buffer for job request parameters."""

    request_type: str = RequestType.RECOMMEND.value
    threat_level: str = ThreatLevel.MEDIUM.value
    max_results: int | None = None
    use_case: str = DEFAULT_USE_CASE
    current_relays: list[str] = field(default_factory=list)
    context: str | None = None
    client: tuple[str, str] | None = None


@dataclass(frozen=True, slots=True)
class JobRequest:
    """A decoded relay recommendation job request.

    Attributes:
        id: Identity of the originating request message.
        requester: Public key of the requester (response recipient).
        created_at: Creation timestamp of the request message.
        request_type: Dispatch target; unknown types become ``recommend``.
        requested_type: The request type exactly as sent.
        threat_level: Normalized threat level (may be unrecognized).
        max_results: Result count, clamped to the configured limit. When the
            request does not set it, 5 for ``discover`` and 10 otherwise.
        use_case: Caller-declared use case.
        current_relays: Normalized relay URLs the caller already uses.
        context: Free-text context from the content, if any.
        client: ``(name, version)`` from the ``client`` tag, if any.
    """

    id: str
    requester: str
    created_at: int
    request_type: RequestType
    requested_type: str
    threat_level: str
    max_results: int
    use_case: str
    current_relays: tuple[str, ...]
    context: str | None = None
    client: tuple[str, str] | None = None


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _split_relays(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def params_from_tags(tags: Iterable[tuple[str, ...]]) -> JobParams:
    """Stage one: extract parameters from ``param``, ``relay`` and ``client`` tags.

    Invalid ``max_results`` values keep the default. ``relay`` tags are
    appended to ``current_relays`` in tag order.
    """
    params = JobParams()
    for tag in tags:
        name = tag[0]
        if name == "param" and len(tag) >= _MIN_PARAM_TAG_LEN:
            key, value = tag[1], tag[2]
            if key == "request_type":
                params.request_type = value
            elif key == "threat_level":
                params.threat_level = value
            elif key == "use_case":
                params.use_case = value
            elif key == "current_relays":
                params.current_relays.extend(_split_relays(value))
            elif key == "max_results":
                parsed = _parse_int(value)
                if parsed is not None:
                    params.max_results = parsed
        elif name == "relay" and len(tag) >= 2:  # noqa: PLR2004
            params.current_relays.append(tag[1])
        elif name == "client" and len(tag) >= 2:  # noqa: PLR2004
            params.client = (tag[1], tag[2] if len(tag) > 2 else "")  # noqa: PLR2004
    return params


def _json_value(payload: dict[str, Any], field_name: str) -> Any:
    for key in _JSON_KEYS[field_name]:
        if key in payload:
            return payload[key]
    return None


def merge_json_payload(params: JobParams, content: str) -> JobParams:
    """Stage two: merge a JSON object payload into *params*, field by field.

    Each field is overridden only when the payload carries it with a usable
    type; anything else leaves the tag-derived value in place. Content that
    is not a JSON object becomes ``context`` when non-empty.
    """
    text = content.strip()
    if not text:
        return params

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if not isinstance(payload, dict):
        params.context = text
        return params

    request_type = _json_value(payload, "request_type")
    if isinstance(request_type, str) and request_type:
        params.request_type = request_type

    threat_level = _json_value(payload, "threat_level")
    if isinstance(threat_level, str) and threat_level:
        params.threat_level = threat_level

    use_case = _json_value(payload, "use_case")
    if isinstance(use_case, str) and use_case:
        params.use_case = use_case

    max_results = _parse_int(_json_value(payload, "max_results"))
    if max_results is not None:
        params.max_results = max_results

    relays = _json_value(payload, "current_relays")
    if isinstance(relays, str):
        params.current_relays = _split_relays(relays)
    elif isinstance(relays, list):
        params.current_relays = [r.strip() for r in relays if isinstance(r, str) and r.strip()]

    context = _json_value(payload, "context")
    if isinstance(context, str) and context:
        params.context = context

    return params


def _normalize_relays(urls: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for url in urls:
        normalized = normalize_relay_url(url)
        if normalized is not None:
            seen.setdefault(normalized, None)
    return tuple(seen)


def _normalize_threat_level(value: str) -> str:
    return value.strip().lower().replace("_", "-")


def decode_job_request(
    message: SignedMessage,
    *,
    max_results_limit: int = DEFAULT_MAX_RESULTS_LIMIT,
) -> JobRequest:
    """Decode a signed job request message into a
    [JobRequest][relayshadow.nips.nip90.request.JobRequest].

    Args:
        message: A validated request message.
        max_results_limit: Upper bound applied to ``max_results``.

    Raises:
        ProtocolError: If ``max_results_limit`` is not positive.
    """
    if max_results_limit < 1:
        raise ProtocolError("max_results_limit must be positive")

    params = merge_json_payload(params_from_tags(message.tags), message.content)

    requested_type = params.request_type.strip().lower()
    try:
        request_type = RequestType(requested_type)
    except ValueError:
        request_type = RequestType.RECOMMEND

    max_results = params.max_results
    if max_results is None:
        max_results = (
            DEFAULT_DISCOVER_MAX_RESULTS
            if request_type is RequestType.DISCOVER
            else DEFAULT_MAX_RESULTS
        )

    return JobRequest(
        id=message.id,
        requester=message.pubkey,
        created_at=message.created_at,
        request_type=request_type,
        requested_type=params.request_type,
        threat_level=_normalize_threat_level(params.threat_level),
        max_results=max(1, min(max_results, max_results_limit)),
        use_case=params.use_case,
        current_relays=_normalize_relays(params.current_relays),
        context=params.context,
        client=params.client,
    )


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def build_job_request_tags(
    dvm_pubkey: str,
    *,
    request_type: str = RequestType.RECOMMEND.value,
    threat_level: str = ThreatLevel.MEDIUM.value,
    max_results: int | None = None,
    use_case: str = DEFAULT_USE_CASE,
    current_relays: Iterable[str] = (),
    client: tuple[str, str] | None = None,
) -> list[list[str]]:
    """Build the tag list of a job request addressed to *dvm_pubkey*."""
    tags = [
        ["p", dvm_pubkey],
        ["param", "request_type", str(request_type)],
        ["param", "threat_level", str(threat_level)],
        ["param", "use_case", use_case],
    ]
    if max_results is not None:
        tags.append(["param", "max_results", str(max_results)])
    relays = list(current_relays)
    if relays:
        tags.append(["param", "current_relays", ",".join(relays)])
    if client is not None:
        tags.append(["client", client[0], client[1]])
    return tags
