"""NIP-89 handler announcement for the relay recommendation DVM."""

from __future__ import annotations

import json

from relayshadow.models.constants import RequestType, ThreatLevel


HANDLER_IDENTIFIER = "relayshadow-dvm"


def announcement_tags(request_kind: int, identifier: str = HANDLER_IDENTIFIER) -> list[list[str]]:
    """Build the ``d`` and ``k`` tags of the handler announcement."""
    return [
        ["d", identifier],
        ["k", str(request_kind)],
    ]


def announcement_content(name: str, about: str) -> str:
    """Build the JSON content of the handler announcement."""
    return json.dumps(
        {
            "name": name,
            "about": about,
            "request_types": [t.value for t in RequestType],
            "threat_levels": [t.value for t in ThreatLevel],
        }
    )
