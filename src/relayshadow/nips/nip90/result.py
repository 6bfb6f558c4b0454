"""
NIP-90 job result encoding and decoding.

A job result references its request with an ``e`` tag, addresses the
requester with a ``p`` tag, and reports ``success`` or ``error`` in a
``status`` tag. The content is always a JSON object whose ``type`` field
names the payload shape (``relay_recommendations``, ``setup_analysis``,
``discovery_recommendations``, ``health_summary`` or ``error``).
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relayshadow.models.constants import JobStatus


if TYPE_CHECKING:
    from relayshadow.models.message import SignedMessage


ERROR_PAYLOAD_TYPE = "error"


def job_result_tags(request_id: str, requester: str, status: JobStatus) -> list[list[str]]:
    """Build the tag list of a job result."""
    return [
        ["e", request_id],
        ["p", requester],
        ["status", status.value],
    ]


def encode_payload(payload: dict[str, Any]) -> str:
    """Serialize a result payload to JSON content."""
    return json.dumps(payload, default=str, ensure_ascii=False)


def error_payload(reason: str, timestamp: int | None = None) -> dict[str, Any]:
    """Build the payload of an error result."""
    return {
        "type": ERROR_PAYLOAD_TYPE,
        "error": reason,
        "timestamp": timestamp if timestamp is not None else int(time.time()),
    }


@dataclass(frozen=True, slots=True)
class JobResult:
    """A decoded job result as seen by the client.

    Attributes:
        id: Identity of the result message.
        author: Public key of the DVM that produced it.
        request_id: Identity of the request it answers (``e`` tag).
        status: ``success`` or ``error``; ``None`` when the tag is missing
            or carries an unknown value.
        payload: Decoded JSON object, or ``None`` if the content is not one.
        content: The raw content.
        created_at: Creation timestamp of the result message.
    """

    id: str
    author: str
    request_id: str | None
    status: JobStatus | None
    payload: dict[str, Any] | None
    content: str
    created_at: int

    @property
    def is_error(self) -> bool:
        """Whether the DVM reported a failure."""
        if self.status is JobStatus.ERROR:
            return True
        return self.payload is not None and self.payload.get("type") == ERROR_PAYLOAD_TYPE

    @property
    def error(self) -> str | None:
        """The failure reason, if any."""
        if not self.is_error:
            return None
        if self.payload is not None and isinstance(self.payload.get("error"), str):
            return str(self.payload["error"])
        return self.content or "unknown error"


def decode_job_result(message: SignedMessage) -> JobResult:
    """Decode a validated result message. Never raises on bad content."""
    try:
        decoded = json.loads(message.content) if message.content else None
    except json.JSONDecodeError:
        decoded = None

    raw_status = message.first_tag_value("status")
    try:
        status = JobStatus(raw_status) if raw_status is not None else None
    except ValueError:
        status = None

    return JobResult(
        id=message.id,
        author=message.pubkey,
        request_id=message.first_tag_value("e"),
        status=status,
        payload=decoded if isinstance(decoded, dict) else None,
        content=message.content,
        created_at=message.created_at,
    )
