"""NIP-90 Data Vending Machine job codecs and NIP-89 handler announcement.

Attributes:
    JobRequest: Decoded relay recommendation job request.
    JobResult: Decoded job result as seen by the requesting client.
    decode_job_request: Two-stage decode (tags, then JSON content merge).
    build_job_request_tags: Client-side request tag builder.
    job_result_tags: ``e``/``p``/``status`` tags of a job result.
"""

from .announcement import HANDLER_IDENTIFIER, announcement_content, announcement_tags
from .request import (
    DEFAULT_DISCOVER_MAX_RESULTS,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MAX_RESULTS_LIMIT,
    DEFAULT_USE_CASE,
    JobParams,
    JobRequest,
    build_job_request_tags,
    decode_job_request,
    merge_json_payload,
    params_from_tags,
)
from .result import (
    ERROR_PAYLOAD_TYPE,
    JobResult,
    decode_job_result,
    encode_payload,
    error_payload,
    job_result_tags,
)


__all__ = [
    "DEFAULT_DISCOVER_MAX_RESULTS",
    "DEFAULT_MAX_RESULTS",
    "DEFAULT_MAX_RESULTS_LIMIT",
    "DEFAULT_USE_CASE",
    "ERROR_PAYLOAD_TYPE",
    "HANDLER_IDENTIFIER",
    "JobParams",
    "JobRequest",
    "JobResult",
    "announcement_content",
    "announcement_tags",
    "build_job_request_tags",
    "decode_job_request",
    "decode_job_result",
    "encode_payload",
    "error_payload",
    "job_result_tags",
    "merge_json_payload",
    "params_from_tags",
]
