"""NIP-89/90 Data Vending Machine answering relay recommendation requests.

Attributes:
    Dvm: The service; listens for job requests and publishes one result per
        request.
    DvmConfig: Relays, request kind, limits, fallback table and connection
        policy.
    JobHandlers: Builds the ``recommend``, ``analyze``, ``discover`` and
        ``health`` payloads.
"""

from .configs import DvmConfig, FallbackConfig, FallbackRelayConfig
from .handlers import ALGORITHM_VERSION, JobHandlers
from .service import Dvm


__all__ = [
    "ALGORITHM_VERSION",
    "Dvm",
    "DvmConfig",
    "FallbackConfig",
    "FallbackRelayConfig",
    "JobHandlers",
]
