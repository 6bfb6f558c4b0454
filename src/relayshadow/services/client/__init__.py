"""Request client for the relay recommendation DVM.

Attributes:
    DvmClient: Publishes job requests and correlates the results.
    DvmClientConfig: Relays, target DVM, request kind and connection policy.
"""

from .configs import DvmClientConfig
from .service import DvmClient


__all__ = ["DvmClient", "DvmClientConfig"]
