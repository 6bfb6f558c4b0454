"""Service implementations built on the core layer.

Attributes:
    dvm: The NIP-90 relay recommendation DVM.
    client: The request client used to query a DVM.
    common: Shared configuration and analytics store queries.
"""

from .client import DvmClient, DvmClientConfig
from .dvm import Dvm, DvmConfig


__all__ = ["Dvm", "DvmClient", "DvmClientConfig", "DvmConfig"]
