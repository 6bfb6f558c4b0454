"""Shared fixtures for DVM service tests."""

from collections.abc import Callable
from typing import Any

import pytest

from relayshadow.models import RequestType
from relayshadow.network import RelaySession
from relayshadow.nips.nip90 import JobRequest
from relayshadow.services.dvm import DvmConfig


RELAY_A = "wss://a.example"
RELAY_B = "wss://b.example"


@pytest.fixture
def dvm_config() -> DvmConfig:
    """Minimal DVM config for testing."""
    return DvmConfig(relays=[RELAY_A, RELAY_B], announce=False)


@pytest.fixture
def make_request() -> Callable[..., JobRequest]:
    """Factory for decoded job requests."""

    def _make(**overrides: Any) -> JobRequest:
        values: dict[str, Any] = {
            "id": "a" * 64,
            "requester": "b" * 64,
            "created_at": 1_700_000_000,
            "request_type": RequestType.RECOMMEND,
            "requested_type": "recommend",
            "threat_level": "medium",
            "max_results": 10,
            "use_case": "social",
            "current_relays": (),
        }
        values.update(overrides)
        return JobRequest(**values)

    return _make


@pytest.fixture
def fake_session(relay_network) -> Callable[[], RelaySession]:
    """Factory for relay sessions bound to the in-memory relay network."""

    def _make() -> RelaySession:
        return RelaySession(
            relay_network.connect,
            connect_timeout=0.5,
            reconnect_delay=0.05,
            ack_timeout=0.2,
        )

    return _make
