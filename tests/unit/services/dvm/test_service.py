"""
Unit tests for services.dvm.service module.

Tests:
- Dvm initialization and properties
- Startup: relay connect, request subscription, NIP-89 announcement
- Exactly one response per request, including duplicates across relays
- Error responses when a handler fails
- run() housekeeping: metrics, dedup set bound, connectivity check
- Shutdown lets in-flight jobs finish
- End to end with a DvmClient over the in-memory relay network
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from relayshadow.core.exceptions import AggregateConnectionFailure, ConnectivityError
from relayshadow.models import ServiceName
from relayshadow.nips.nip90 import build_job_request_tags
from relayshadow.services.client import DvmClient, DvmClientConfig
from relayshadow.services.dvm import Dvm, DvmConfig
from relayshadow.services.dvm.service import _MAX_PROCESSED_IDS


RELAY_A = "wss://a.example"
RELAY_B = "wss://b.example"


@pytest.fixture
def dvm(mock_store, dvm_config, fake_session):
    return Dvm(mock_store, dvm_config, session=fake_session())


@pytest.fixture
def signed_request(make_signed, client_keys, dvm_pubkey):
    def _make(request_type="recommend", **kwargs):
        tags = build_job_request_tags(dvm_pubkey, request_type=request_type, **kwargs)
        return make_signed(client_keys, 5600, "", tags)

    return _make


def _deliver(relay_network, url, message):
    """Push *message* to the DVM's request subscription on *url*."""
    socket = relay_network.latest(url)
    (sub_id,) = socket.subscriptions
    socket.push(["EVENT", sub_id, message.to_dict()])


def _responses(relay_network, kind=6600):
    """Distinct published responses, keyed by id."""
    return {e["id"]: e for e in relay_network.published if e["kind"] == kind}


def _tag(event, name):
    return next(t[1] for t in event["tags"] if t[0] == name)


# ============================================================================
# Initialization
# ============================================================================


class TestInit:
    """Dvm construction."""

    def test_properties(self, dvm, dvm_pubkey):
        assert dvm.SERVICE_NAME == ServiceName.DVM
        assert dvm.pubkey == dvm_pubkey
        assert dvm.response_kind == 6600
        assert dvm.pending_jobs == 0

    def test_custom_kind(self, mock_store, fake_session):
        config = DvmConfig(relays=[RELAY_A], kind=5050)
        assert Dvm(mock_store, config, session=fake_session()).response_kind == 6050

    def test_builds_session_from_config(self, mock_store, dvm_config):
        assert Dvm(mock_store, dvm_config).session.open_count == 0

    def test_from_dict(self, mock_store):
        dvm = Dvm.from_dict({"relays": [RELAY_A], "announce": False}, mock_store)
        assert dvm.config.relays == [RELAY_A]


# ============================================================================
# Startup
# ============================================================================


class TestStartup:
    """Dvm.__aenter__."""

    async def test_subscribes_to_requests(self, dvm, relay_network, dvm_pubkey):
        async with dvm:
            for url in (RELAY_A, RELAY_B):
                (req,) = relay_network.latest(url).sent_frames("REQ")
                assert req[1].startswith("dvm-")
                flt = req[2]
                assert flt["kinds"] == [5600]
                assert flt["#p"] == [dvm_pubkey]
                assert "since" in flt
        assert relay_network.latest(RELAY_A).closed

    async def test_partial_connect(self, dvm, relay_network):
        relay_network.unreachable.add(RELAY_B)
        async with dvm:
            assert dvm.session.open_count == 1

    async def test_no_relay(self, dvm, relay_network):
        relay_network.unreachable.update({RELAY_A, RELAY_B})
        with pytest.raises(AggregateConnectionFailure):
            await dvm.__aenter__()

    async def test_announcement(self, mock_store, fake_session, relay_network, dvm_pubkey):
        config = DvmConfig(relays=[RELAY_A], name="Test DVM", about="About")
        async with Dvm(mock_store, config, session=fake_session()):
            pass
        (announcement,) = _responses(relay_network, kind=31990).values()
        assert announcement["pubkey"] == dvm_pubkey
        assert ["k", "5600"] in announcement["tags"]
        content = json.loads(announcement["content"])
        assert content["name"] == "Test DVM"
        assert "recommend" in content["request_types"]

    async def test_announcement_rejected_is_not_fatal(self, mock_store, fake_session, relay_network):
        relay_network.ack[RELAY_A] = "reject"
        config = DvmConfig(relays=[RELAY_A])
        async with Dvm(mock_store, config, session=fake_session()) as dvm:
            assert dvm.session.open_count == 1

    async def test_no_announcement_when_disabled(self, dvm, relay_network):
        async with dvm:
            pass
        assert _responses(relay_network, kind=31990) == {}


# ============================================================================
# Request Handling
# ============================================================================


class TestRequests:
    """One response per request."""

    async def test_responds(self, dvm, relay_network, signed_request, client_pubkey, wait_until):
        request = signed_request("health")
        async with dvm:
            _deliver(relay_network, RELAY_A, request)
            await wait_until(lambda: len(_responses(relay_network)) == 1)

        (response,) = _responses(relay_network).values()
        assert response["pubkey"] == dvm.pubkey
        assert _tag(response, "e") == request.id
        assert _tag(response, "p") == client_pubkey
        assert _tag(response, "status") == "success"
        assert json.loads(response["content"])["type"] == "health_summary"

    async def test_duplicate_across_relays(self, dvm, relay_network, signed_request, wait_until):
        request = signed_request("health")
        async with dvm:
            _deliver(relay_network, RELAY_A, request)
            _deliver(relay_network, RELAY_B, request)
            _deliver(relay_network, RELAY_A, request)
            await wait_until(lambda: len(_responses(relay_network)) == 1)
            await asyncio.sleep(0.05)
        assert len(_responses(relay_network)) == 1

    async def test_fallback_recommendations(self, dvm, relay_network, signed_request, wait_until):
        async with dvm:
            _deliver(relay_network, RELAY_A, signed_request(threat_level="nation-state"))
            await wait_until(lambda: len(_responses(relay_network)) == 1)
        (response,) = _responses(relay_network).values()
        payload = json.loads(response["content"])
        assert payload["analysis"]["source"] == "fallback"
        assert payload["recommendations"]["primary"][0]["url"] == "wss://nostr.wine"

    async def test_handler_failure_sends_error(self, dvm, relay_network, signed_request, wait_until):
        async with dvm:
            with patch.object(dvm._handlers, "handle", new=AsyncMock(side_effect=RuntimeError("boom"))):
                _deliver(relay_network, RELAY_A, signed_request())
                await wait_until(lambda: len(_responses(relay_network)) == 1)
        (response,) = _responses(relay_network).values()
        assert _tag(response, "status") == "error"
        payload = json.loads(response["content"])
        assert payload["type"] == "error"
        assert payload["error"] == "boom"

    async def test_other_recipient_ignored(self, dvm, relay_network, make_signed, client_keys):
        request = make_signed(client_keys, 5600, "", build_job_request_tags("e" * 64))
        async with dvm:
            socket = relay_network.latest(RELAY_A)
            socket.push(["EVENT", next(iter(socket.subscriptions)), request.to_dict()])
            await asyncio.sleep(0.05)
        assert _responses(relay_network) == {}

    async def test_forged_request_ignored(self, dvm, relay_network, signed_request):
        forged = dict(signed_request().to_dict(), content="tampered")
        async with dvm:
            socket = relay_network.latest(RELAY_A)
            socket.push(["EVENT", next(iter(socket.subscriptions)), forged])
            await asyncio.sleep(0.05)
        assert _responses(relay_network) == {}

    async def test_max_results_clamped(self, mock_store, fake_session, relay_network, signed_request, wait_until):
        config = DvmConfig(relays=[RELAY_A], announce=False, max_results_limit=2)
        async with Dvm(mock_store, config, session=fake_session()):
            _deliver(relay_network, RELAY_A, signed_request(threat_level="low", max_results=50))
            await wait_until(lambda: len(_responses(relay_network)) == 1)
        (response,) = _responses(relay_network).values()
        assert len(json.loads(response["content"])["recommendations"]["primary"]) == 2

    async def test_shutdown_waits_for_jobs(self, dvm, relay_network, signed_request, wait_until):
        async def slow(request):
            await asyncio.sleep(0.1)
            return {"type": "health_summary"}

        async with dvm:
            with patch.object(dvm._handlers, "handle", new=slow):
                _deliver(relay_network, RELAY_A, signed_request())
                await wait_until(lambda: dvm.pending_jobs == 1)
        assert len(_responses(relay_network)) == 1
        assert dvm.pending_jobs == 0


# ============================================================================
# run()
# ============================================================================


class TestRun:
    """Dvm.run() housekeeping."""

    async def test_reports_counters(self, dvm, relay_network, signed_request, wait_until):
        dvm.inc_counter = MagicMock()
        dvm.set_gauge = MagicMock()
        async with dvm:
            _deliver(relay_network, RELAY_A, signed_request())
            await wait_until(lambda: len(_responses(relay_network)) == 1 and dvm.pending_jobs == 0)
            await dvm.run()

            dvm.inc_counter.assert_has_calls(
                [
                    call("jobs_received", 1),
                    call("jobs_processed", 1),
                    call("jobs_failed", 0),
                    call("jobs_rejected", 0),
                    call("jobs_fallback", 1),
                ]
            )
            dvm.set_gauge.assert_any_call("relays_connected", 2)

            dvm.inc_counter.reset_mock()
            await dvm.run()
            dvm.inc_counter.assert_any_call("jobs_received", 0)

    async def test_rejected_response_counted(self, dvm, relay_network, signed_request, wait_until):
        dvm.inc_counter = MagicMock()
        async with dvm:
            relay_network.ack.update({RELAY_A: "reject", RELAY_B: "reject"})
            _deliver(relay_network, RELAY_A, signed_request("health"))
            await wait_until(lambda: dvm._counters.received == 1 and dvm.pending_jobs == 0)
            await dvm.run()
        dvm.inc_counter.assert_any_call("jobs_rejected", 1)
        dvm.inc_counter.assert_any_call("jobs_processed", 1)

    @pytest.mark.parametrize("error", [AttributeError("no signer"), RuntimeError("socket gone")])
    async def test_unexpected_response_error_counted(
        self, dvm, relay_network, signed_request, wait_until, error
    ):
        dvm.inc_counter = MagicMock()
        async with dvm:
            with patch("relayshadow.services.dvm.service.sign_message", side_effect=error):
                _deliver(relay_network, RELAY_A, signed_request("health"))
                await wait_until(lambda: dvm._counters.received == 1 and dvm.pending_jobs == 0)
            await dvm.run()
        assert _responses(relay_network) == {}
        dvm.inc_counter.assert_any_call("jobs_rejected", 1)
        dvm.inc_counter.assert_any_call("jobs_processed", 1)

    async def test_failed_job_counted(self, dvm, relay_network, signed_request, wait_until):
        dvm.inc_counter = MagicMock()
        async with dvm:
            with patch.object(dvm._handlers, "handle", new=AsyncMock(side_effect=ValueError("bad"))):
                _deliver(relay_network, RELAY_A, signed_request())
                await wait_until(lambda: len(_responses(relay_network)) == 1 and dvm.pending_jobs == 0)
            await dvm.run()
        dvm.inc_counter.assert_any_call("jobs_failed", 1)
        dvm.inc_counter.assert_any_call("jobs_processed", 0)

    async def test_no_relay_open(self, dvm):
        with pytest.raises(ConnectivityError, match="no relay connected"):
            await dvm.run()

    async def test_dedup_set_bounded(self, dvm):
        dvm._processed_ids = {str(i) for i in range(_MAX_PROCESSED_IDS)}
        with pytest.raises(ConnectivityError):
            await dvm.run()
        assert dvm._processed_ids == set()

    async def test_dedup_set_kept_below_bound(self, dvm):
        dvm._processed_ids = {"a", "b"}
        with pytest.raises(ConnectivityError):
            await dvm.run()
        assert dvm._processed_ids == {"a", "b"}


# ============================================================================
# End to End
# ============================================================================


class TestEndToEnd:
    """A DvmClient and a Dvm sharing the in-memory relays."""

    async def test_request_response(self, dvm, fake_session, dvm_pubkey):
        client_config = DvmClientConfig(relays=[RELAY_A, RELAY_B], dvm_pubkey=dvm_pubkey)
        async with dvm, DvmClient(client_config, session=fake_session()) as client:
            request_id = await client.send_request(request_type="recommend", threat_level="high")
            result = await client.wait_for_response(request_id, timeout=2.0)

            assert result.request_id == request_id
            assert result.author == dvm_pubkey
            assert not result.is_error
            assert result.payload["type"] == "relay_recommendations"
            assert result.payload["analysis"]["threat_level"] == "high"

            await asyncio.sleep(0.05)
            assert len(client.responses(request_id)) == 1

    async def test_discover_default_limit(self, dvm, fake_session, dvm_pubkey, mock_store):
        rows = []
        for i in range(8):
            rows.append(
                {
                    "url": f"wss://r{i}.example",
                    "overall_score": 7.0,
                    "privacy_score": 7.0,
                    "reliability_score": 8.0,
                    "performance_score": 7.0,
                    "diversity_score": 6.0,
                    "activity_score": 6.0,
                    "publisher_quality_score": 6.0,
                    "total_events": 10,
                    "unique_publishers": 5,
                    "events_per_day": 1.0,
                    "uptime_percentage": 0.99,
                    "avg_rtt_read": 100,
                    "current_status": True,
                    "quality_publishers": 4,
                    "avg_publisher_influence": 3.0,
                }
            )
        mock_store.fetch.return_value = rows
        client_config = DvmClientConfig(relays=[RELAY_A], dvm_pubkey=dvm_pubkey)
        async with dvm, DvmClient(client_config, session=fake_session()) as client:
            request_id = await client.send_request(request_type="discover")
            result = await client.wait_for_response(request_id, timeout=2.0)
        assert result.payload["type"] == "discovery_recommendations"
        assert len(result.payload["recommendations"]) == 5
