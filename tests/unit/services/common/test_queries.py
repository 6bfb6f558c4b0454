"""
Unit tests for services.common.queries module.

Tests:
- Relay record row mapping, NULL coercion, and invalid row skipping
- URL-restricted and unrestricted record queries
- Discovery candidate and health record queries
- Followed pubkeys, publisher weights, and user relay queries
"""

from decimal import Decimal

import pytest

from relayshadow.services.common.queries import (
    DEFAULT_MIN_PUBLISHER_INFLUENCE,
    fetch_discovery_candidates,
    fetch_followed_pubkeys,
    fetch_health_records,
    fetch_publisher_weights,
    fetch_relay_records,
    fetch_user_relays,
)


def _record_row(url="wss://a.example", **overrides):
    row = {
        "url": url,
        "overall_score": Decimal("7.5"),
        "privacy_score": 6.0,
        "reliability_score": 8.0,
        "performance_score": 7.0,
        "diversity_score": 5.0,
        "activity_score": 4.0,
        "publisher_quality_score": 3.0,
        "total_events": 1200,
        "unique_publishers": 40,
        "events_per_day": Decimal("12.5"),
        "uptime_percentage": 0.97,
        "avg_rtt_read": 250,
        "current_status": True,
    }
    row.update(overrides)
    return row


# ============================================================================
# Relay Records
# ============================================================================


class TestFetchRelayRecords:
    """fetch_relay_records()."""

    async def test_maps_rows(self, mock_store):
        mock_store.fetch.return_value = [_record_row()]
        (record,) = await fetch_relay_records(mock_store)
        assert record.url == "wss://a.example"
        assert record.overall == 7.5
        assert isinstance(record.overall, float)
        assert record.total_events == 1200
        assert record.events_per_day == 12.5
        assert record.avg_rtt == 250.0
        assert record.is_up is True
        assert record.quality_publishers == 0

    async def test_nulls_coerced(self, mock_store):
        mock_store.fetch.return_value = [
            _record_row(privacy_score=None, avg_rtt_read=None, total_events=None, current_status=None)
        ]
        (record,) = await fetch_relay_records(mock_store)
        assert record.privacy == 0.0
        assert record.avg_rtt == 0.0
        assert record.total_events == 0
        assert record.is_up is None

    async def test_invalid_rows_skipped(self, mock_store):
        mock_store.fetch.return_value = [
            _record_row("wss://bad.example", overall_score=float("nan")),
            _record_row("wss://good.example"),
        ]
        records = await fetch_relay_records(mock_store)
        assert [r.url for r in records] == ["wss://good.example"]

    async def test_unrestricted_query(self, mock_store):
        mock_store.fetch.return_value = []
        await fetch_relay_records(mock_store)
        query, *args = mock_store.fetch.call_args.args
        assert "FROM relay_recommendations" in query
        assert "ANY" not in query
        assert args == []

    async def test_restricted_query(self, mock_store):
        mock_store.fetch.return_value = []
        await fetch_relay_records(mock_store, ("wss://a.example", "wss://b.example"))
        query, urls = mock_store.fetch.call_args.args
        assert "ANY($1::text[])" in query
        assert urls == ["wss://a.example", "wss://b.example"]

    async def test_empty_urls_skip_query(self, mock_store):
        assert await fetch_relay_records(mock_store, []) == []
        mock_store.fetch.assert_not_called()


class TestFetchDiscoveryCandidates:
    """fetch_discovery_candidates()."""

    async def test_maps_publisher_columns(self, mock_store):
        mock_store.fetch.return_value = [
            _record_row(quality_publishers=7, avg_publisher_influence=Decimal("4.25"))
        ]
        (record,) = await fetch_discovery_candidates(mock_store)
        assert record.quality_publishers == 7
        assert record.avg_publisher_influence == 4.25

    async def test_min_influence(self, mock_store):
        mock_store.fetch.return_value = []
        await fetch_discovery_candidates(mock_store)
        assert mock_store.fetch.call_args.args[1] == DEFAULT_MIN_PUBLISHER_INFLUENCE
        await fetch_discovery_candidates(mock_store, min_influence=5.0)
        assert mock_store.fetch.call_args.args[1] == 5.0


class TestFetchHealthRecords:
    """fetch_health_records()."""

    async def test_maps_rows(self, mock_store):
        mock_store.fetch.return_value = [
            {"url": "wss://a.example", "uptime_percentage": 0.5, "avg_rtt_read": None, "current_status": False},
            {"url": "wss://b.example", "uptime_percentage": "bogus", "avg_rtt_read": 1, "current_status": True},
        ]
        records = await fetch_health_records(mock_store)
        assert len(records) == 1
        assert records[0].uptime == 0.5
        assert records[0].avg_rtt == 0.0
        assert records[0].is_up is False


# ============================================================================
# Social Graph
# ============================================================================


class TestSocialQueries:
    """Followed pubkeys, publisher weights, user relays."""

    async def test_followed_pubkeys(self, mock_store):
        mock_store.fetch.return_value = [{"followed": "a" * 64}, {"followed": "b" * 64}]
        result = await fetch_followed_pubkeys(mock_store, "c" * 64, 1000)
        assert result == ["a" * 64, "b" * 64]
        assert mock_store.fetch.call_args.args[1:] == ("c" * 64, 1000)

    async def test_publisher_weights(self, mock_store):
        mock_store.fetch.return_value = [
            {
                "relay_url": "wss://a.example",
                "pubkey": "a" * 64,
                "publisher_influence": Decimal("3.5"),
                "weighted_contribution": None,
            }
        ]
        (weight,) = await fetch_publisher_weights(mock_store, ["a" * 64])
        assert weight.influence == 3.5
        assert weight.contribution == 0.0
        assert mock_store.fetch.call_args.args[1] == ["a" * 64]

    async def test_publisher_weights_empty(self, mock_store):
        assert await fetch_publisher_weights(mock_store, []) == []
        mock_store.fetch.assert_not_called()

    async def test_user_relays(self, mock_store):
        mock_store.fetch.return_value = [{"relay_url": "wss://a.example"}, {"relay_url": "wss://b.example"}]
        assert await fetch_user_relays(mock_store, "a" * 64) == ["wss://a.example", "wss://b.example"]
        assert mock_store.fetch.call_args.args[2] == 10

    @pytest.mark.parametrize("limit", [1, 25])
    async def test_user_relays_limit(self, mock_store, limit):
        mock_store.fetch.return_value = []
        await fetch_user_relays(mock_store, "a" * 64, limit=limit)
        assert mock_store.fetch.call_args.args[2] == limit
