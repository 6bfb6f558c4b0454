"""Network-wide relay health summary."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relayshadow.models.recommendation import HealthSummary


if TYPE_CHECKING:
    from collections.abc import Iterable

    from relayshadow.models.records import RelayRecord


HEALTHY_MIN_UPTIME = 0.9
HEALTHY_MAX_LATENCY_MS = 1500.0
UNHEALTHY_MAX_UPTIME = 0.8
UNHEALTHY_MIN_LATENCY_MS = 2000.0


def is_healthy(record: RelayRecord) -> bool:
    return (
        record.is_up is True
        and record.uptime > HEALTHY_MIN_UPTIME
        and record.avg_rtt < HEALTHY_MAX_LATENCY_MS
    )


def is_unhealthy(record: RelayRecord) -> bool:
    return (
        record.is_up is False
        or record.uptime < UNHEALTHY_MAX_UPTIME
        or record.avg_rtt > UNHEALTHY_MIN_LATENCY_MS
    )


def summarize_health(records: Iterable[RelayRecord]) -> HealthSummary:
    """Count healthy and unhealthy relays and average uptime (percent) and latency (ms).

    A relay can be neither healthy nor unhealthy.
    """
    items = list(records)
    if not items:
        return HealthSummary()
    return HealthSummary(
        total_relays=len(items),
        healthy_relays=sum(1 for r in items if is_healthy(r)),
        unhealthy_relays=sum(1 for r in items if is_unhealthy(r)),
        average_uptime=sum(r.uptime * 100.0 for r in items) / len(items),
        average_latency=sum(r.avg_rtt for r in items) / len(items),
    )
