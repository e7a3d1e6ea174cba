"""Tests for alert deduplication."""

from datetime import datetime, timezone

import pytest

from whale_monitor.alerts.dedup import AlertDeduplicator
from whale_monitor.models import Cluster, EventKind, PositionEvent

ADDRESS = "0x" + "aa" * 20
TS = datetime(2025, 3, 1, tzinfo=timezone.utc)


def event(kind=EventKind.LIQUIDATION, notional=250_000, address=ADDRESS, asset="BTC"):
    return PositionEvent(
        kind=kind,
        address=address,
        asset=asset,
        side="long",
        size_delta=-1.0,
        notional=notional,
        price=100.0,
        timestamp=TS,
    )


@pytest.fixture
def dedup():
    return AlertDeduplicator(cooldown_sec=300)


class TestAdmit:

    def test_repeat_within_cooldown_is_suppressed(self, dedup):
        assert dedup.admit(event(), now=1_000) is True
        assert dedup.admit(event(), now=1_100) is False

    def test_repeat_after_cooldown_is_admitted(self, dedup):
        assert dedup.admit(event(), now=1_000) is True
        assert dedup.admit(event(), now=1_300) is True

    def test_suppressed_repeat_does_not_extend_cooldown(self, dedup):
        dedup.admit(event(), now=1_000)
        dedup.admit(event(), now=1_200)

        assert dedup.admit(event(), now=1_300) is True

    def test_same_bucket_is_a_duplicate(self, dedup):
        assert dedup.admit(event(notional=200_000), now=0) is True
        assert dedup.admit(event(notional=900_000), now=1) is False

    def test_different_bucket_is_not_a_duplicate(self, dedup):
        assert dedup.admit(event(notional=200_000), now=0) is True
        assert dedup.admit(event(notional=2_000_000), now=1) is True

    def test_kind_asset_and_address_are_part_of_key(self, dedup):
        assert dedup.admit(event(), now=0)
        assert dedup.admit(event(kind=EventKind.CLOSE), now=0)
        assert dedup.admit(event(asset="ETH"), now=0)
        assert dedup.admit(event(address="0x" + "bb" * 20), now=0)

    def test_clusters_share_a_wildcard_address(self, dedup):
        a = Cluster(asset="BTC", window_start=TS, window_end=TS, events=[event(address="0x1"), event(address="0x2")])
        b = Cluster(asset="BTC", window_start=TS, window_end=TS, events=[event(address="0x3"), event(address="0x4")])

        assert dedup.admit(a, now=0) is True
        assert dedup.admit(b, now=10) is False


class TestPurge:

    def test_stale_entries_are_purged(self, dedup):
        dedup.admit(event(asset="BTC"), now=0)
        dedup.admit(event(asset="ETH"), now=100)
        assert len(dedup) == 2

        dedup.admit(event(asset="SOL"), now=350)

        assert len(dedup) == 2  # BTC expired, ETH and SOL remain

    def test_clear(self, dedup):
        dedup.admit(event(), now=0)
        dedup.clear()

        assert len(dedup) == 0
        assert dedup.admit(event(), now=1) is True
