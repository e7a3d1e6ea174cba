"""Tests for the liquidation cluster detector."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from whale_monitor.core.clusters import ClusterDetector
from whale_monitor.models import Cluster, EventKind, PositionEvent

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def liquidation(
    t: float,
    address: str = "0x" + "11" * 20,
    asset: str = "ETH",
    notional: float = 6_000,
    side: str = "long",
    ts: datetime = None,
) -> PositionEvent:
    return PositionEvent(
        kind=EventKind.LIQUIDATION,
        address=address,
        asset=asset,
        side=side,
        size_delta=-1.0,
        notional=notional,
        price=3_000.0,
        timestamp=ts or T0 + timedelta(seconds=t),
        previous_size=1.0,
        size=0.0,
    )


@pytest.fixture
def detector():
    return ClusterDetector(window_sec=30, alert_threshold_usd=10_000)


class TestWindowing:

    def test_arrivals_inside_window_accumulate(self, detector):
        assert detector.absorb(liquidation(0)) is None
        assert detector.absorb(liquidation(10)) is None
        assert len(detector) == 1

    def test_window_is_anchored_at_first_arrival(self, detector):
        """Liquidations at 0s, 10s and 40s: a cluster of two, then the third alone."""
        first = liquidation(0, address="0x" + "01" * 20)
        second = liquidation(10, address="0x" + "02" * 20)
        third = liquidation(40, address="0x" + "03" * 20)

        assert detector.absorb(first) is None
        assert detector.absorb(second) is None
        result = detector.absorb(third)

        assert isinstance(result, Cluster)
        assert result.events == [first, second]
        assert result.total_notional == 12_000
        assert result.window_start == first.timestamp
        assert result.window_end == first.timestamp + timedelta(seconds=30)

        assert detector.flush() == [third]

    def test_arrival_at_window_end_starts_new_window(self, detector):
        first = liquidation(0)
        detector.absorb(first)

        result = detector.absorb(liquidation(30))

        assert result is first
        assert len(detector) == 1

    def test_assets_have_separate_windows(self, detector):
        detector.absorb(liquidation(0, asset="ETH"))
        detector.absorb(liquidation(5, asset="BTC"))

        assert detector.open_assets == ["BTC", "ETH"]

    def test_non_liquidation_passes_through(self, detector):
        event = liquidation(0)
        event.kind = EventKind.CLOSE

        assert detector.absorb(event) is event
        assert len(detector) == 0


class TestFinalization:

    def test_single_member_finalizes_to_lone_event(self, detector):
        event = liquidation(0)
        detector.absorb(event)

        assert detector.expire(T0 + timedelta(seconds=29)) == []
        assert detector.expire(T0 + timedelta(seconds=30)) == [event]
        assert len(detector) == 0

    def test_small_cluster_is_discarded(self, detector):
        detector.absorb(liquidation(0, notional=2_000))
        detector.absorb(liquidation(5, notional=3_000))

        assert detector.expire(T0 + timedelta(seconds=31)) == []
        assert len(detector) == 0

    def test_cluster_side_breakdown(self, detector):
        detector.absorb(liquidation(0, side="long", notional=8_000))
        detector.absorb(liquidation(3, side="short", notional=8_000))
        detector.absorb(liquidation(6, side="long", notional=8_000))

        (cluster,) = detector.flush()

        assert cluster.long_count == 2
        assert cluster.short_count == 1
        assert cluster.span_seconds == 6

    def test_flush_empties_all_windows(self, detector):
        detector.absorb(liquidation(0, asset="ETH"))
        detector.absorb(liquidation(0, asset="SOL"))

        results = detector.flush()

        assert len(results) == 2
        assert len(detector) == 0


class TestTimers:

    def test_timer_finalizes_without_further_input(self):
        finalized = []

        async def main():
            detector = ClusterDetector(
                window_sec=0.05,
                alert_threshold_usd=10_000,
                on_finalize=finalized.append,
            )
            event = liquidation(0, ts=datetime.now(timezone.utc))
            assert detector.absorb(event) is None
            await asyncio.sleep(0.3)
            return event, len(detector)

        event, remaining = asyncio.run(main())

        assert finalized == [event]
        assert remaining == 0

    def test_no_timer_without_callback(self):
        async def main():
            detector = ClusterDetector(window_sec=0.01, alert_threshold_usd=10_000)
            detector.absorb(liquidation(0, ts=datetime.now(timezone.utc)))
            await asyncio.sleep(0.05)
            return len(detector)

        assert asyncio.run(main()) == 1
