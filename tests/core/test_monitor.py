"""Tests for the poll loop, using a scripted exchange client."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List
from unittest.mock import MagicMock, patch

import pytest

from whale_monitor.alerts.dispatcher import AlertDispatcher
from whale_monitor.api.hyperliquid import AccountState
from whale_monitor.core.clusters import ClusterDetector
from whale_monitor.core.monitor import WhaleMonitor
from whale_monitor.errors import DeliveryFailed, StoreUnavailable
from whale_monitor.models import RawSnapshot

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClient:
    """Stands in for HyperliquidClient with scripted account states."""

    def __init__(self):
        self.prices: Dict[str, float] = {}
        self.positions: Dict[str, List[RawSnapshot]] = {}
        self.fills: Dict[str, List[dict]] = {}
        self.slow = set()
        self.closed = False

    async def get_mark_prices(self):
        return dict(self.prices)

    async def get_account_state(self, address, mark_prices=None, timestamp=None):
        if address in self.slow:
            await asyncio.sleep(5)
        return AccountState(
            address=address,
            account_value=1_000_000.0,
            timestamp=timestamp,
            snapshots=[replace(p, timestamp=timestamp) for p in self.positions.get(address, [])],
        )

    async def get_user_fills(self, address):
        return self.fills.get(address, [])

    async def close(self):
        self.closed = True


def position(address, size=100.0, asset="BTC", side="long", mark=100.0, liq=None):
    return RawSnapshot(
        address=address,
        asset=asset,
        side=side,
        size=size,
        entry_price=100.0,
        leverage=10.0,
        liquidation_px=liq,
        mark_price=mark,
        timestamp=T0,
    )


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def channel():
    channel = MagicMock()
    channel.send.return_value = 1
    return channel


@pytest.fixture
def monitor(config, client, whale_db, store, alert_log, channel, whale_address):
    whale_db.add_whale(whale_address)
    return WhaleMonitor(
        config=config,
        client=client,
        whale_db=whale_db,
        store=store,
        alert_log=alert_log,
        dispatcher=AlertDispatcher(channel, alert_log=alert_log, retry_backoff_sec=0),
        clusters=ClusterDetector(config.cluster_window_sec, config.cluster_alert_threshold_usd),
    )


def at(seconds):
    return T0 + timedelta(seconds=seconds)


def sent_texts(channel):
    return [c.args[0] for c in channel.send.call_args_list]


class TestTick:

    def test_open_then_close(self, monitor, client, channel, store, alert_log, whale_address):
        client.prices = {"BTC": 100.0}

        async def main():
            client.positions[whale_address] = [position(whale_address)]
            first = await monitor.tick(at(0))
            client.positions[whale_address] = []
            second = await monitor.tick(at(10))
            return first, second

        first, second = asyncio.run(main())

        assert (first.polled, first.events, first.alerts) == (1, 1, 1)
        assert (second.polled, second.events, second.alerts) == (1, 1, 1)
        texts = sent_texts(channel)
        assert "LONG OPEN" in texts[0]
        assert "LONG CLOSE" in texts[1]
        assert "Liquidation unconfirmed" in texts[1]
        assert store.get_position(whale_address, "BTC") is None
        assert alert_log.count_alerts(delivered=True) == 2
        assert [e["event_type"] for e in alert_log.get_events(whale_address)] == ["OPEN", "CLOSE"]

    def test_no_whales_is_a_quiet_tick(self, config, client, whale_db, store, alert_log, channel):
        monitor = WhaleMonitor(
            config, client, whale_db, store, alert_log,
            AlertDispatcher(channel, retry_backoff_sec=0),
        )

        result = asyncio.run(monitor.tick(at(0)))

        assert result.addresses == 0
        channel.send.assert_not_called()

    def test_small_events_are_logged_but_not_alerted(self, monitor, client, channel, alert_log, whale_address):
        # $2,000: above the tracking floor, below the alert threshold
        client.positions[whale_address] = [position(whale_address, size=20)]

        result = asyncio.run(monitor.tick(at(0)))

        assert result.events == 1
        assert result.alerts == 0
        channel.send.assert_not_called()
        assert len(alert_log.get_events(whale_address)) == 1

    def test_repeated_liquidations_alert_once(self, monitor, client, channel, whale_address):
        """Two liquidations of the same position inside the cooldown: one notification."""
        async def main():
            client.prices = {"BTC": 100.0}
            client.positions[whale_address] = [position(whale_address, liq=90.0)]
            await monitor.tick(at(0))

            client.prices = {"BTC": 90.0}
            client.positions[whale_address] = []
            await monitor.tick(at(10))

            client.prices = {"BTC": 100.0}
            client.positions[whale_address] = [position(whale_address, liq=90.0)]
            await monitor.tick(at(50))  # first window expires here

            client.prices = {"BTC": 90.0}
            client.positions[whale_address] = []
            await monitor.tick(at(60))

            await monitor.shutdown()

        asyncio.run(main())

        texts = sent_texts(channel)
        assert sum("LIQUIDATION" in t for t in texts) == 1
        assert sum("OPEN" in t for t in texts) == 1
        assert client.closed is True

    def test_liquidations_across_whales_form_a_cluster(
        self, monitor, client, channel, whale_db, whale_address, other_address
    ):
        whale_db.add_whale(other_address)

        async def main():
            client.prices = {"BTC": 100.0}
            client.positions[whale_address] = [position(whale_address, size=100, liq=90.0)]
            client.positions[other_address] = [position(other_address, size=80, liq=89.9)]
            await monitor.tick(at(0))

            client.prices = {"BTC": 90.0}
            client.positions = {}
            await monitor.tick(at(10))
            return await monitor.tick(at(40))

        result = asyncio.run(main())

        texts = sent_texts(channel)
        clusters = [t for t in texts if "LIQUIDATION CLUSTER" in t]
        assert len(clusters) == 1
        assert "2 liquidations" in clusters[0]
        assert result.alerts == 1

    def test_delivery_failure_is_isolated(self, monitor, client, channel, whale_db, alert_log,
                                          whale_address, other_address):
        whale_db.add_whale(other_address)
        client.positions[whale_address] = [position(whale_address)]
        client.positions[other_address] = [position(other_address)]
        failing_display = whale_address[:6]

        def send(text):
            if failing_display in text:
                raise DeliveryFailed("HTTP 400")
            return 1

        channel.send.side_effect = send

        result = asyncio.run(monitor.tick(at(0)))

        assert result.alerts == 2
        assert alert_log.count_alerts(delivered=True) == 1
        assert alert_log.count_alerts(delivered=False) == 1

    def test_slow_address_is_skipped(self, monitor, config, client, whale_db, store,
                                     whale_address, other_address):
        config.request_timeout_sec = 0.1
        whale_db.add_whale(other_address)
        client.slow.add(other_address)
        client.positions[whale_address] = [position(whale_address)]
        client.positions[other_address] = [position(other_address)]

        result = asyncio.run(monitor.tick(at(0)))

        assert (result.polled, result.skipped) == (1, 1)
        assert store.get_position(whale_address, "BTC") is not None
        assert store.get_position(other_address, "BTC") is None

    def test_invalid_snapshot_does_not_stop_the_address(self, monitor, client, store, whale_address):
        client.positions[whale_address] = [
            position(whale_address, size=-5, asset="ETH"),
            position(whale_address, asset="BTC"),
        ]

        result = asyncio.run(monitor.tick(at(0)))

        assert result.events == 1
        assert store.get_position(whale_address, "BTC") is not None
        assert store.get_position(whale_address, "ETH") is None

    def test_first_tick_refreshes_stats(self, monitor, client, whale_db, whale_address):
        client.fills[whale_address] = [
            {"coin": "BTC", "side": "B", "sz": "1", "px": "100", "fee": "0"},
            {"coin": "BTC", "side": "A", "sz": "1", "px": "110", "fee": "0"},
        ]

        asyncio.run(monitor.tick(at(0)))

        whale = whale_db.get_whale(whale_address)
        assert whale.total_pnl == pytest.approx(10)
        assert whale.win_rate == 100
        assert whale.account_value == 1_000_000


class TestStoreErrors:

    def test_committed_events_survive_a_later_store_failure(
        self, monitor, client, store, alert_log, channel, whale_address
    ):
        """BTC closes and is committed; ETH fails to write and closes on the next tick."""
        client.prices = {"BTC": 100.0, "ETH": 100.0}
        client.positions[whale_address] = [
            position(whale_address, asset="BTC"),
            position(whale_address, asset="ETH"),
        ]
        real_apply = store.apply

        def flaky_apply(snapshot):
            if snapshot.asset == "ETH":
                raise StoreUnavailable("database is locked")
            return real_apply(snapshot)

        async def main():
            await monitor.tick(at(0))
            client.positions[whale_address] = []
            with patch.object(store, "apply", side_effect=flaky_apply):
                failing = await monitor.tick(at(10))
            healthy = await monitor.tick(at(20))
            return failing, healthy

        failing, healthy = asyncio.run(main())

        assert (failing.polled, failing.events, failing.alerts) == (1, 1, 1)
        assert (healthy.polled, healthy.events, healthy.alerts) == (1, 1, 1)
        closes = [e["asset"] for e in alert_log.get_events(whale_address) if e["event_type"] == "CLOSE"]
        assert closes == ["BTC", "ETH"]
        assert store.get_positions_for_address(whale_address) == []
        assert sum("CLOSE" in t for t in sent_texts(channel)) == 2

    def test_touch_failure_keeps_events(self, monitor, client, whale_db, channel, whale_address):
        client.positions[whale_address] = [position(whale_address)]

        with patch.object(whale_db, "touch", side_effect=StoreUnavailable("disk I/O error")):
            result = asyncio.run(monitor.tick(at(0)))

        assert (result.polled, result.events, result.alerts) == (1, 1, 1)
        assert "LONG OPEN" in sent_texts(channel)[0]


class TestClusterTimer:

    def test_window_finalizes_without_another_tick(
        self, config, client, whale_db, store, alert_log, channel, whale_address, other_address
    ):
        config.cluster_window_sec = 0.2
        whale_db.add_whale(whale_address)
        whale_db.add_whale(other_address)
        monitor = WhaleMonitor(
            config, client, whale_db, store, alert_log,
            AlertDispatcher(channel, alert_log=alert_log, retry_backoff_sec=0),
        )

        async def main():
            client.prices = {"BTC": 100.0}
            client.positions[whale_address] = [position(whale_address, size=100, liq=90.0)]
            client.positions[other_address] = [position(other_address, size=80, liq=89.9)]
            await monitor.tick(datetime.now(timezone.utc) - timedelta(seconds=1))

            client.prices = {"BTC": 90.0}
            client.positions = {}
            liquidated = await monitor.tick(datetime.now(timezone.utc))

            await asyncio.sleep(0.5)
            await monitor.drain()
            return liquidated

        liquidated = asyncio.run(main())

        assert liquidated.events == 2
        assert liquidated.alerts == 0
        assert len(monitor.clusters) == 0
        clusters = [t for t in sent_texts(channel) if "LIQUIDATION CLUSTER" in t]
        assert len(clusters) == 1
        assert "2 liquidations" in clusters[0]


class TestRun:

    def test_run_until_stopped(self, monitor, config, client):
        config.poll_interval_ms = 20

        async def main():
            task = asyncio.create_task(monitor.run())
            await asyncio.sleep(0.2)
            monitor.stop()
            await asyncio.wait_for(task, timeout=5)

        asyncio.run(main())

        assert client.closed is True
