"""Tests for realized PnL from fills."""

import pytest

from whale_monitor.core.whale_stats import compute_fill_stats


def fill(coin, side, sz, px, fee=0):
    return {"coin": coin, "side": side, "sz": str(sz), "px": str(px), "fee": str(fee)}


class TestComputeFillStats:

    def test_long_round_trip(self):
        stats = compute_fill_stats([
            fill("BTC", "B", 1, 100),
            fill("BTC", "A", 1, 110),
        ])

        assert stats.realized_pnl == pytest.approx(10)
        assert stats.trades == 2
        assert stats.closing_trades == 1
        assert stats.win_rate == 100

    def test_short_round_trip_with_fees(self):
        stats = compute_fill_stats([
            fill("ETH", "A", 2, 3_000, fee=1),
            fill("ETH", "B", 2, 2_900, fee=1),
        ])

        # 2 * (2900 - 3000) * -1 = 200, minus both fees
        assert stats.realized_pnl == pytest.approx(198)

    def test_average_entry_across_adds(self):
        stats = compute_fill_stats([
            fill("SOL", "B", 1, 100),
            fill("SOL", "B", 1, 200),
            fill("SOL", "A", 2, 140),
        ])

        # avg entry 150, exit 140
        assert stats.realized_pnl == pytest.approx(-20)
        assert stats.win_rate == 0

    def test_partial_close(self):
        stats = compute_fill_stats([
            fill("BTC", "B", 2, 100),
            fill("BTC", "A", 1, 120),
            fill("BTC", "A", 1, 80),
        ])

        assert stats.realized_pnl == pytest.approx(0)
        assert stats.closing_trades == 2
        assert stats.win_rate == 50

    def test_malformed_fills_are_skipped(self):
        stats = compute_fill_stats([{"coin": "BTC"}, fill("BTC", "B", "x", 100)])

        assert stats.trades == 0
        assert stats.realized_pnl == 0

    def test_roi(self):
        stats = compute_fill_stats([
            fill("BTC", "B", 1, 100),
            fill("BTC", "A", 1, 150),
        ])

        assert stats.roi(1_000) == pytest.approx(5)
        assert stats.roi(0) == 0
