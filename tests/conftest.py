"""Pytest configuration and fixtures."""

import pytest

from whale_monitor.config import Config
from whale_monitor.db import AlertLog, SnapshotStore, WhaleDB


@pytest.fixture
def config(tmp_path) -> Config:
    """Config with small thresholds and no delays."""
    return Config(
        min_position_size_usd=1_000,
        whale_threshold_usd=5_000,
        cluster_alert_threshold_usd=10_000,
        alert_cooldown_sec=300,
        cluster_window_sec=30,
        liquidation_buffer_pct=0.25,
        request_delay_sec=0,
        request_timeout_sec=1.0,
        delivery_retry_backoff_sec=0,
        db_path=tmp_path / "whales.db",
    )


@pytest.fixture
def store(config) -> SnapshotStore:
    return SnapshotStore(config.db_path)


@pytest.fixture
def whale_db(config) -> WhaleDB:
    return WhaleDB(config.db_path)


@pytest.fixture
def alert_log(config) -> AlertLog:
    return AlertLog(config.db_path)


@pytest.fixture
def whale_address() -> str:
    return "0x" + "ab" * 20


@pytest.fixture
def other_address() -> str:
    return "0x" + "cd" * 20
