"""
Configuration for the Whale Position Monitor

All settings in one place for easy tuning. Values come from the environment
(a .env file in the project root is loaded first) and are validated at startup.
"""

import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError

_PROJECT_ROOT = Path(__file__).parent.parent


@dataclass
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------
    # Tick period for a full pass over the tracked addresses
    poll_interval_ms: int = 10_000

    # -------------------------------------------------------------------------
    # Thresholds (USD notional)
    # -------------------------------------------------------------------------
    # Positions below this are recorded in history but never produce events
    min_position_size_usd: float = 50_000

    # Events below this are logged but not sent as alerts
    whale_threshold_usd: float = 100_000

    # Aggregate notional a multi-member liquidation cluster needs to be alerted
    cluster_alert_threshold_usd: float = 250_000

    # -------------------------------------------------------------------------
    # Alert Windows (seconds)
    # -------------------------------------------------------------------------
    # Minimum time between two alerts with the same dedup key
    alert_cooldown_sec: float = 300

    # Fixed window, anchored at the first liquidation, for grouping an asset's liquidations
    cluster_window_sec: float = 30

    # Mark price within this % of the liq price on vanishing counts as a liquidation
    liquidation_buffer_pct: float = 0.25

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    hyperliquid_url: str = "https://api.hyperliquid.xyz/info"

    # Hyperliquid has strict rate limits - keep concurrency low
    max_concurrent_requests: int = 5
    request_delay_sec: float = 0.1
    request_timeout_sec: float = 10.0
    rate_limit_backoff_sec: float = 2.0
    max_retries: int = 2

    # Refresh realized PnL / win rate from fills every N ticks
    stats_refresh_ticks: int = 30

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------
    delivery_timeout_sec: float = 10.0
    delivery_retry_backoff_sec: float = 1.0
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # Storage / HTTP / Logging
    # -------------------------------------------------------------------------
    db_path: Path = field(default_factory=lambda: _PROJECT_ROOT / "data" / "whales.db")
    http_host: str = "0.0.0.0"
    http_port: int = 3000
    log_level: str = "INFO"
    log_file: str = "logs/monitor.log"

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @classmethod
    def from_env(cls, env: Optional[dict] = None, load_env_file: bool = True) -> "Config":
        """
        Build a validated Config from environment variables.

        Args:
            env: Mapping to read from (default: os.environ)
            load_env_file: Load <project root>/.env before reading os.environ

        Returns:
            Validated Config

        Raises:
            ConfigError: If a value is not a number or fails validation
        """
        if env is None:
            if load_env_file:
                env_path = _PROJECT_ROOT / ".env"
                if env_path.exists():
                    load_dotenv(env_path)
            env = os.environ

        kwargs = {}
        for f in fields(cls):
            env_name = _ENV_NAMES.get(f.name, f.name.upper())
            raw = env.get(env_name)
            if raw is None or raw == "":
                continue
            kwargs[f.name] = _coerce(f.name, env_name, raw)

        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self):
        """Check every tunable, raising ConfigError on the first bad one."""
        positive = [
            "poll_interval_ms",
            "whale_threshold_usd",
            "cluster_alert_threshold_usd",
            "alert_cooldown_sec",
            "cluster_window_sec",
            "max_concurrent_requests",
            "request_timeout_sec",
            "delivery_timeout_sec",
            "stats_refresh_ticks",
        ]
        for name in positive:
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ConfigError(f"{name} must be > 0 (got {value!r})")

        non_negative = [
            "min_position_size_usd",
            "liquidation_buffer_pct",
            "request_delay_sec",
            "rate_limit_backoff_sec",
            "max_retries",
            "delivery_retry_backoff_sec",
        ]
        for name in non_negative:
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigError(f"{name} must be >= 0 (got {value!r})")

        if not 0 < self.http_port < 65536:
            raise ConfigError(f"http_port out of range (got {self.http_port})")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Unknown log level: {self.log_level}")


# Env var names that differ from the upper-cased field name
_ENV_NAMES = {
    "hyperliquid_url": "HYPERLIQUID_API_URL",
    "http_host": "HOST",
    "http_port": "PORT",
}

_INT_FIELDS = {
    "poll_interval_ms", "max_concurrent_requests", "max_retries",
    "stats_refresh_ticks", "http_port",
}
_FLOAT_FIELDS = {
    "min_position_size_usd", "whale_threshold_usd", "cluster_alert_threshold_usd",
    "alert_cooldown_sec", "cluster_window_sec", "liquidation_buffer_pct",
    "request_delay_sec", "request_timeout_sec", "rate_limit_backoff_sec",
    "delivery_timeout_sec", "delivery_retry_backoff_sec",
}


def _coerce(name: str, env_name: str, raw: str):
    """Convert a raw env string to the field's type."""
    try:
        if name in _INT_FIELDS:
            return int(float(raw))
        if name in _FLOAT_FIELDS:
            return float(raw)
    except ValueError:
        raise ConfigError(f"{env_name} must be numeric (got {raw!r})") from None
    if name == "db_path":
        return Path(raw)
    return raw
