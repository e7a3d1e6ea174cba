"""
Alerts Package
==============

Deduplication, formatting and delivery of position alerts.
"""

from .dedup import AlertDeduplicator
from .dispatcher import AlertDispatcher, format_alert, format_price, format_value
from .telegram import ChannelConfig, TelegramChannel

__all__ = [
    "AlertDeduplicator",
    "AlertDispatcher",
    "format_alert",
    "format_price",
    "format_value",
    "ChannelConfig",
    "TelegramChannel",
]
