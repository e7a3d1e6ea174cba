"""
Hyperliquid Whale Position Monitor
==================================

Polls tracked accounts, classifies position changes into lifecycle events,
groups liquidation bursts and sends deduplicated Telegram alerts.
"""

__version__ = "0.1.0"
