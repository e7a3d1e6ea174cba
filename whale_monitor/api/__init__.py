"""
API Package
===========

External API client for Hyperliquid.
"""

from .hyperliquid import AccountState, HyperliquidClient, parse_account_state

__all__ = [
    "AccountState",
    "HyperliquidClient",
    "parse_account_state",
]
