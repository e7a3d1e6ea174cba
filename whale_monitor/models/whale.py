"""
Whale Models
============

Dataclasses for tracked accounts.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Whale:
    """A tracked account from the whale registry."""
    address: str
    first_seen: str
    last_updated: str
    source: Optional[str]  # "manual", "leaderboard", ...
    roi: float = 0.0
    total_pnl: float = 0.0
    win_rate: float = 0.0
    account_value: float = 0.0
