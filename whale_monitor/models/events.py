"""
Event Models
============

Classified lifecycle events, liquidation clusters and dispatch outcomes.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union


class EventKind(Enum):
    """Lifecycle transition of a position."""
    OPEN = "OPEN"
    INCREASE = "INCREASE"
    REDUCE = "REDUCE"
    CLOSE = "CLOSE"
    LIQUIDATION = "LIQUIDATION"


# Alert type used for cluster rows in the alert log and dedup keys
CLUSTER_TYPE = "CLUSTER"


def size_bucket(notional: float) -> int:
    """Order-of-magnitude bucket for a USD notional ($250K -> 5, $3M -> 6)."""
    if notional is None or not math.isfinite(notional) or notional < 1:
        return 0
    return int(math.floor(math.log10(notional)))


@dataclass
class PositionEvent:
    """A classified transition for one (address, asset) pair."""
    kind: EventKind
    address: str
    asset: str
    side: str
    size_delta: float  # Signed change in size (negative for reduce/close)
    notional: float
    price: Optional[float]
    timestamp: datetime
    previous_size: float = 0.0
    size: float = 0.0
    liquidation_px: Optional[float] = None
    liquidation_unconfirmed: bool = False  # CLOSE where liquidation couldn't be ruled in or out

    @property
    def change_pct(self) -> Optional[float]:
        if not self.previous_size:
            return None
        return self.size_delta / self.previous_size * 100

    @property
    def dedup_key(self) -> Tuple[str, str, str, int]:
        return (self.address, self.asset, self.kind.value, size_bucket(self.notional))


@dataclass
class Cluster:
    """LIQUIDATION events on one asset inside a fixed time window."""
    asset: str
    window_start: datetime
    window_end: datetime
    events: List[PositionEvent] = field(default_factory=list)

    @property
    def total_notional(self) -> float:
        return sum(e.notional for e in self.events)

    @property
    def addresses(self) -> List[str]:
        seen = []
        for e in self.events:
            if e.address not in seen:
                seen.append(e.address)
        return seen

    @property
    def long_count(self) -> int:
        return sum(1 for e in self.events if e.side == "long")

    @property
    def short_count(self) -> int:
        return sum(1 for e in self.events if e.side == "short")

    @property
    def span_seconds(self) -> float:
        if not self.events:
            return 0.0
        return (self.events[-1].timestamp - self.events[0].timestamp).total_seconds()

    @property
    def dedup_key(self) -> Tuple[str, str, str, int]:
        return ("*", self.asset, CLUSTER_TYPE, size_bucket(self.total_notional))


# Anything that can flow through dedup and dispatch
AlertItem = Union[PositionEvent, Cluster]


def alert_type(item: AlertItem) -> str:
    """Alert log type for an item (event kind or CLUSTER)."""
    if isinstance(item, Cluster):
        return CLUSTER_TYPE
    return item.kind.value


def alert_notional(item: AlertItem) -> float:
    if isinstance(item, Cluster):
        return item.total_notional
    return item.notional


@dataclass
class DispatchResult:
    """Outcome of handing one alert to the notification channel."""
    delivered: bool
    attempts: int
    message: str
    message_id: Optional[int] = None
    error: Optional[str] = None
