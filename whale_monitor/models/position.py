"""
Position Models
===============

Dataclasses for position data polled from Hyperliquid and stored locally.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

LONG = "long"
SHORT = "short"
SIDES = (LONG, SHORT)


def position_key(address: str, asset: str) -> str:
    """Unique key for a position (address + asset)."""
    return f"{address}:{asset}"


@dataclass
class RawSnapshot:
    """One polled observation of an address's position in one asset."""
    address: str
    asset: str
    side: str  # "long" or "short"; size carries no sign
    size: float
    entry_price: float
    leverage: Optional[float]
    liquidation_px: Optional[float]
    mark_price: Optional[float]
    timestamp: datetime
    position_value: Optional[float] = None  # Exchange-reported notional, if any

    @property
    def key(self) -> str:
        return position_key(self.address, self.asset)

    @property
    def price(self) -> float:
        """Best available price: mark, falling back to entry."""
        if self.mark_price:
            return self.mark_price
        return self.entry_price

    @property
    def notional(self) -> float:
        if self.position_value is not None:
            return abs(self.position_value)
        return abs(self.size * self.price)

    @property
    def is_flat(self) -> bool:
        return self.size == 0

    @classmethod
    def flat(
        cls,
        address: str,
        asset: str,
        side: str,
        timestamp: datetime,
        mark_price: Optional[float] = None,
    ) -> "RawSnapshot":
        """Zero-size snapshot for a position missing from a fresh account state."""
        return cls(
            address=address,
            asset=asset,
            side=side,
            size=0.0,
            entry_price=0.0,
            leverage=None,
            liquidation_px=None,
            mark_price=mark_price,
            timestamp=timestamp,
            position_value=0.0,
        )


@dataclass
class Position:
    """Current open position for one (address, asset) pair."""
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    leverage: Optional[float]
    notional: float
    liquidation_px: Optional[float]
    mark_price: Optional[float]
    updated_at: datetime

    @property
    def key(self) -> str:
        return position_key(self.address, self.asset)

    @classmethod
    def from_snapshot(cls, snapshot: RawSnapshot) -> "Position":
        return cls(
            address=snapshot.address,
            asset=snapshot.asset,
            side=snapshot.side,
            size=snapshot.size,
            entry_price=snapshot.entry_price,
            leverage=snapshot.leverage,
            notional=snapshot.notional,
            liquidation_px=snapshot.liquidation_px,
            mark_price=snapshot.mark_price,
            updated_at=snapshot.timestamp,
        )


@dataclass
class PositionSnapshot:
    """Immutable history row of a position's state at one poll tick."""
    address: str
    asset: str
    side: str
    size: float
    entry_price: float
    leverage: Optional[float]
    notional: float
    liquidation_px: Optional[float]
    mark_price: Optional[float]
    created_at: datetime
