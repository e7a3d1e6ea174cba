"""
Position Diff Engine

Compares each freshly polled snapshot with the stored position for the same
(address, asset) and classifies the transition:

- absent -> open          OPEN
- same side, bigger       INCREASE
- same side, smaller      REDUCE
- open -> flat            CLOSE, or LIQUIDATION if mark price sat at the liq price
- long <-> short          CLOSE of the old side, then OPEN of the new side

Every accepted snapshot is written to history exactly once, even when no
event fires. A snapshot whose (address, asset, timestamp) is already in
history is a replay and is ignored entirely.
"""

import logging
import math
import threading
from typing import Dict, List, Optional

from ..config import Config
from ..db.snapshot_store import SnapshotStore
from ..errors import InvalidSnapshot
from ..models import SIDES, EventKind, Position, PositionEvent, RawSnapshot

logger = logging.getLogger(__name__)

# Sizes within this relative tolerance are treated as unchanged
SIZE_REL_TOL = 1e-9


def validate_snapshot(snapshot: RawSnapshot):
    """Raise InvalidSnapshot if the snapshot can't be classified."""
    if not snapshot.address or not snapshot.asset:
        raise InvalidSnapshot("Snapshot is missing address or asset")

    if snapshot.side not in SIDES:
        raise InvalidSnapshot(f"Unknown side {snapshot.side!r} for {snapshot.key}")

    if snapshot.size is None or not math.isfinite(snapshot.size) or snapshot.size < 0:
        raise InvalidSnapshot(f"Invalid size {snapshot.size!r} for {snapshot.key}")

    prices = {
        "entry_price": snapshot.entry_price,
        "mark_price": snapshot.mark_price,
        "liquidation_px": snapshot.liquidation_px,
    }
    for name, value in prices.items():
        if value is None and name != "entry_price":
            continue
        if value is None or not math.isfinite(value) or value < 0:
            raise InvalidSnapshot(f"Invalid {name} {value!r} for {snapshot.key}")


class PositionDiffEngine:
    """
    Classifies snapshots into lifecycle events and applies them to the store.

    Calls for the same key are serialized: the per-key lock is held across
    read -> classify -> apply.
    """

    def __init__(self, store: SnapshotStore, config: Config):
        self.store = store
        self.min_position_size_usd = config.min_position_size_usd
        self.liquidation_buffer = config.liquidation_buffer_pct / 100

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def process(self, current: RawSnapshot) -> List[PositionEvent]:
        """
        Classify a snapshot against the stored position and record it.

        Args:
            current: Freshly polled snapshot (size 0 means the position is gone)

        Returns:
            Events in emission order (empty for no change or a replay)

        Raises:
            InvalidSnapshot: Malformed snapshot; the store is not touched
            StoreUnavailable: The store could not be read or written
        """
        validate_snapshot(current)

        with self._lock_for(current.key):
            if self.store.snapshot_exists(current.address, current.asset, current.timestamp):
                logger.debug(f"Replay of {current.key} @ {current.timestamp.isoformat()}, skipping")
                return []

            previous = self.store.get_position(current.address, current.asset)
            events = self.classify(previous, current)

            if not self.store.apply(current):
                logger.debug(f"{current.key} @ {current.timestamp.isoformat()} already recorded")
                return []

        for event in events:
            logger.debug(
                f"{event.kind.value} {event.asset} {event.side} {event.address[:10]}... "
                f"${event.notional:,.0f}"
            )
        return events

    def classify(
        self,
        previous: Optional[Position],
        current: RawSnapshot,
    ) -> List[PositionEvent]:
        """Pure transition classification. Does not touch the store."""
        validate_snapshot(current)

        if previous is None:
            if current.is_flat:
                return []
            if current.notional < self.min_position_size_usd:
                return []
            return [self._open_event(current)]

        if not self._tracked(previous, current):
            return []

        if current.is_flat:
            return [self._close_event(previous, current)]

        if current.side != previous.side:
            close = self._close_event(previous, current, check_liquidation=False)
            events = [close]
            if current.notional >= self.min_position_size_usd:
                events.append(self._open_event(current))
            return events

        if math.isclose(current.size, previous.size, rel_tol=SIZE_REL_TOL):
            return []

        kind = EventKind.INCREASE if current.size > previous.size else EventKind.REDUCE
        return [PositionEvent(
            kind=kind,
            address=current.address,
            asset=current.asset,
            side=current.side,
            size_delta=current.size - previous.size,
            notional=current.notional,
            price=current.price,
            timestamp=current.timestamp,
            previous_size=previous.size,
            size=current.size,
            liquidation_px=current.liquidation_px,
        )]

    # -------------------------------------------------------------------------
    # Private Helpers
    # -------------------------------------------------------------------------

    def _tracked(self, previous: Position, current: RawSnapshot) -> bool:
        """Non-OPEN events need either side of the transition above the size floor."""
        return max(previous.notional, current.notional) >= self.min_position_size_usd

    def _open_event(self, current: RawSnapshot) -> PositionEvent:
        return PositionEvent(
            kind=EventKind.OPEN,
            address=current.address,
            asset=current.asset,
            side=current.side,
            size_delta=current.size,
            notional=current.notional,
            price=current.price,
            timestamp=current.timestamp,
            previous_size=0.0,
            size=current.size,
            liquidation_px=current.liquidation_px,
        )

    def _close_event(
        self,
        previous: Position,
        current: RawSnapshot,
        check_liquidation: bool = True,
    ) -> PositionEvent:
        mark = current.mark_price or previous.mark_price
        liq = previous.liquidation_px

        kind = EventKind.CLOSE
        unconfirmed = False
        if check_liquidation:
            if not mark or not liq:
                unconfirmed = True
            elif self._at_liquidation(previous.side, mark, liq):
                kind = EventKind.LIQUIDATION

        price = mark or previous.entry_price
        notional = previous.size * price if price else previous.notional

        return PositionEvent(
            kind=kind,
            address=previous.address,
            asset=previous.asset,
            side=previous.side,
            size_delta=-previous.size,
            notional=notional,
            price=price,
            timestamp=current.timestamp,
            previous_size=previous.size,
            size=0.0,
            liquidation_px=liq,
            liquidation_unconfirmed=unconfirmed,
        )

    def _at_liquidation(self, side: str, mark: float, liq: float) -> bool:
        """Whether mark price is at (or through) the liq price, within the buffer."""
        if side == "long":
            return mark <= liq * (1 + self.liquidation_buffer)
        return mark >= liq * (1 - self.liquidation_buffer)
