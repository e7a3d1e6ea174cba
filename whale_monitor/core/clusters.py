"""
Liquidation Cluster Detector

Groups LIQUIDATION events on the same asset that land inside a fixed window
into one cluster alert. The window is anchored at the first liquidation and
is never extended by later arrivals.

Per asset: Idle -> Accumulating -> Idle.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..models import AlertItem, Cluster, EventKind, PositionEvent

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    """An accumulating cluster for one asset."""
    start: datetime
    end: datetime
    events: List[PositionEvent] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


def _now_like(ts: datetime) -> datetime:
    """Wall clock in the same timezone flavor as ts."""
    if ts.tzinfo is None:
        return datetime.now()
    return datetime.now(timezone.utc)


class ClusterDetector:
    """
    Buffers liquidations per asset and releases either a Cluster or the lone
    event once the window closes.

    Expiry:
    - With a running event loop and an on_finalize callback, one call_later
      timer per open window finalizes it and hands the result to the callback
    - Otherwise callers drive expiry with expire(now)
    - flush() finalizes everything (shutdown)
    """

    def __init__(
        self,
        window_sec: float,
        alert_threshold_usd: float,
        on_finalize: Optional[Callable[[AlertItem], None]] = None,
    ):
        self.window = timedelta(seconds=window_sec)
        self.alert_threshold_usd = alert_threshold_usd
        self.on_finalize = on_finalize

        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    @property
    def open_assets(self) -> List[str]:
        with self._lock:
            return sorted(self._windows)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def absorb(self, event: PositionEvent) -> Optional[AlertItem]:
        """
        Add a liquidation to its asset's window.

        Returns:
            The result of a window this arrival closed (Cluster or lone event),
            or None while accumulating. Non-liquidation events pass straight through.
        """
        if event.kind != EventKind.LIQUIDATION:
            return event

        result = None
        with self._lock:
            window = self._windows.get(event.asset)

            if window is not None and event.timestamp < window.end:
                window.events.append(event)
                logger.debug(
                    f"Liquidation cluster {event.asset}: {len(window.events)} members"
                )
                return None

            if window is not None:
                del self._windows[event.asset]
                self._cancel_timer(window)
                result = self._finalize(event.asset, window)

            window = _Window(
                start=event.timestamp,
                end=event.timestamp + self.window,
                events=[event],
            )
            self._windows[event.asset] = window
            self._schedule_timer(event.asset, window)

        return result

    def expire(self, now: Optional[datetime] = None) -> List[AlertItem]:
        """Finalize every window whose end is at or before now."""
        results = []
        with self._lock:
            for asset in list(self._windows):
                window = self._windows[asset]
                current = now if now is not None else _now_like(window.start)
                if current < window.end:
                    continue
                del self._windows[asset]
                self._cancel_timer(window)
                result = self._finalize(asset, window)
                if result is not None:
                    results.append(result)
        return results

    def flush(self) -> List[AlertItem]:
        """Finalize all open windows regardless of time."""
        results = []
        with self._lock:
            for asset, window in list(self._windows.items()):
                self._cancel_timer(window)
                result = self._finalize(asset, window)
                if result is not None:
                    results.append(result)
            self._windows.clear()
        return results

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def _schedule_timer(self, asset: str, window: _Window):
        if self.on_finalize is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        elapsed = (_now_like(window.start) - window.start).total_seconds()
        delay = max(0.0, self.window.total_seconds() - elapsed)
        window.timer = loop.call_later(delay, self._on_timer, asset, window.start)

    def _cancel_timer(self, window: _Window):
        if window.timer is not None:
            window.timer.cancel()
            window.timer = None

    def _on_timer(self, asset: str, start: datetime):
        with self._lock:
            window = self._windows.get(asset)
            if window is None or window.start != start:
                return
            del self._windows[asset]
            window.timer = None
            result = self._finalize(asset, window)

        if result is not None:
            self.on_finalize(result)

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def _finalize(self, asset: str, window: _Window) -> Optional[AlertItem]:
        if len(window.events) == 1:
            return window.events[0]

        cluster = Cluster(
            asset=asset,
            window_start=window.start,
            window_end=window.end,
            events=sorted(window.events, key=lambda e: e.timestamp),
        )
        if cluster.total_notional < self.alert_threshold_usd:
            logger.debug(
                f"Discarding {asset} cluster: {len(cluster.events)} liquidations, "
                f"${cluster.total_notional:,.0f} below ${self.alert_threshold_usd:,.0f}"
            )
            return None

        logger.info(
            f"Liquidation cluster {asset}: {len(cluster.events)} liquidations, "
            f"${cluster.total_notional:,.0f} in {cluster.span_seconds:.0f}s"
        )
        return cluster
