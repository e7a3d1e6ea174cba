"""
Monitor Service

Main polling loop. Each tick:
1. Refreshes mid prices
2. Fetches account state for every tracked whale (concurrently)
3. Feeds each position snapshot through the diff engine
4. Routes LIQUIDATION events through the cluster detector
5. Dedups and dispatches alerts without blocking the loop
6. Periodically refreshes whale PnL stats from fills
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from ..alerts.dedup import AlertDeduplicator
from ..alerts.dispatcher import AlertDispatcher
from ..api.hyperliquid import AccountState, HyperliquidClient
from ..config import Config
from ..db.alert_log import AlertLog
from ..db.snapshot_store import SnapshotStore
from ..db.whale_db import WhaleDB
from ..errors import InvalidSnapshot, StoreUnavailable, UpstreamTimeout
from ..models import AlertItem, Cluster, EventKind, PositionEvent, RawSnapshot, alert_notional
from .clusters import ClusterDetector
from .diff_engine import PositionDiffEngine
from .whale_stats import compute_fill_stats

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Summary of one poll tick."""
    addresses: int = 0
    polled: int = 0
    skipped: int = 0
    events: int = 0
    alerts: int = 0


class WhaleMonitor:
    """
    Fixed-interval poller for tracked whale positions.

    The diff engine and sqlite work run in worker threads; alert delivery
    runs as tasks so a slow channel never holds up the tick.
    """

    def __init__(
        self,
        config: Config,
        client: HyperliquidClient,
        whale_db: WhaleDB,
        store: SnapshotStore,
        alert_log: AlertLog,
        dispatcher: AlertDispatcher,
        dedup: Optional[AlertDeduplicator] = None,
        engine: Optional[PositionDiffEngine] = None,
        clusters: Optional[ClusterDetector] = None,
    ):
        self.config = config
        self.client = client
        self.whale_db = whale_db
        self.store = store
        self.alert_log = alert_log
        self.dispatcher = dispatcher
        self.dedup = dedup or AlertDeduplicator(config.alert_cooldown_sec)
        self.engine = engine or PositionDiffEngine(store, config)
        self.clusters = clusters or ClusterDetector(
            config.cluster_window_sec,
            config.cluster_alert_threshold_usd,
            on_finalize=self._on_cluster_finalized,
        )

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._inflight: Set[asyncio.Task] = set()
        self._tick_count = 0
        self._account_values: Dict[str, float] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self):
        """Poll until stop() or SIGINT/SIGTERM."""
        logger.info("=" * 60)
        logger.info("WHALE MONITOR STARTING")
        logger.info("=" * 60)
        logger.info(f"Poll interval: {self.config.poll_interval_sec:.1f}s")
        logger.info(f"Min position size: ${self.config.min_position_size_usd:,.0f}")
        logger.info(f"Whale alert threshold: ${self.config.whale_threshold_usd:,.0f}")
        logger.info(f"Cluster window: {self.config.cluster_window_sec:.0f}s")

        loop = asyncio.get_running_loop()
        self._running = True
        self._stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                pass

        try:
            while self._running:
                started = loop.time()
                try:
                    result = await self.tick()
                    logger.info(
                        f"Tick {self._tick_count}: {result.polled}/{result.addresses} polled, "
                        f"{result.skipped} skipped, {result.events} events, {result.alerts} alerts"
                    )
                except StoreUnavailable as e:
                    logger.error(f"Store unavailable, retrying next tick: {e}")
                except Exception as e:
                    logger.error(f"Error in main loop: {e}", exc_info=True)

                delay = max(0.0, self.config.poll_interval_sec - (loop.time() - started))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.shutdown()

    def stop(self):
        """Ask the loop to finish after the current tick."""
        logger.info("Stop requested")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def shutdown(self):
        """Flush open clusters, wait for deliveries and close the client."""
        logger.info("Shutting down monitor...")
        for item in self.clusters.flush():
            self._route_alert(item)
        await self.drain()
        await self.client.close()
        logger.info("=" * 60)
        logger.info("WHALE MONITOR STOPPED")
        logger.info("=" * 60)

    async def drain(self):
        """Wait for every in-flight delivery."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """Run one full pass over the tracked whales."""
        now = now or datetime.now(timezone.utc)
        self._tick_count += 1
        result = TickResult()

        addresses = await asyncio.to_thread(self.whale_db.get_addresses)
        result.addresses = len(addresses)
        if not addresses:
            logger.debug("No whales tracked yet")
            return result

        try:
            prices = await asyncio.wait_for(
                self.client.get_mark_prices(), timeout=self.config.request_timeout_sec
            )
        except (asyncio.TimeoutError, UpstreamTimeout):
            logger.warning("Mid price fetch timed out, using position values")
            prices = {}

        outcomes = await asyncio.gather(
            *(self._poll_address(address, prices, now) for address in addresses),
            return_exceptions=True,
        )

        for address, outcome in zip(addresses, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Unexpected error polling {address[:10]}...: {outcome!r}")
                result.skipped += 1
            elif outcome is None:
                result.skipped += 1
            else:
                result.polled += 1
                result.events += len(outcome)
                for event in outcome:
                    if self._route_event(event):
                        result.alerts += 1

        # Clusters whose window closed without a timer firing (no running callback)
        for item in self.clusters.expire(now):
            if self._route_alert(item):
                result.alerts += 1

        if (self._tick_count - 1) % self.config.stats_refresh_ticks == 0:
            await self.refresh_stats(addresses)

        await self.drain()
        return result

    async def _poll_address(
        self,
        address: str,
        prices: Dict[str, float],
        now: datetime,
    ) -> Optional[List[PositionEvent]]:
        """Fetch and process one address. Returns None when skipped this tick."""
        try:
            state = await self._fetch_state(address, prices, now)
        except UpstreamTimeout as e:
            logger.warning(f"Skipping {address[:10]}... this tick: {e}")
            return None

        if state is None:
            logger.warning(f"No account state for {address[:10]}..., skipping this tick")
            return None

        try:
            return await asyncio.to_thread(self._apply_state, state, prices)
        except StoreUnavailable as e:
            logger.error(f"Store unavailable for {address[:10]}..., retrying next tick: {e}")
            return None

    async def _fetch_state(
        self,
        address: str,
        prices: Dict[str, float],
        now: datetime,
    ) -> Optional[AccountState]:
        try:
            return await asyncio.wait_for(
                self.client.get_account_state(address, prices, now),
                timeout=self.config.request_timeout_sec,
            )
        except asyncio.TimeoutError:
            raise UpstreamTimeout(f"clearinghouseState timed out after {self.config.request_timeout_sec}s") from None

    def _apply_state(self, state: AccountState, prices: Dict[str, float]) -> List[PositionEvent]:
        """Diff an account state against the store. Runs in a worker thread."""
        snapshots: List[RawSnapshot] = list(state.snapshots)

        # Stored positions missing from the fresh state have gone flat
        live_assets = set(state.assets)
        for position in self.store.get_positions_for_address(state.address):
            if position.asset not in live_assets:
                snapshots.append(RawSnapshot.flat(
                    address=state.address,
                    asset=position.asset,
                    side=position.side,
                    timestamp=state.timestamp,
                    mark_price=prices.get(position.asset),
                ))

        events: List[PositionEvent] = []
        for snapshot in snapshots:
            try:
                events.extend(self.engine.process(snapshot))
            except InvalidSnapshot as e:
                logger.warning(f"Invalid snapshot skipped: {e}")
            except StoreUnavailable as e:
                # Rolled back, so this key is retried next tick; earlier keys are committed
                logger.error(f"Store unavailable for {snapshot.key}, retrying next tick: {e}")

        for event in events:
            try:
                self.alert_log.record_event(event)
            except StoreUnavailable as e:
                logger.error(f"Failed to log {event.kind.value} event: {e}")

        try:
            self.whale_db.touch(state.address, state.account_value)
        except StoreUnavailable as e:
            logger.error(f"Failed to touch whale {state.address[:10]}...: {e}")
        self._account_values[state.address] = state.account_value
        return events

    # -------------------------------------------------------------------------
    # Alert routing
    # -------------------------------------------------------------------------

    def _route_event(self, event: PositionEvent) -> bool:
        if event.kind == EventKind.LIQUIDATION:
            item = self.clusters.absorb(event)
            if item is None:
                return False
            return self._route_alert(item)
        return self._route_alert(event)

    def _route_alert(self, item: AlertItem) -> bool:
        """Threshold, dedup, then queue for delivery. True if queued."""
        if not isinstance(item, Cluster) and alert_notional(item) < self.config.whale_threshold_usd:
            logger.debug(
                f"{item.kind.value} {item.asset} ${item.notional:,.0f} below alert threshold"
            )
            return False

        if not self.dedup.admit(item):
            return False

        self._spawn_delivery(item)
        return True

    def _on_cluster_finalized(self, item: AlertItem):
        """Cluster timer callback, runs on the event loop."""
        self._route_alert(item)

    def _spawn_delivery(self, item: AlertItem):
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.dispatcher.dispatch, item)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # -------------------------------------------------------------------------
    # Whale stats
    # -------------------------------------------------------------------------

    async def refresh_stats(self, addresses: List[str]):
        """Recompute realized PnL, win rate and ROI from fills."""
        logger.info(f"Refreshing stats for {len(addresses)} whales")

        async def refresh_one(address: str):
            try:
                fills = await asyncio.wait_for(
                    self.client.get_user_fills(address),
                    timeout=self.config.request_timeout_sec,
                )
            except (asyncio.TimeoutError, UpstreamTimeout):
                logger.warning(f"Fill fetch timed out for {address[:10]}...")
                return

            stats = compute_fill_stats(fills)
            account_value = self._account_values.get(address, 0.0)
            try:
                await asyncio.to_thread(
                    self.whale_db.update_stats,
                    address,
                    stats.realized_pnl,
                    stats.roi(account_value),
                    stats.win_rate,
                )
            except StoreUnavailable as e:
                logger.error(f"Failed to store stats for {address[:10]}...: {e}")

        results = await asyncio.gather(*(refresh_one(a) for a in addresses), return_exceptions=True)
        for address, outcome in zip(addresses, results):
            if isinstance(outcome, Exception):
                logger.error(f"Stats refresh failed for {address[:10]}...: {outcome!r}")
