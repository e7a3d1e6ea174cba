"""
Alert Dispatcher
================

Formats events and clusters into compact HTML alerts, hands them to the
notification channel and records the outcome in the alert log.

Alert layout (two or three lines):
    🟢 BTC LONG OPEN | $1.2M
    @ $97,250 | Liq $88,100 | <a href="...">0xabc1...7890</a>
"""

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional, Protocol
from zoneinfo import ZoneInfo

from ..errors import DeliveryFailed, StoreUnavailable
from ..models import AlertItem, Cluster, DispatchResult, EventKind, PositionEvent

if TYPE_CHECKING:
    from ..db.alert_log import AlertLog

# Timezone for alert timestamps
EASTERN_TZ = ZoneInfo("America/New_York")

logger = logging.getLogger(__name__)

# Members listed in a cluster alert
MAX_CLUSTER_LINES = 10

EVENT_EMOJI = {
    EventKind.OPEN: "🟢",
    EventKind.INCREASE: "📈",
    EventKind.REDUCE: "📉",
    EventKind.CLOSE: "⚪",
    EventKind.LIQUIDATION: "💥",
}
CLUSTER_EMOJI = "🔥"


class Channel(Protocol):
    def send(self, text: str) -> int: ...


# -----------------------------------------------------------------------------
# Formatting helpers
# -----------------------------------------------------------------------------

def format_value(value: float) -> str:
    """USD notional as $1.2M / $850K."""
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    return f"${value / 1_000:.0f}K"


def format_price(p: Optional[float]) -> str:
    if p is None:
        return "n/a"
    if p >= 1000:
        return f"${p:,.0f}"
    elif p >= 1:
        return f"${p:.2f}"
    else:
        return f"${p:.6f}"


def address_link(address: str) -> str:
    hypurrscan_url = f"https://hypurrscan.io/address/{address}"
    addr_display = f"{address[:6]}...{address[-4:]}"
    return f"<a href=\"{hypurrscan_url}\">{addr_display}</a>"


def _time_line(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(EASTERN_TZ).strftime("%H:%M:%S ET")


def format_event(event: PositionEvent) -> str:
    emoji = EVENT_EMOJI[event.kind]
    side = event.side.upper()
    lines = [
        f"{emoji} <b>{event.asset}</b> {side} {event.kind.value} | {format_value(event.notional)}",
    ]

    detail = f"@ {format_price(event.price)}"
    if event.kind in (EventKind.INCREASE, EventKind.REDUCE) and event.change_pct is not None:
        detail += f" | {event.change_pct:+.1f}% size"
    if event.liquidation_px and event.kind != EventKind.CLOSE:
        detail += f" | Liq {format_price(event.liquidation_px)}"
    detail += f" | {address_link(event.address)}"
    lines.append(detail)

    if event.liquidation_unconfirmed:
        lines.append("<i>Liquidation unconfirmed (no mark or liq price)</i>")

    lines.append(_time_line(event.timestamp))
    return "\n".join(lines)


def format_cluster(cluster: Cluster) -> str:
    members = sorted(cluster.events, key=lambda e: e.notional, reverse=True)
    lines = [
        f"{CLUSTER_EMOJI} <b>{cluster.asset}</b> LIQUIDATION CLUSTER | {format_value(cluster.total_notional)}",
        f"{len(cluster.events)} liquidations in {cluster.span_seconds:.0f}s "
        f"({cluster.long_count}L / {cluster.short_count}S)",
    ]
    for e in members[:MAX_CLUSTER_LINES]:
        side_str = "L" if e.side == "long" else "S"
        lines.append(f"• {side_str} {format_value(e.notional)} @ {format_price(e.price)} | {address_link(e.address)}")
    if len(members) > MAX_CLUSTER_LINES:
        lines.append(f"... and {len(members) - MAX_CLUSTER_LINES} more")

    lines.append(_time_line(cluster.window_start))
    return "\n".join(lines)


def format_alert(item: AlertItem) -> str:
    if isinstance(item, Cluster):
        return format_cluster(item)
    return format_event(item)


# -----------------------------------------------------------------------------
# Dispatcher
# -----------------------------------------------------------------------------

class AlertDispatcher:
    """
    Delivers alerts with one bounded retry.

    dispatch() never raises: a second channel failure is logged and
    reported in the DispatchResult.
    """

    def __init__(
        self,
        channel: Channel,
        alert_log: Optional["AlertLog"] = None,
        retry_backoff_sec: float = 1.0,
    ):
        self.channel = channel
        self.alert_log = alert_log
        self.retry_backoff_sec = retry_backoff_sec

    def dispatch(self, item: AlertItem) -> DispatchResult:
        message = format_alert(item)
        result = self._deliver(message)

        if result.delivered:
            logger.info(f"Dispatched {_describe(item)} (attempts={result.attempts})")
        else:
            logger.error(f"Dropped {_describe(item)} after {result.attempts} attempts: {result.error}")

        if self.alert_log is not None:
            try:
                self.alert_log.record_alert(item, result)
            except StoreUnavailable as e:
                logger.error(f"Failed to record alert outcome: {e}")

        return result

    def dispatch_many(self, items: List[AlertItem]) -> List[DispatchResult]:
        return [self.dispatch(item) for item in items]

    def _deliver(self, message: str) -> DispatchResult:
        error = None
        for attempt in (1, 2):
            try:
                message_id = self.channel.send(message)
                return DispatchResult(
                    delivered=True,
                    attempts=attempt,
                    message=message,
                    message_id=message_id,
                )
            except DeliveryFailed as e:
                error = str(e) or "delivery failed"
                if attempt == 1:
                    logger.warning(f"Delivery failed ({error}), retrying in {self.retry_backoff_sec:.1f}s")
                    time.sleep(self.retry_backoff_sec)
            except Exception as e:
                # Channel bug, not a transport failure: no retry
                logger.error(f"Unexpected channel error: {type(e).__name__}")
                return DispatchResult(
                    delivered=False,
                    attempts=attempt,
                    message=message,
                    error=type(e).__name__,
                )

        return DispatchResult(delivered=False, attempts=2, message=message, error=error)


def _describe(item: AlertItem) -> str:
    if isinstance(item, Cluster):
        return f"CLUSTER {item.asset} ({len(item.events)} liquidations)"
    return f"{item.kind.value} {item.asset} {item.address[:10]}..."
