"""
Reporting API

Read-only JSON endpoints over the alert log and whale registry, plus the
Telegram bot webhook.

Routes:
- GET  /api/alerts/big?limit=N
- GET  /api/followups?limit=N
- GET  /api/top-traders?limit=N
- GET  /api/health
- POST /api/telegram-webhook
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict
from typing import Optional

from aiohttp import web

from ..alerts.dispatcher import format_value
from ..alerts.telegram import TelegramChannel
from ..config import Config
from ..db.alert_log import AlertLog
from ..db.snapshot_store import SnapshotStore
from ..db.whale_db import WhaleDB
from ..errors import DeliveryFailed, StoreUnavailable

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 200

HELP_TEXT = """🐋 <b>Hyperliquid Whale Monitor</b>

Alerts when tracked whales open, resize, close or get liquidated.

<b>Commands:</b>
/status - Check monitoring status
/help - Show this help message"""


def parse_limit(request: web.Request) -> int:
    """Read ?limit=, clamped to 1..MAX_LIMIT. Raises ValueError if not an integer."""
    raw = request.query.get("limit")
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    limit = int(raw)
    return max(1, min(limit, MAX_LIMIT))


class WhaleMonitorWebApp:
    """aiohttp application for the reporting endpoints."""

    def __init__(
        self,
        config: Config,
        whale_db: WhaleDB,
        store: SnapshotStore,
        alert_log: AlertLog,
        channel: Optional[TelegramChannel] = None,
    ):
        self.config = config
        self.whale_db = whale_db
        self.store = store
        self.alert_log = alert_log
        self.channel = channel

        self.app = web.Application()
        self.setup_routes()

    def setup_routes(self):
        """Set up all application routes."""
        self.app.router.add_get("/api/health", self.health)
        self.app.router.add_get("/api/alerts/big", self.big_alerts)
        self.app.router.add_get("/api/followups", self.followups)
        self.app.router.add_get("/api/top-traders", self.top_traders)
        self.app.router.add_post("/api/telegram-webhook", self.telegram_webhook)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "timestamp": int(time.time() * 1000)})

    async def big_alerts(self, request: web.Request) -> web.Response:
        try:
            limit = parse_limit(request)
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)

        try:
            rows = await asyncio.to_thread(
                self.alert_log.recent_big, self.config.whale_threshold_usd, limit
            )
        except StoreUnavailable as e:
            logger.error(f"Big alerts query failed: {e}")
            return web.json_response({"error": "store unavailable"}, status=503)
        return web.json_response(rows)

    async def followups(self, request: web.Request) -> web.Response:
        try:
            limit = parse_limit(request)
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)

        try:
            rows = await asyncio.to_thread(
                self.alert_log.recent_followups, self.config.whale_threshold_usd, limit
            )
        except StoreUnavailable as e:
            logger.error(f"Followups query failed: {e}")
            return web.json_response({"error": "store unavailable"}, status=503)
        return web.json_response(rows)

    async def top_traders(self, request: web.Request) -> web.Response:
        try:
            limit = parse_limit(request)
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)

        try:
            whales = await asyncio.to_thread(self.whale_db.get_top_traders, limit)
        except StoreUnavailable as e:
            logger.error(f"Top traders query failed: {e}")
            return web.json_response({"error": "store unavailable"}, status=503)
        return web.json_response([asdict(w) for w in whales])

    # -------------------------------------------------------------------------
    # Telegram webhook
    # -------------------------------------------------------------------------

    async def telegram_webhook(self, request: web.Request) -> web.Response:
        """Handle bot commands. Always acknowledges with 200 OK."""
        try:
            update = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Webhook received malformed JSON")
            return web.Response(text="OK")

        try:
            message = update.get("message") if isinstance(update, dict) else None
            if not message:
                return web.Response(text="OK")

            chat_id = (message.get("chat") or {}).get("id")
            text = (message.get("text") or "").strip()
            command = text.split()[0].split("@")[0] if text else ""

            reply = None
            if command in ("/start", "/help"):
                reply = HELP_TEXT
            elif command == "/status":
                reply = await asyncio.to_thread(self._status_text)

            if reply and chat_id is not None and self.channel is not None:
                await asyncio.to_thread(self.channel.send, reply, str(chat_id))
        except DeliveryFailed as e:
            logger.error(f"Webhook reply failed: {e}")
        except Exception as e:
            logger.error(f"Webhook error: {type(e).__name__}: {e}")

        return web.Response(text="OK")

    def _status_text(self) -> str:
        whales = self.whale_db.get_stats()
        positions = self.store.get_stats()
        lines = [
            "📊 <b>Monitor Status</b>",
            f"Whales tracked: {whales.total_whales}",
            f"Open positions: {positions.total_positions} "
            f"({positions.long_count}L / {positions.short_count}S)",
            f"Open notional: {format_value(positions.total_notional)}",
            f"Alerts sent: {self.alert_log.count_alerts(delivered=True)}",
            f"Poll interval: {self.config.poll_interval_sec:.0f}s",
        ]
        return "\n".join(lines)


def create_app(
    config: Config,
    whale_db: WhaleDB,
    store: SnapshotStore,
    alert_log: AlertLog,
    channel: Optional[TelegramChannel] = None,
) -> web.Application:
    return WhaleMonitorWebApp(config, whale_db, store, alert_log, channel).app
