"""
Telegram Channel
================

Thin sender for the Telegram Bot API. Formatting lives in the dispatcher;
this module only delivers text and reports failure as DeliveryFailed.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests

from ..config import Config
from ..errors import ConfigError, DeliveryFailed

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

# 1 second between any messages (Telegram limit: 30/sec per bot, 1/sec per chat)
MIN_MESSAGE_INTERVAL_SECONDS = 1.0

# Fake message id returned in dry-run mode
DRY_RUN_MESSAGE_ID = 999999


@dataclass
class ChannelConfig:
    """Configuration for message sending."""
    bot_token: Optional[str]
    chat_id: Optional[str]
    dry_run: bool = False
    timeout_sec: float = 10.0
    max_message_length: int = 4000
    min_message_interval: float = MIN_MESSAGE_INTERVAL_SECONDS


class TelegramChannel:
    """
    Telegram message sender.

    Sends HTML-formatted text and returns the Telegram message id.
    Any failure raises DeliveryFailed; the bot token never appears in logs.
    """

    def __init__(self, config: ChannelConfig):
        self.config = config
        self._validate()

        self._last_message_time: float = 0
        self._send_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, dry_run: bool = False) -> "TelegramChannel":
        """Build a channel from app config; dry run if Telegram isn't configured."""
        if not dry_run and not config.telegram_configured:
            logger.warning(
                "Telegram not configured (set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID), "
                "alerts will be logged only"
            )
            dry_run = True

        return cls(ChannelConfig(
            bot_token=config.telegram_bot_token,
            chat_id=config.telegram_chat_id,
            dry_run=dry_run,
            timeout_sec=config.delivery_timeout_sec,
        ))

    def _validate(self):
        """Validate configuration."""
        if not self.config.dry_run:
            if not self.config.bot_token:
                raise ConfigError("TELEGRAM_BOT_TOKEN is required (or use --dry-run)")
            if not self.config.chat_id:
                raise ConfigError("TELEGRAM_CHAT_ID is required (or use --dry-run)")

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def _enforce_message_interval(self):
        """Enforce minimum interval between messages."""
        elapsed = time.time() - self._last_message_time
        if elapsed < self.config.min_message_interval:
            time.sleep(self.config.min_message_interval - elapsed)

    def _truncate_message(self, text: str) -> str:
        """Truncate message to Telegram's character limit."""
        if len(text) > self.config.max_message_length:
            return text[:self.config.max_message_length - 20] + "\n... (truncated)"
        return text

    def send(self, text: str, chat_id: Optional[str] = None) -> int:
        """
        Send a message via the Telegram Bot API.

        Args:
            text: Message text (HTML formatted)
            chat_id: Override the configured chat (webhook replies)

        Returns:
            message_id of the sent message

        Raises:
            DeliveryFailed: On timeout, HTTP error or a malformed response
        """
        text = self._truncate_message(text)

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would send Telegram message:\n{text}")
            return DRY_RUN_MESSAGE_ID

        url = f"{TELEGRAM_API_URL}/bot{self.config.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id or self.config.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        with self._send_lock:
            self._enforce_message_interval()
            try:
                response = requests.post(url, json=payload, timeout=self.config.timeout_sec)
                response.raise_for_status()
                self._last_message_time = time.time()
                result = response.json()
            except requests.exceptions.Timeout:
                logger.error("Telegram request timed out")
                raise DeliveryFailed("timeout") from None
            except requests.exceptions.HTTPError as e:
                # Log status code without exposing token in URL
                status_code = e.response.status_code if e.response is not None else "unknown"
                logger.error(f"Telegram HTTP error: {status_code}")
                if status_code == 429:
                    logger.warning("Telegram rate limit hit (429) - backing off")
                raise DeliveryFailed(f"HTTP {status_code}") from None
            except requests.exceptions.ConnectionError:
                logger.error("Telegram connection error - network issue")
                raise DeliveryFailed("connection error") from None
            except requests.exceptions.RequestException:
                # Generic request error - don't log exception details which may contain URL/token
                logger.error("Telegram request failed")
                raise DeliveryFailed("request failed") from None
            except ValueError:
                logger.error("Telegram returned a non-JSON response")
                raise DeliveryFailed("malformed response") from None

        message_id = (result.get("result") or {}).get("message_id")
        if not result.get("ok", True) or message_id is None:
            logger.error("Telegram response missing message_id")
            raise DeliveryFailed("no message_id in response")

        logger.info(f"Telegram alert sent successfully (message_id: {message_id})")
        return message_id
