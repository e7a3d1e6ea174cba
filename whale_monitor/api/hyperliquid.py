"""
Hyperliquid API Client

Single responsibility: communicate with the Hyperliquid /info endpoint.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import Config
from ..errors import UpstreamTimeout
from ..models import LONG, SHORT, RawSnapshot

logger = logging.getLogger(__name__)


@dataclass
class AccountState:
    """One address's clearinghouse state at one poll tick."""
    address: str
    account_value: float
    timestamp: datetime
    snapshots: List[RawSnapshot] = field(default_factory=list)

    @property
    def assets(self) -> List[str]:
        return [s.asset for s in self.snapshots]


class HyperliquidClient:
    """
    Async client for Hyperliquid API.

    Handles:
    - Fetching account state (positions) for a single address
    - Fetching mark prices
    - Fetching user fills for PnL stats
    - Rate limiting and retries
    """

    def __init__(self, config: Config):
        self.url = config.hyperliquid_url
        self.max_concurrent = config.max_concurrent_requests
        self.request_delay = config.request_delay_sec
        self.request_timeout = config.request_timeout_sec
        self.rate_limit_backoff = config.rate_limit_backoff_sec
        self.max_retries = config.max_retries
        self._session: Optional[aiohttp.ClientSession] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        """Create session and semaphore if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, payload: dict, retries: int = None) -> Optional[Any]:
        """
        Make a request to the Hyperliquid API with retry logic.

        Args:
            payload: JSON payload to send
            retries: Number of retries (default from config)

        Returns:
            JSON response or None on failure

        Raises:
            UpstreamTimeout: If the request timed out
        """
        await self._ensure_session()
        retries = retries if retries is not None else self.max_retries

        for attempt in range(retries + 1):
            try:
                async with self._semaphore:
                    async with self._session.post(
                        self.url,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                    ) as response:
                        if response.status == 429:
                            # Rate limited - back off
                            backoff = self.rate_limit_backoff * (2 ** attempt)
                            logger.warning(f"Rate limited, backing off {backoff}s")
                            await asyncio.sleep(backoff)
                            continue

                        if response.status != 200:
                            logger.error(f"API error {response.status}: {await response.text()}")
                            return None

                        result = await response.json()

                    # Delay after the request completes but still inside the semaphore
                    await asyncio.sleep(self.request_delay)

                    return result

            except asyncio.TimeoutError:
                raise UpstreamTimeout(f"{payload.get('type')} timed out after {self.request_timeout}s") from None
            except aiohttp.ClientError as e:
                logger.error(f"Request error (attempt {attempt + 1}): {e}")
                if attempt < retries:
                    await asyncio.sleep(self.rate_limit_backoff)
                continue

        return None

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def get_mark_prices(self) -> Dict[str, float]:
        """
        Get current mid prices for all perps.

        Returns:
            Dict mapping asset symbol to price
        """
        response = await self._request({"type": "allMids"})
        if not response:
            return {}

        # Response is a dict: {"BTC": "95000.5", "ETH": "3500.2", ...}
        prices = {}
        for token, price_str in response.items():
            try:
                prices[token] = float(price_str)
            except (ValueError, TypeError):
                continue

        return prices

    async def get_account_state(
        self,
        address: str,
        mark_prices: Optional[Dict[str, float]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[AccountState]:
        """
        Get all open positions for a single address.

        Args:
            address: Account address (0x...)
            mark_prices: Mid prices from get_mark_prices(), used as mark price
            timestamp: Tick timestamp stamped on every snapshot (default: now)

        Returns:
            AccountState, or None if the request failed
        """
        response = await self._request({"type": "clearinghouseState", "user": address})
        if response is None:
            return None

        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        return parse_account_state(response, address, timestamp, mark_prices or {})

    async def get_user_fills(self, address: str) -> List[dict]:
        """Recent fills for an address, oldest first."""
        response = await self._request({"type": "userFills", "user": address})
        if not response:
            return []
        return sorted(response, key=lambda f: f.get("time", 0))


# =============================================================================
# Parsing
# =============================================================================

def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def parse_account_state(
    response: dict,
    address: str,
    timestamp: datetime,
    mark_prices: Dict[str, float],
) -> AccountState:
    """Parse a clearinghouseState response into an AccountState."""
    snapshots = []

    for item in response.get("assetPositions", []):
        pos_data = item.get("position", {})
        if not pos_data:
            continue

        try:
            coin = pos_data.get("coin", "")
            szi = float(pos_data.get("szi", 0))
            if szi == 0:
                continue

            side = LONG if szi > 0 else SHORT
            size = abs(szi)

            entry_price = float(pos_data.get("entryPx") or 0)
            position_value = _to_float(pos_data.get("positionValue"))
            liquidation_px = _to_float(pos_data.get("liquidationPx"))

            # Leverage info
            leverage_info = pos_data.get("leverage", {})
            if isinstance(leverage_info, dict):
                leverage = _to_float(leverage_info.get("value"))
            else:
                leverage = _to_float(leverage_info)

            # Mark price - mid if we have it, otherwise estimate from position value
            mark_price = mark_prices.get(coin)
            if mark_price is None and position_value:
                mark_price = abs(position_value) / size

            snapshots.append(RawSnapshot(
                address=address,
                asset=coin,
                side=side,
                size=size,
                entry_price=entry_price,
                leverage=leverage,
                liquidation_px=liquidation_px,
                mark_price=mark_price,
                timestamp=timestamp,
                position_value=position_value,
            ))

        except (ValueError, TypeError, KeyError) as e:
            logger.debug(f"Error parsing position for {address}: {e}")
            continue

    margin = response.get("marginSummary") or {}
    try:
        account_value = float(margin.get("accountValue") or 0)
    except (ValueError, TypeError):
        account_value = 0.0

    return AccountState(
        address=address,
        account_value=account_value,
        timestamp=timestamp,
        snapshots=snapshots,
    )
