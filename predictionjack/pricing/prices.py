"""
Injectable USD price service.

One ``PriceProvider`` is owned by the session and handed to whatever needs
USD figures; there is no module-level price cache. ETH/USD comes from the
Alchemy prices API, token/ETH from a one-token pool quote. A failed refresh
keeps the previous prices.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from ..chain.errors import ChainError
from ..chain.models import PoolKey
from ..chain.reader import ChainReader
from .model import WEI_PER_ETH, usd_value

logger = logging.getLogger(__name__)

ALCHEMY_PRICES_URL = "https://api.g.alchemy.com/prices/v1/{key}/tokens/by-symbol"
TIMEOUT = 15.0
DEFAULT_REFRESH_INTERVAL = 10.0


@dataclass(frozen=True)
class PriceQuote:
    eth_usd: Optional[Decimal] = None
    token_eth: Optional[Decimal] = None  # ETH per whole token
    updated_at: Optional[float] = None

    @property
    def token_usd(self) -> Optional[Decimal]:
        if self.eth_usd is None or self.token_eth is None:
            return None
        return self.eth_usd * self.token_eth


class PriceProvider:

    def __init__(
        self,
        reader: Optional[ChainReader] = None,
        alchemy_api_key: Optional[str] = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.reader = reader
        self.alchemy_api_key = alchemy_api_key
        self.refresh_interval = refresh_interval
        self._client = client
        self._owns_client = client is None
        self._pool_key: Optional[PoolKey] = None
        self._quote = PriceQuote()
        self._task: Optional[asyncio.Task] = None

    @property
    def quote(self) -> PriceQuote:
        return self._quote

    @property
    def eth_usd(self) -> Optional[Decimal]:
        return self._quote.eth_usd

    @property
    def token_usd(self) -> Optional[Decimal]:
        return self._quote.token_usd

    # ── Sources ──────────────────────────────────────────────────────

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=TIMEOUT)
        return self._client

    async def fetch_eth_usd(self) -> Optional[Decimal]:
        """ETH/USD from Alchemy, or ``None`` without a key or on a bad payload."""
        if not self.alchemy_api_key:
            return None
        client = await self._get_client()
        url = ALCHEMY_PRICES_URL.format(key=self.alchemy_api_key)
        resp = await client.get(url, params={"symbols": "ETH"})
        resp.raise_for_status()
        data = resp.json().get("data") or []
        if not data:
            return None
        for price in data[0].get("prices") or []:
            if str(price.get("currency", "")).lower() == "usd":
                try:
                    return Decimal(str(price["value"]))
                except (InvalidOperation, KeyError):
                    return None
        return None

    async def fetch_token_eth(self) -> Optional[Decimal]:
        """ETH received for selling one whole token into the pool."""
        if self.reader is None:
            return None
        if self._pool_key is None:
            self._pool_key = await self.reader.get_pool_key()
        wei_out = await self.reader.quote_exact_input(self._pool_key, False, WEI_PER_ETH)
        if wei_out <= 0:
            return None
        return Decimal(wei_out).scaleb(-18)

    # ── Refresh loop ─────────────────────────────────────────────────

    async def refresh(self) -> PriceQuote:
        """Refresh both legs; each keeps its old value if its source fails."""
        eth_usd, token_eth = self._quote.eth_usd, self._quote.token_eth
        try:
            eth_usd = await self.fetch_eth_usd() or eth_usd
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("ETH/USD refresh failed: %s", e)
        try:
            token_eth = await self.fetch_token_eth() or token_eth
        except ChainError as e:
            logger.warning("Token/ETH refresh failed: %s", e)
        self._quote = PriceQuote(eth_usd=eth_usd, token_eth=token_eth, updated_at=time.time())
        return self._quote

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception as e:
                logger.error("Price refresh error: %s", e)
            await asyncio.sleep(self.refresh_interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="price-provider")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ── Helpers ──────────────────────────────────────────────────────

    def eth_to_usd(self, wei: int) -> Optional[Decimal]:
        return usd_value(wei, self.eth_usd)

    def token_to_usd(self, amount: int, decimals: int = 18) -> Optional[Decimal]:
        return usd_value(amount, self.token_usd, decimals)
