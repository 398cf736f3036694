from __future__ import annotations

import logging
import time

import httpx

from sniper_bot.constants import WSOL_MINT
from sniper_bot.core.models import PriceQuote
from sniper_bot.utils.retry import async_retry


class StaticPriceOracle:
    """In-memory prices (SOL per token); used for paper replays and tests."""

    def __init__(self, prices: dict[str, float] | None = None, max_age_sec: float | None = None) -> None:
        self._prices: dict[str, PriceQuote] = {}
        self.max_age_sec = max_age_sec
        for asset_id, price in (prices or {}).items():
            self.set_price(asset_id, price)

    def set_price(self, asset_id: str, price: float, ts: float | None = None) -> None:
        self._prices[asset_id] = PriceQuote(asset_id, price, ts if ts is not None else time.time(), "static")

    def forget(self, asset_id: str) -> None:
        self._prices.pop(asset_id, None)

    async def current_price(self, asset_id: str) -> PriceQuote | None:
        quote = self._prices.get(asset_id)
        if quote is None:
            return None
        if self.max_age_sec is not None and time.time() - quote.ts > self.max_age_sec:
            return None
        return quote


class JupiterPriceOracle:
    """Jupiter Price API client; USD prices converted to SOL via the WSOL quote."""

    def __init__(self, api_url: str, timeout_sec: float = 10.0, max_age_sec: float = 15.0) -> None:
        self.api_url = api_url.rstrip("/")
        self.max_age_sec = max_age_sec
        self.logger = logging.getLogger("sniper_bot.jupiter_price")
        self._cache: dict[str, PriceQuote] = {}
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_sec, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=5),
        )

    async def close(self) -> None:
        await self._client.aclose()

    @async_retry(max_attempts=2, delay=0.3, exceptions=(httpx.TransportError,))
    async def _fetch(self, ids: list[str]) -> dict:
        response = await self._client.get(self.api_url, params={"ids": ",".join(ids)})
        response.raise_for_status()
        return response.json()

    async def current_price(self, asset_id: str) -> PriceQuote | None:
        wsol = str(WSOL_MINT)
        try:
            data = await self._fetch([asset_id, wsol])
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("Jupiter price fetch failed for %s: %s", asset_id[:8], exc)
            return self._cached(asset_id)

        # Response format: {"<mint>": {"usdPrice": 0.123, ...}}
        token_usd = _usd_price(data.get(asset_id))
        sol_usd = _usd_price(data.get(wsol))
        if token_usd is None or not sol_usd:
            return self._cached(asset_id)

        quote = PriceQuote(asset_id, token_usd / sol_usd, time.time(), "jupiter")
        self._cache[asset_id] = quote
        return quote

    def _cached(self, asset_id: str) -> PriceQuote | None:
        quote = self._cache.get(asset_id)
        if quote and time.time() - quote.ts <= self.max_age_sec:
            return quote
        return None


def _usd_price(entry: object) -> float | None:
    if not isinstance(entry, dict):
        return None
    try:
        price = float(entry.get("usdPrice"))
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None
