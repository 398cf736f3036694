from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from sniper_bot.core.log_classifier import ClassificationResult, LogBatch
from sniper_bot.core.models import PoolEnrichment


def _float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _txn_count(pair: dict[str, Any]) -> int | None:
    txns = pair.get("txns")
    if not isinstance(txns, dict):
        return None
    window = txns.get("h24") or txns.get("h1") or txns.get("m5")
    if not isinstance(window, dict):
        return None
    return int((_float(window.get("buys")) or 0) + (_float(window.get("sells")) or 0))


def enrichment_from_pairs(pairs: list[dict[str, Any]]) -> PoolEnrichment:
    """Market data from the deepest DexScreener pair; empty when none is listed yet."""
    pairs = [p for p in pairs if isinstance(p, dict)]
    if not pairs:
        return PoolEnrichment()
    pair = max(pairs, key=lambda p: _float((p.get("liquidity") or {}).get("usd")) or 0.0)

    info = pair.get("info") or {}
    socials = {str(s.get("type", "")).lower() for s in info.get("socials") or [] if isinstance(s, dict)}
    market_cap = _float(pair.get("marketCap"))
    if market_cap is None:
        market_cap = _float(pair.get("fdv"))

    return PoolEnrichment(
        symbol=str((pair.get("baseToken") or {}).get("symbol") or ""),
        initial_liquidity_usd=_float((pair.get("liquidity") or {}).get("usd")),
        initial_market_cap_usd=market_cap,
        has_website=bool(info.get("websites")),
        has_twitter="twitter" in socials,
        has_telegram="telegram" in socials,
        transaction_count=_txn_count(pair),
    )


class DexScreenerEnricher:
    """
    Looks up liquidity, market cap and socials for a freshly detected pool.

    New pools take a moment to be indexed, so an empty answer is retried
    a few times before giving up with an empty PoolEnrichment (the filter
    pipeline then treats the values as unobserved).

    Usage:
        enricher = DexScreenerEnricher("https://api.dexscreener.com")
        engine = SniperEngine(policy, gateway, oracle, enricher=enricher)
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_sec: float = 10.0,
        max_attempts: int = 3,
        retry_delay_sec: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout_sec)
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_sec = retry_delay_sec
        self.logger = logging.getLogger("sniper_bot.enricher")

    async def close(self) -> None:
        await self.client.aclose()

    async def __call__(self, result: ClassificationResult, batch: LogBatch) -> PoolEnrichment:
        return await self.lookup(result.asset_id)

    async def lookup(self, asset_id: str) -> PoolEnrichment:
        for attempt in range(self.max_attempts):
            pairs = await self._get_pairs(asset_id)
            if pairs:
                enrichment = enrichment_from_pairs(pairs)
                self.logger.debug(
                    "Enriched %s: liquidity=%s mcap=%s",
                    asset_id[:8], enrichment.initial_liquidity_usd, enrichment.initial_market_cap_usd,
                )
                return enrichment
            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.retry_delay_sec)

        self.logger.info("No market data yet for %s", asset_id[:8])
        return PoolEnrichment()

    async def _get_pairs(self, asset_id: str) -> list[dict[str, Any]]:
        url = f"{self.base_url}/latest/dex/tokens/{asset_id}"
        try:
            response = await self.client.get(url)
            if response.status_code == 429:
                self.logger.warning("DexScreener rate limited")
                return []
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("DexScreener request failed for %s: %s", asset_id[:8], exc)
            return []
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        return pairs or []
