from __future__ import annotations

import random
import time
import uuid
from typing import Protocol, runtime_checkable

from sniper_bot.constants import USD1_PER_SOL_ESTIMATE, WSOL_MINT
from sniper_bot.core.models import BuyFill, PriceQuote, SellFill, TradeActivity
from sniper_bot.exceptions import ExecutionException


@runtime_checkable
class ExecutionGateway(Protocol):
    """Builds, signs and lands swaps. Raises ExecutionException on failure."""

    async def buy(
        self,
        asset_id: str,
        quote_asset_id: str,
        quote_amount: float,
        slippage_bps: int,
        priority_fee_lamports: int,
    ) -> BuyFill: ...

    async def sell(self, asset_id: str, token_quantity: float, slippage_bps: int) -> SellFill: ...


@runtime_checkable
class PriceOracle(Protocol):
    """Returns the current SOL price of an asset, or None when stale/unknown."""

    async def current_price(self, asset_id: str) -> PriceQuote | None: ...


@runtime_checkable
class TradeSource(Protocol):
    """Recent trades on an asset, used by monitoring sessions that poll."""

    async def recent_trades(self, asset_id: str, since: float) -> list[TradeActivity]: ...


class PaperExecutionGateway:
    """Simulated fills against the oracle price with random slippage and fees."""

    def __init__(
        self,
        oracle: PriceOracle,
        slippage_pct: float = 0.01,
        fee_bps: float = 100.0,
        seed: int | None = None,
        usd1_per_sol: float = USD1_PER_SOL_ESTIMATE,
    ) -> None:
        self.oracle = oracle
        self.slippage_pct = slippage_pct
        self.fee_bps = fee_bps
        self.usd1_per_sol = usd1_per_sol
        self.rng = random.Random(seed)

    def _fill_price(self, side: str, price: float, slippage_bps: int) -> float:
        max_slip = min(self.slippage_pct, slippage_bps / 10000.0)
        slippage = self.rng.uniform(0.0, max_slip)
        fee_pct = min(0.5, self.fee_bps / 10000.0)
        if side == "buy":
            fill_price = price * (1 + slippage) * (1 + fee_pct)
        else:
            fill_price = price * (1 - slippage) * (1 - fee_pct)
        return max(1e-12, fill_price)

    async def _price(self, asset_id: str) -> float:
        quote = await self.oracle.current_price(asset_id)
        if quote is None or quote.price_sol <= 0:
            raise ExecutionException("No price for paper fill", asset_id=asset_id)
        return quote.price_sol

    async def buy(
        self,
        asset_id: str,
        quote_asset_id: str,
        quote_amount: float,
        slippage_bps: int,
        priority_fee_lamports: int,
    ) -> BuyFill:
        if quote_amount <= 0:
            raise ExecutionException("Buy amount must be positive", asset_id=asset_id, amount=quote_amount)
        price = await self._price(asset_id)
        amount_sol = quote_amount if quote_asset_id == str(WSOL_MINT) else quote_amount / self.usd1_per_sol
        fill_price = self._fill_price("buy", price, slippage_bps)
        return BuyFill(
            asset_id=asset_id,
            quote_amount=quote_amount,
            amount_sol=amount_sol,
            token_quantity=amount_sol / fill_price,
            price=fill_price,
            signature=f"paper_{uuid.uuid4().hex}",
            ts=time.time(),
        )

    async def sell(self, asset_id: str, token_quantity: float, slippage_bps: int) -> SellFill:
        if token_quantity <= 0:
            raise ExecutionException("Sell quantity must be positive", asset_id=asset_id)
        price = await self._price(asset_id)
        fill_price = self._fill_price("sell", price, slippage_bps)
        return SellFill(
            asset_id=asset_id,
            token_quantity=token_quantity,
            sol_received=token_quantity * fill_price,
            price=fill_price,
            signature=f"paper_{uuid.uuid4().hex}",
            ts=time.time(),
        )
