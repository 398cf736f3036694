"""PumpPortal WebSocket trade stream for monitored assets."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from sniper_bot.core.models import TradeActivity

TradeHandler = Callable[[TradeActivity], Awaitable[object]]


def parse_trade(data: dict) -> TradeActivity | None:
    """PumpPortal trade frame -> TradeActivity (solAmount is in SOL)."""
    mint = data.get("mint")
    side = data.get("txType")
    trader = data.get("traderPublicKey")
    if not mint or side not in ("buy", "sell") or not trader:
        return None
    try:
        sol_amount = float(data.get("solAmount", 0))
        token_amount = float(data.get("tokenAmount", 0))
    except (TypeError, ValueError):
        return None
    return TradeActivity(
        asset_id=str(mint),
        trader=str(trader),
        side=side,
        sol_amount=sol_amount,
        token_amount=token_amount,
        timestamp=time.time(),
        slot=data.get("slot"),
        signature=str(data.get("signature", "")),
    )


class PumpPortalTradeFeed:
    """Streams trades for subscribed mints and hands them to a handler (usually SniperEngine.observe_trade)."""

    WS_URL = "wss://pumpportal.fun/api/data"

    def __init__(self, on_trade: TradeHandler, ws_url: str | None = None) -> None:
        self.on_trade = on_trade
        self.ws_url = ws_url or self.WS_URL
        self.logger = logging.getLogger("sniper_bot.trade_feed")
        self._running = False
        self._ws = None
        self._reconnect_delay = 1.0
        self._subscribed: set[str] = set()

    async def subscribe(self, mint: str) -> None:
        if mint in self._subscribed:
            return
        self._subscribed.add(mint)
        if self._ws is not None:
            await self._send({"method": "subscribeTokenTrade", "keys": [mint]})

    async def unsubscribe(self, mint: str) -> None:
        if mint not in self._subscribed:
            return
        self._subscribed.discard(mint)
        if self._ws is not None:
            await self._send({"method": "unsubscribeTokenTrade", "keys": [mint]})

    async def _send(self, payload: dict) -> None:
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            self.logger.warning("Trade feed send failed, will resubscribe on reconnect: %s", e)

    async def handle_message(self, message: str | bytes) -> TradeActivity | None:
        """Parse one frame and dispatch it; handler errors are logged, never raised."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        trade = parse_trade(data)
        if trade is None or trade.asset_id not in self._subscribed:
            return None
        try:
            await self.on_trade(trade)
        except Exception as e:
            self.logger.error("Trade handler failed for %s: %s", trade.asset_id[:8], e, exc_info=True)
        return trade

    async def run(self) -> None:
        self._running = True
        while self._running:
            try:
                async with websockets.connect(self.ws_url) as ws:
                    self._ws = ws
                    self._reconnect_delay = 1.0
                    if self._subscribed:
                        await ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": sorted(self._subscribed)}))
                        self.logger.info("Resubscribed to trades for %d tokens", len(self._subscribed))

                    async for message in ws:
                        await self.handle_message(message)
            except ConnectionClosed as e:
                self.logger.warning("Trade websocket closed: %s", e)
            except (WebSocketException, OSError) as e:
                self.logger.error("Trade websocket error: %s", e)
            finally:
                self._ws = None

            if self._running:
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30.0)

    def stop(self) -> None:
        self._running = False
