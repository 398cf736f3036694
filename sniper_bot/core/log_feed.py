"""Solana websocket logsSubscribe feed producing LogBatches per venue."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Iterable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from sniper_bot.core.log_classifier import LogBatch, parse_logs_notification
from sniper_bot.core.venues import VenueGrammar


class LogsFeed:
    """Subscribes to program logs for every venue and queues each transaction's logs.

    Reconnects with exponential backoff; subscriptions are re-sent on every
    connect. Batches are queued in arrival order.
    """

    def __init__(
        self,
        wss_url: str,
        venues: Iterable[VenueGrammar],
        queue: asyncio.Queue[LogBatch] | None = None,
        commitment: str = "processed",
    ) -> None:
        self.wss_url = wss_url
        self.venues = list(venues)
        self.queue: asyncio.Queue[LogBatch] = queue or asyncio.Queue(maxsize=1000)
        self.commitment = commitment
        self.logger = logging.getLogger("sniper_bot.log_feed")
        self._running = False
        self._reconnect_delay = 1.0
        self._pending: dict[int, str] = {}
        self._subscriptions: dict[int, str] = {}
        self.batches_received = 0
        self.batches_dropped = 0

    def subscribe_requests(self) -> list[dict]:
        """One logsSubscribe per venue; acks are matched back by request id."""
        self._pending.clear()
        self._subscriptions.clear()
        requests = []
        for request_id, venue in enumerate(self.venues, start=1):
            self._pending[request_id] = venue.key
            requests.append({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "logsSubscribe",
                "params": [{"mentions": [venue.program_id]}, {"commitment": self.commitment}],
            })
        return requests

    def handle_message(self, raw: str | bytes) -> LogBatch | None:
        """Route one websocket frame: subscription acks or log notifications."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self.logger.debug("Ignoring non-JSON frame")
            return None

        if "id" in message and "result" in message:
            venue = self._pending.pop(message["id"], None)
            if venue is not None:
                self._subscriptions[message["result"]] = venue
                self.logger.info("✅ Subscribed to %s logs (sub %s)", venue, message["result"])
            return None

        if message.get("method") != "logsNotification":
            return None

        subscription = (message.get("params") or {}).get("subscription")
        venue = self._subscriptions.get(subscription)
        if venue is None:
            return None
        return parse_logs_notification(message, venue)

    def _enqueue(self, batch: LogBatch) -> None:
        self.batches_received += 1
        try:
            self.queue.put_nowait(batch)
        except asyncio.QueueFull:
            self.batches_dropped += 1
            self.logger.warning("Log queue full, dropping batch %s", batch.signature[:12])

    async def run(self) -> None:
        self._running = True
        self.logger.info("Logs feed starting for %s", ", ".join(v.key for v in self.venues))

        while self._running:
            try:
                async with websockets.connect(self.wss_url, ping_interval=20) as ws:
                    self._reconnect_delay = 1.0
                    for request in self.subscribe_requests():
                        await ws.send(json.dumps(request))

                    async for raw in ws:
                        batch = self.handle_message(raw)
                        if batch is not None:
                            self._enqueue(batch)
            except ConnectionClosed as e:
                self.logger.warning("Logs websocket closed: %s", e)
            except (WebSocketException, OSError) as e:
                self.logger.error("Logs websocket error: %s", e)

            if self._running:
                self.logger.info("Logs feed reconnecting in %.1fs...", self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30.0)

    def stop(self) -> None:
        self._running = False
