from __future__ import annotations

import logging
from html import escape
from typing import Any

import httpx

from sniper_bot.core.notifications import Notification, NotificationType

ALERT_TYPES = {
    NotificationType.SNIPE_EXECUTED,
    NotificationType.SNIPE_FAILED,
    NotificationType.SNIPER_DETECTED,
    NotificationType.AUTO_SELL_EXECUTED,
    NotificationType.SELL_FAILED,
    NotificationType.EMERGENCY_STOP,
}


class TelegramNotifier:
    def __init__(self, token: str | None, chat_id: str | None, timeout_sec: float = 10.0) -> None:
        self.token = token
        self.chat_id = chat_id
        self.enabled = bool(token and chat_id)
        self.client = httpx.AsyncClient(timeout=timeout_sec)
        self.logger = logging.getLogger("sniper_bot.telegram")

    async def close(self) -> None:
        await self.client.aclose()

    async def handle(self, notification: Notification) -> None:
        if not self.enabled or notification.type not in ALERT_TYPES:
            return
        await self.send_message(build_message(notification))

    async def send_message(self, text: str) -> None:
        if not self.enabled:
            return
        payload: dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        await self._post("sendMessage", payload)

    async def _post(self, method: str, payload: dict[str, Any]) -> None:
        url = f"https://api.telegram.org/bot{self.token}/{method}"
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.logger.warning("Telegram %s failed: %s", method, exc)


def _short(value: str | None) -> str:
    if not value:
        return "-"
    return f"{value[:4]}...{value[-4:]}"


def build_message(notification: Notification) -> str:
    data = notification.data
    asset = escape(notification.asset_id or "-")
    kind = notification.type

    if kind == NotificationType.SNIPE_EXECUTED:
        return (
            f"🎯 <b>SNIPED</b> <code>{asset}</code>\n"
            f"Pool: {escape(str(data.get('pool_type', '-')))}\n"
            f"Size: {data.get('amount_sol', 0):.4f} SOL @ {data.get('entry_price', 0):.10g}"
        )
    if kind == NotificationType.SNIPE_FAILED:
        return f"❌ <b>SNIPE FAILED</b> <code>{asset}</code>\n{escape(str(data.get('error', '')))}"
    if kind == NotificationType.SNIPER_DETECTED:
        return (
            f"🚨 <b>SNIPER DETECTED</b> <code>{asset}</code>\n"
            f"Trader: <code>{escape(_short(data.get('trader')))}</code>\n"
            f"Side: {escape(str(data.get('side', 'buy')))}\n"
            f"Size: {data.get('sol_amount', 0):.3f} SOL"
        )
    if kind == NotificationType.AUTO_SELL_EXECUTED:
        return (
            f"💰 <b>AUTO-SELL</b> <code>{asset}</code>\n"
            f"Trigger: {escape(str(data.get('trigger', '-')))} ({data.get('sell_percent', 100):.0f}%)\n"
            f"Received: {data.get('sol_received', 0):.4f} SOL"
        )
    if kind == NotificationType.SELL_FAILED:
        return f"⚠️ <b>SELL FAILED</b> <code>{asset}</code>\n{escape(str(data.get('error', '')))}"
    if kind == NotificationType.EMERGENCY_STOP:
        return f"🛑 <b>EMERGENCY STOP</b>\nPositions sold: {data.get('positions', 0)}"
    return f"{escape(kind.value)} <code>{asset}</code>"
