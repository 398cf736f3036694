from __future__ import annotations

import json
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Iterator

from sniper_bot.constants import TERMINAL_LOG_MAX_ENTRIES
from sniper_bot.core.models import (
    ActiveSnipe,
    LogLevel,
    ProtectionEvent,
    SessionStats,
    SellFill,
    SnipeHistory,
    SnipeStatus,
    TerminalLogEntry,
    new_id,
)
from sniper_bot.logger import SnipeLogger

_LEVEL_MAP = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.DETECTION: logging.INFO,
    LogLevel.SNIPE: logging.INFO,
    LogLevel.SELL: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class JsonlAuditStore:
    """Append-only JSON-lines record of opened/closed snipes and protection events."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.logger = logging.getLogger("sniper_bot.audit")

    def append(self, kind: str, payload: dict[str, Any]) -> None:
        record = {"kind": kind, "ts": time.time(), **payload}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def read(self, kind: str | None = None) -> Iterator[dict[str, Any]]:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    self.logger.warning("Skipping corrupt audit line in %s", self.path)
                    continue
                if kind is None or record.get("kind") == kind:
                    yield record


class SniperLedger:
    """Session ledger: open snipes, closed history, protection events, stats and terminal log."""

    def __init__(self, audit_store: JsonlAuditStore | None = None, max_log_entries: int = TERMINAL_LOG_MAX_ENTRIES) -> None:
        self.logger = logging.getLogger("sniper_bot.ledger")
        self.snipe_logger = SnipeLogger()
        self.audit = audit_store
        self.active: dict[str, ActiveSnipe] = {}
        self.history: list[SnipeHistory] = []
        self.protection_events: list[ProtectionEvent] = []
        self.stats = SessionStats()
        self.terminal: deque[TerminalLogEntry] = deque(maxlen=max_log_entries)

    # ------------------------------------------------------------ terminal log

    def log(
        self,
        level: LogLevel,
        message: str,
        details: str | None = None,
        asset_id: str | None = None,
        signature: str | None = None,
    ) -> TerminalLogEntry:
        entry = TerminalLogEntry(
            id=new_id("log"),
            timestamp=time.time(),
            level=level,
            message=message,
            details=details,
            asset_id=asset_id,
            signature=signature,
        )
        self.terminal.append(entry)
        self.logger.log(_LEVEL_MAP[level], message)
        return entry

    def recent_logs(self, limit: int = 50) -> list[TerminalLogEntry]:
        if limit <= 0:
            return []
        return list(self.terminal)[-limit:]

    # ------------------------------------------------------------- detection

    def record_detection(self) -> None:
        self.stats.tokens_detected += 1

    def record_filtered(self) -> None:
        self.stats.tokens_filtered += 1

    def record_rejected(self) -> None:
        self.stats.rejected_by_safety += 1

    # ---------------------------------------------------------------- snipes

    def record_attempt(self) -> None:
        self.stats.total_snipes += 1

    def open_snipe(self, snipe: ActiveSnipe) -> None:
        self.active[snipe.id] = snipe
        self.stats.successful_snipes += 1
        self.stats.total_sol_spent += snipe.entry_amount_sol
        self.snipe_logger.log_entry(
            asset_id=snipe.asset_id,
            amount_sol=snipe.entry_amount_sol,
            signature=snipe.entry_signature,
            pool=snipe.pool_type,
            entry_price=snipe.entry_price,
            token_amount=snipe.token_quantity,
        )
        if self.audit:
            self.audit.append("snipe_opened", snipe.to_dict())

    def record_failed_snipe(self, asset_id: str, error: str) -> None:
        self.stats.failed_snipes += 1
        if self.audit:
            self.audit.append("snipe_failed", {"asset_id": asset_id, "error": error})

    def find_active(self, asset_id: str) -> ActiveSnipe | None:
        for snipe in self.active.values():
            if snipe.asset_id == asset_id:
                return snipe
        return None

    def record_sell(self, snipe: ActiveSnipe, fill: SellFill, trigger: str, sell_percent: float) -> None:
        self.stats.total_sol_returned += fill.sol_received
        self.snipe_logger.log_exit(
            asset_id=snipe.asset_id,
            amount_sol=fill.sol_received,
            signature=fill.signature,
            trigger=trigger,
            pnl_sol=snipe.realized_pnl_sol or 0.0,
            pnl_pct=snipe.realized_pnl_pct or 0.0,
            hold_time_seconds=max(0.0, (fill.ts or time.time()) - snipe.entry_timestamp),
            sell_percent=sell_percent,
        )

    def close_snipe(self, snipe: ActiveSnipe) -> SnipeHistory:
        if snipe.status != SnipeStatus.SOLD:
            raise ValueError(f"snipe {snipe.id} is not sold")
        self.active.pop(snipe.id, None)
        record = SnipeHistory.from_snipe(snipe)
        self.history.append(record)

        stats = self.stats
        stats.realized_pnl_sol += record.realized_pnl_sol
        if stats.best_trade_pct is None or record.realized_pnl_pct > stats.best_trade_pct:
            stats.best_trade_pct = record.realized_pnl_pct
        if stats.worst_trade_pct is None or record.realized_pnl_pct < stats.worst_trade_pct:
            stats.worst_trade_pct = record.realized_pnl_pct
        stats.avg_hold_time_sec = sum(h.hold_duration_sec for h in self.history) / len(self.history)
        self.refresh_unrealized()

        if self.audit:
            self.audit.append("snipe_closed", record.to_dict())
        return record

    def refresh_unrealized(self) -> float:
        self.stats.unrealized_pnl_sol = sum(s.unrealized_pnl_sol for s in self.active.values())
        return self.stats.unrealized_pnl_sol

    # ------------------------------------------------------------ protection

    def record_protection(self, event: ProtectionEvent) -> None:
        self.protection_events.append(event)
        if event.reason == "sniper_detected":
            self.stats.sniper_triggers += 1
        trade = event.trade
        self.snipe_logger.log_protection(
            asset_id=event.asset_id,
            reason=event.reason,
            trader=trade.trader if trade else None,
            sol_amount=trade.sol_amount if trade else 0.0,
        )
        if self.audit:
            self.audit.append("protection", {
                "asset_id": event.asset_id,
                "reason": event.reason,
                "timestamp": event.timestamp,
                "snipe_id": event.snipe_id,
                "trade": trade.to_dict() if trade else None,
                "tokens_sold": event.tokens_sold,
                "sol_received": event.sol_received,
                "signature": event.signature,
            })

    def latest_protection(self, asset_id: str, reason: str | None = None) -> ProtectionEvent | None:
        for event in reversed(self.protection_events):
            if event.asset_id == asset_id and (reason is None or event.reason == reason):
                return event
        return None

    # -------------------------------------------------------------- snapshot

    def snapshot(self, now: float | None = None, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        self.refresh_unrealized()
        payload = {
            "ts": now if now is not None else time.time(),
            "open_positions": [s.to_dict() for s in self.active.values()],
            "history": [h.to_dict() for h in self.history[-20:]],
            "stats": self.stats.to_dict(),
            "terminal": [e.to_dict() for e in self.recent_logs(50)],
        }
        if extra:
            payload.update(extra)
        return payload

    def write_snapshot(self, path: str | Path, now: float | None = None, extra: dict[str, Any] | None = None) -> None:
        snapshot_path = Path(path)
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = snapshot_path.with_suffix(snapshot_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self.snapshot(now, extra), indent=2, default=str), encoding="utf-8")
        tmp_path.replace(snapshot_path)
