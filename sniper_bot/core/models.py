from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SnipeStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"
    SOLD = "sold"


class AutoSellTrigger(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    TIME_BASED = "time_based"
    DEV_SOLD = "dev_sold"
    ANTI_RUG = "anti_rug"
    SNIPER_DETECTED = "sniper_detected"
    MANUAL = "manual"
    EMERGENCY = "emergency"


class MonitorStatus(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    TRIGGERED = "triggered"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    ERROR = "error"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SNIPE = "snipe"
    SELL = "sell"
    DETECTION = "detection"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class FilterResult:
    filter: str
    passed: bool
    value: Any = None
    threshold: Any = None


@dataclass(frozen=True)
class NewPoolEvent:
    venue: str
    pool_type: str
    asset_id: str
    quote_asset_id: str
    creation_slot: int | None
    creation_timestamp: float
    creation_signature: str
    creator: str | None = None
    symbol: str = ""
    initial_liquidity_usd: float | None = None
    initial_market_cap_usd: float | None = None
    has_website: bool = False
    has_twitter: bool = False
    has_telegram: bool = False
    # Optional enrichment; None means "not observed yet"
    holder_count: int | None = None
    dev_holding_pct: float | None = None
    transaction_count: int | None = None
    creator_verified: bool | None = None
    observed_slot: int | None = None
    passes_filters: bool | None = None
    filter_results: tuple[FilterResult, ...] = ()

    @property
    def block_delay(self) -> int | None:
        if self.creation_slot is None or self.observed_slot is None:
            return None
        return max(0, self.observed_slot - self.creation_slot)


@dataclass(frozen=True)
class PoolEnrichment:
    """Market data gathered for a detected pool before filtering."""
    symbol: str = ""
    initial_liquidity_usd: float | None = None
    initial_market_cap_usd: float | None = None
    has_website: bool = False
    has_twitter: bool = False
    has_telegram: bool = False
    holder_count: int | None = None
    dev_holding_pct: float | None = None
    transaction_count: int | None = None
    creator_verified: bool | None = None
    observed_slot: int | None = None
    total_supply: float | None = None


@dataclass(frozen=True)
class BuyFill:
    asset_id: str
    quote_amount: float
    amount_sol: float
    token_quantity: float
    price: float
    signature: str
    ts: float = 0.0


@dataclass(frozen=True)
class SellFill:
    asset_id: str
    token_quantity: float
    sol_received: float
    price: float
    signature: str
    ts: float = 0.0


@dataclass(frozen=True)
class PriceQuote:
    asset_id: str
    price_sol: float
    ts: float
    source: str = ""


@dataclass
class ActiveSnipe:
    id: str
    asset_id: str
    pool_type: str
    entry_timestamp: float
    entry_price: float
    entry_amount_sol: float
    token_quantity: float
    symbol: str = ""
    venue: str = ""
    creator: str | None = None
    entry_slot: int | None = None
    entry_signature: str = ""
    status: SnipeStatus = SnipeStatus.PENDING
    current_price: float = 0.0
    current_value_sol: float = 0.0
    unrealized_pnl_sol: float = 0.0
    unrealized_pnl_pct: float = 0.0
    peak_price: float = 0.0
    initial_token_quantity: float = 0.0
    take_profit_price: float | None = None
    stop_loss_price: float | None = None
    trailing_stop_price: float | None = None
    sell_after_timestamp: float | None = None
    sell_after_slot: int | None = None
    realized_sol: float = 0.0
    exit_timestamp: float | None = None
    exit_price: float | None = None
    exit_signature: str = ""
    exit_trigger: AutoSellTrigger | None = None
    realized_pnl_sol: float | None = None
    realized_pnl_pct: float | None = None
    peak_liquidity_usd: float = 0.0
    last_liquidity_usd: float | None = None
    dev_sold_pct: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status in (SnipeStatus.PENDING, SnipeStatus.EXECUTING, SnipeStatus.SUCCESS)

    @property
    def remaining_cost_basis_sol(self) -> float:
        if self.initial_token_quantity <= 0:
            return self.entry_amount_sol
        return self.entry_amount_sol * (self.token_quantity / self.initial_token_quantity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "pool_type": self.pool_type,
            "venue": self.venue,
            "creator": self.creator,
            "status": self.status.value,
            "entry_timestamp": self.entry_timestamp,
            "entry_slot": self.entry_slot,
            "entry_price": self.entry_price,
            "entry_amount_sol": self.entry_amount_sol,
            "token_quantity": self.token_quantity,
            "entry_signature": self.entry_signature,
            "current_price": self.current_price,
            "current_value_sol": self.current_value_sol,
            "unrealized_pnl_sol": self.unrealized_pnl_sol,
            "unrealized_pnl_pct": self.unrealized_pnl_pct,
            "peak_price": self.peak_price,
            "take_profit_price": self.take_profit_price,
            "stop_loss_price": self.stop_loss_price,
            "trailing_stop_price": self.trailing_stop_price,
            "sell_after_timestamp": self.sell_after_timestamp,
            "realized_sol": self.realized_sol,
        }


@dataclass(frozen=True)
class SnipeHistory:
    id: str
    asset_id: str
    symbol: str
    pool_type: str
    entry_timestamp: float
    entry_price: float
    entry_amount_sol: float
    exit_timestamp: float
    exit_price: float
    exit_amount_sol: float
    exit_trigger: AutoSellTrigger
    exit_signature: str
    realized_pnl_sol: float
    realized_pnl_pct: float
    hold_duration_sec: float

    @classmethod
    def from_snipe(cls, snipe: ActiveSnipe) -> SnipeHistory:
        exit_ts = snipe.exit_timestamp or time.time()
        return cls(
            id=snipe.id,
            asset_id=snipe.asset_id,
            symbol=snipe.symbol,
            pool_type=snipe.pool_type,
            entry_timestamp=snipe.entry_timestamp,
            entry_price=snipe.entry_price,
            entry_amount_sol=snipe.entry_amount_sol,
            exit_timestamp=exit_ts,
            exit_price=snipe.exit_price or 0.0,
            exit_amount_sol=snipe.realized_sol,
            exit_trigger=snipe.exit_trigger or AutoSellTrigger.MANUAL,
            exit_signature=snipe.exit_signature,
            realized_pnl_sol=snipe.realized_pnl_sol or 0.0,
            realized_pnl_pct=snipe.realized_pnl_pct or 0.0,
            hold_duration_sec=max(0.0, exit_ts - snipe.entry_timestamp),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "pool_type": self.pool_type,
            "entry_timestamp": self.entry_timestamp,
            "entry_price": self.entry_price,
            "entry_amount_sol": self.entry_amount_sol,
            "exit_timestamp": self.exit_timestamp,
            "exit_price": self.exit_price,
            "exit_amount_sol": self.exit_amount_sol,
            "exit_trigger": self.exit_trigger.value,
            "exit_signature": self.exit_signature,
            "realized_pnl_sol": self.realized_pnl_sol,
            "realized_pnl_pct": self.realized_pnl_pct,
            "hold_duration_sec": self.hold_duration_sec,
        }


@dataclass(frozen=True)
class TradeActivity:
    """A trade seen on a monitored asset."""
    asset_id: str
    trader: str
    side: str  # "buy" | "sell"
    sol_amount: float
    token_amount: float
    timestamp: float
    slot: int | None = None
    signature: str = ""


@dataclass(frozen=True)
class TriggerTrade:
    reason: str
    trader: str
    sol_amount: float
    token_amount: float
    timestamp: float
    supply_pct: float | None = None
    signature: str = ""
    tokens_sold: float | None = None
    side: str = "buy"
    sol_received: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "trader": self.trader,
            "sol_amount": self.sol_amount,
            "token_amount": self.token_amount,
            "supply_pct": self.supply_pct,
            "timestamp": self.timestamp,
            "signature": self.signature,
            "tokens_sold": self.tokens_sold,
            "sol_received": self.sol_received,
            "side": self.side,
        }


@dataclass(frozen=True)
class MonitorWindow:
    """Snapshot of the monitoring config a session was started with."""
    window_blocks: int
    window_seconds: float
    max_supply_pct_threshold: float
    max_sol_amount_threshold: float
    sell_percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_blocks": self.window_blocks,
            "window_seconds": self.window_seconds,
            "max_supply_pct_threshold": self.max_supply_pct_threshold,
            "max_sol_amount_threshold": self.max_sol_amount_threshold,
            "sell_percentage": self.sell_percentage,
        }


@dataclass
class MonitorSession:
    asset_id: str
    window: MonitorWindow
    started_at: float
    expires_at: float
    launch_slot: int | None = None
    total_supply: float | None = None
    ignore_wallets: frozenset[str] = frozenset()
    status: MonitorStatus = MonitorStatus.MONITORING
    triggered: bool = False
    trigger: TriggerTrade | None = None
    error: str | None = None


@dataclass(frozen=True)
class MonitorStatusView:
    asset_id: str
    status: MonitorStatus
    triggered: bool = False
    remaining_ms: int = 0
    started_at: float | None = None
    expires_at: float | None = None
    config: MonitorWindow | None = None
    trigger: TriggerTrade | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "status": self.status.value,
            "triggered": self.triggered,
            "remaining_ms": self.remaining_ms,
            "started_at": self.started_at,
            "expires_at": self.expires_at,
            "config": self.config.to_dict() if self.config else None,
            "trigger": self.trigger.to_dict() if self.trigger else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class ProtectionEvent:
    asset_id: str
    reason: str
    timestamp: float
    trade: TriggerTrade | None = None
    snipe_id: str | None = None
    tokens_sold: float | None = None
    sol_received: float | None = None
    signature: str = ""


@dataclass(frozen=True)
class ExitDecision:
    trigger: AutoSellTrigger
    sell_percent: float
    price: float
    reason: str = ""


@dataclass
class SessionStats:
    session_start: float = field(default_factory=time.time)
    total_snipes: int = 0
    successful_snipes: int = 0
    failed_snipes: int = 0
    total_sol_spent: float = 0.0
    total_sol_returned: float = 0.0
    realized_pnl_sol: float = 0.0
    unrealized_pnl_sol: float = 0.0
    best_trade_pct: float | None = None
    worst_trade_pct: float | None = None
    avg_hold_time_sec: float = 0.0
    tokens_detected: int = 0
    tokens_filtered: int = 0
    rejected_by_safety: int = 0
    sniper_triggers: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_start": self.session_start,
            "total_snipes": self.total_snipes,
            "successful_snipes": self.successful_snipes,
            "failed_snipes": self.failed_snipes,
            "total_sol_spent": self.total_sol_spent,
            "total_sol_returned": self.total_sol_returned,
            "realized_pnl_sol": self.realized_pnl_sol,
            "unrealized_pnl_sol": self.unrealized_pnl_sol,
            "best_trade_pct": self.best_trade_pct,
            "worst_trade_pct": self.worst_trade_pct,
            "avg_hold_time_sec": self.avg_hold_time_sec,
            "tokens_detected": self.tokens_detected,
            "tokens_filtered": self.tokens_filtered,
            "rejected_by_safety": self.rejected_by_safety,
            "sniper_triggers": self.sniper_triggers,
        }


@dataclass(frozen=True)
class TerminalLogEntry:
    id: str
    timestamp: float
    level: LogLevel
    message: str
    details: str | None = None
    asset_id: str | None = None
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "details": self.details,
            "asset_id": self.asset_id,
            "signature": self.signature,
        }
