"""
Sniper Engine

Wires detection, filtering, admission, execution and exit management
into one explicitly owned instance:

    log batch -> classify -> filter -> admit -> buy -> arm exits
              -> monitor for snipers -> tick -> sell -> ledger

Nothing here is global: two engines with different policies can run side
by side in one process.
"""

import time
import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sniper_bot.config.policy import SniperPolicy
from sniper_bot.constants import (
    DUST_TOKEN_QTY,
    EMERGENCY_SLIPPAGE_BPS,
    MONITOR_TICK_SEC,
    POSITION_TICK_SEC,
    USD1_MINT,
    USD1_PER_SOL_ESTIMATE,
    WSOL_MINT,
)
from sniper_bot.core.filter_pipeline import apply_filters
from sniper_bot.core.gateways import ExecutionGateway, PriceOracle, TradeSource
from sniper_bot.core.ledger import JsonlAuditStore, SniperLedger
from sniper_bot.core.log_classifier import ClassificationResult, LogBatch, LogClassifier
from sniper_bot.core.models import (
    ActiveSnipe,
    AutoSellTrigger,
    ExitDecision,
    LogLevel,
    MonitorSession,
    MonitorStatusView,
    NewPoolEvent,
    PoolEnrichment,
    ProtectionEvent,
    SellFill,
    SessionStats,
    SnipeStatus,
    TradeActivity,
    new_id,
)
from sniper_bot.core.monitor_session import SNIPER_DETECTED, SniperMonitor
from sniper_bot.core.notifications import NotificationBus, NotificationType
from sniper_bot.core.safety import Reservation, SafetyGuard
from sniper_bot.core.trigger_engine import TriggerEngine, clamp_percent
from sniper_bot.core.venues import VenueRegistry, load_venues
from sniper_bot.exceptions import ExecutionException, SafetyViolation
from sniper_bot.utils.locks import KeyedLocks
from sniper_bot.utils.retry import retry_call

logger = logging.getLogger(__name__)

Enricher = Callable[[ClassificationResult, LogBatch], Awaitable[PoolEnrichment]]


def build_event(result: ClassificationResult, batch: LogBatch, enrichment: Optional[PoolEnrichment] = None) -> NewPoolEvent:
    """Combine a positive classification with its batch and market data."""
    extra = enrichment or PoolEnrichment()
    return NewPoolEvent(
        venue=result.venue,
        pool_type=result.pool_type,
        asset_id=result.asset_id,
        quote_asset_id=result.quote_asset_id,
        creation_slot=batch.slot,
        creation_timestamp=batch.received_at,
        creation_signature=batch.signature,
        creator=result.creator,
        symbol=extra.symbol,
        initial_liquidity_usd=extra.initial_liquidity_usd,
        initial_market_cap_usd=extra.initial_market_cap_usd,
        has_website=extra.has_website,
        has_twitter=extra.has_twitter,
        has_telegram=extra.has_telegram,
        holder_count=extra.holder_count,
        dev_holding_pct=extra.dev_holding_pct,
        transaction_count=extra.transaction_count,
        creator_verified=extra.creator_verified,
        observed_slot=extra.observed_slot if extra.observed_slot is not None else batch.slot,
    )


class SniperEngine:
    """
    Usage:
        engine = SniperEngine(policy, gateway, oracle)
        await engine.start()
        await engine.handle_log_batch(batch)
        ...
        await engine.stop()

    Raises:
        ConfigurationException: at construction, if the policy is invalid
    """

    def __init__(
        self,
        policy: SniperPolicy,
        gateway: ExecutionGateway,
        oracle: PriceOracle,
        registry: Optional[VenueRegistry] = None,
        trade_source: Optional[TradeSource] = None,
        enricher: Optional[Enricher] = None,
        bus: Optional[NotificationBus] = None,
        audit_store: Optional[JsonlAuditStore] = None,
        snapshot_path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
        position_tick_sec: Optional[float] = POSITION_TICK_SEC,
        monitor_tick_sec: Optional[float] = MONITOR_TICK_SEC,
    ):
        self.policy = policy.ensure_valid()
        self.gateway = gateway
        self.oracle = oracle
        self.enricher = enricher
        self.clock = clock
        self.position_tick_sec = position_tick_sec
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None

        self.registry = registry or load_venues()
        self.classifier = LogClassifier(self.registry)
        self.ledger = SniperLedger(audit_store)
        self.bus = bus or NotificationBus()
        self.safety = SafetyGuard(policy, clock=clock, today=today)
        self.triggers = TriggerEngine(policy)
        self.monitor = SniperMonitor(
            policy.monitor,
            self.ledger,
            self.bus,
            trade_source=trade_source,
            on_trigger=self._on_sniper_detected,
            clock=clock,
            tick_sec=monitor_tick_sec,
        )
        self.locks = KeyedLocks()

        self._reservations: Dict[str, Reservation] = {}
        self._dev_tokens: Dict[str, float] = {}
        self._supply: Dict[str, float] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self.is_running = False

    # --------------------------------------------------------------- lifecycle

    async def start(self):
        if self.is_running:
            return
        self.is_running = True
        if self.position_tick_sec:
            self._loop_task = asyncio.create_task(self._position_loop())
        self.ledger.log(
            LogLevel.INFO,
            f"🚀 Sniper engine started (enabled={self.policy.enabled}, "
            f"pools={','.join(self.policy.targeting.target_pools)})",
        )

    async def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.monitor.stop_all()
        await self.bus.drain()
        self.write_snapshot()
        self.ledger.log(LogLevel.INFO, "🛑 Sniper engine stopped")

    async def _position_loop(self):
        while self.is_running:
            try:
                await self.tick()
                self.write_snapshot()
            except Exception as e:
                logger.error(f"❌ Position loop error: {e}", exc_info=True)
            await asyncio.sleep(self.position_tick_sec)

    async def ingest(self, queue: "asyncio.Queue[LogBatch]"):
        """Consume log batches in arrival order until cancelled."""
        while True:
            batch = await queue.get()
            try:
                await self.handle_log_batch(batch)
            except Exception as e:
                logger.error(f"❌ Failed to handle batch {batch.signature[:12]}: {e}")
            finally:
                queue.task_done()

    # --------------------------------------------------------------- detection

    async def handle_log_batch(self, batch: LogBatch, enrichment: Optional[PoolEnrichment] = None) -> Optional[ActiveSnipe]:
        result = self.classifier.classify_batch(batch)
        if not result.is_new_pool:
            return None

        self.ledger.record_detection()
        self.ledger.log(
            LogLevel.DETECTION,
            f"🎯 New {result.pool_type} pool {result.asset_id[:8]}...",
            details=f"creator={result.creator} quote={result.quote_asset_id}",
            asset_id=result.asset_id,
            signature=batch.signature,
        )

        if enrichment is None and self.enricher is not None:
            enrichment = await self.enricher(result, batch)
        if enrichment is not None and enrichment.total_supply:
            self._supply[result.asset_id] = enrichment.total_supply

        event = build_event(result, batch, enrichment)
        self.bus.publish(
            NotificationType.NEW_POOL_DETECTED, event.asset_id,
            pool_type=event.pool_type, creator=event.creator, signature=event.creation_signature,
        )

        event = apply_filters(event, self.policy)
        if not event.passes_filters:
            self.ledger.record_filtered()
            failed = [r.filter for r in event.filter_results if not r.passed]
            self.ledger.log(LogLevel.INFO, f"❌ Filtered: {', '.join(failed)}", asset_id=event.asset_id)
            return None

        if not self.policy.enabled:
            self.ledger.log(LogLevel.INFO, "Filters passed but sniping is disabled", asset_id=event.asset_id)
            return None

        return await self.open_position(event)

    # --------------------------------------------------------------- execution

    def _entry_terms(self, event: NewPoolEvent) -> Tuple[str, float, float]:
        """(quote mint, quote amount, SOL-equivalent size) for an entry."""
        ex = self.policy.execution
        usd1 = str(USD1_MINT)
        if ex.use_usd1 and event.quote_asset_id == usd1:
            return usd1, ex.buy_amount_usd1, ex.buy_amount_usd1 / USD1_PER_SOL_ESTIMATE
        return str(WSOL_MINT), ex.buy_amount_sol, ex.buy_amount_sol

    def _attempts(self) -> int:
        adv = self.policy.advanced
        return 1 + adv.max_retries if adv.retry_on_fail else 1

    async def open_position(self, event: NewPoolEvent) -> Optional[ActiveSnipe]:
        quote_mint, quote_amount, amount_sol = self._entry_terms(event)
        if quote_amount <= 0:
            self.ledger.log(LogLevel.WARNING, "No buy amount configured for this quote", asset_id=event.asset_id)
            return None

        try:
            reservation = await self.safety.admit(event.asset_id, event.creator, amount_sol)
        except SafetyViolation as e:
            self.ledger.record_rejected()
            self.ledger.log(LogLevel.WARNING, f"🛡️ Snipe blocked ({e.rule})", details=str(e), asset_id=event.asset_id)
            return None

        self.ledger.record_attempt()
        ex = self.policy.execution
        adv = self.policy.advanced
        self.ledger.log(
            LogLevel.SNIPE, f"⚡ Sniping {event.asset_id[:8]}... with {quote_amount} {'USD1' if quote_mint != str(WSOL_MINT) else 'SOL'}",
            asset_id=event.asset_id,
        )

        try:
            fill = await retry_call(
                lambda: self.gateway.buy(event.asset_id, quote_mint, quote_amount, ex.slippage_bps, ex.priority_fee_lamports),
                attempts=self._attempts(),
                delay=adv.retry_delay_sec,
                backoff="linear",
                exceptions=(ExecutionException,),
                timeout=adv.execution_timeout_sec,
                label=f"buy {event.asset_id[:8]}",
            )
        except (ExecutionException, asyncio.TimeoutError) as e:
            await self.safety.release(reservation)
            error = str(e) or type(e).__name__
            self.ledger.record_failed_snipe(event.asset_id, error)
            self.ledger.log(LogLevel.ERROR, f"❌ Snipe failed: {error}", asset_id=event.asset_id)
            self.bus.publish(NotificationType.SNIPE_FAILED, event.asset_id, error=error)
            return None

        snipe = ActiveSnipe(
            id=new_id("snipe"),
            asset_id=event.asset_id,
            pool_type=event.pool_type,
            entry_timestamp=fill.ts or self.clock(),
            entry_price=fill.price,
            entry_amount_sol=fill.amount_sol,
            token_quantity=fill.token_quantity,
            symbol=event.symbol,
            venue=event.venue,
            creator=event.creator,
            entry_slot=event.observed_slot,
            entry_signature=fill.signature,
            status=SnipeStatus.SUCCESS,
            current_price=fill.price,
            current_value_sol=fill.amount_sol,
            peak_liquidity_usd=event.initial_liquidity_usd or 0.0,
            last_liquidity_usd=event.initial_liquidity_usd,
        )
        self.triggers.arm(snipe)
        self.ledger.open_snipe(snipe)
        self._reservations[snipe.id] = reservation

        supply = self._supply.get(event.asset_id)
        if supply and event.dev_holding_pct:
            self._dev_tokens[event.asset_id] = supply * event.dev_holding_pct / 100

        self.ledger.log(
            LogLevel.SUCCESS,
            f"✅ Sniped {event.asset_id[:8]}...: {fill.token_quantity:.4f} tokens @ {fill.price:.10g}",
            asset_id=event.asset_id,
            signature=fill.signature,
        )
        self.bus.publish(
            NotificationType.SNIPE_EXECUTED, event.asset_id,
            pool_type=event.pool_type, amount_sol=fill.amount_sol, entry_price=fill.price,
            signature=fill.signature,
        )

        if self.policy.monitor.enabled:
            self.monitor.start_monitoring(event.asset_id, launch_slot=event.creation_slot, total_supply=supply)
        return snipe

    async def _execute_exit(
        self, snipe: ActiveSnipe, decision: ExitDecision, slippage_bps: Optional[int] = None
    ) -> Optional[SellFill]:
        """Sell per the decision; caller holds the asset lock."""
        if not snipe.is_active or snipe.token_quantity <= 0:
            return None

        quantity = snipe.token_quantity * clamp_percent(decision.sell_percent) / 100
        if snipe.token_quantity - quantity <= DUST_TOKEN_QTY:
            quantity = snipe.token_quantity
        slippage = slippage_bps or self.policy.execution.slippage_bps
        adv = self.policy.advanced

        try:
            fill = await retry_call(
                lambda: self.gateway.sell(snipe.asset_id, quantity, slippage),
                attempts=self._attempts(),
                delay=adv.retry_delay_sec,
                backoff="linear",
                exceptions=(ExecutionException,),
                timeout=adv.execution_timeout_sec,
                label=f"sell {snipe.asset_id[:8]}",
            )
        except (ExecutionException, asyncio.TimeoutError) as e:
            error = str(e) or type(e).__name__
            self.ledger.log(
                LogLevel.ERROR, f"⚠️ Sell failed ({decision.trigger.value}): {error}", asset_id=snipe.asset_id
            )
            self.bus.publish(NotificationType.SELL_FAILED, snipe.asset_id, trigger=decision.trigger.value, error=error)
            return None

        closed = self.triggers.apply_exit(snipe, decision, fill)
        self.ledger.record_sell(snipe, fill, decision.trigger.value, decision.sell_percent)
        self.ledger.log(
            LogLevel.SELL,
            f"💰 Sold {fill.token_quantity:.4f} {snipe.asset_id[:8]}... for {fill.sol_received:.4f} SOL "
            f"({decision.trigger.value})",
            details=decision.reason,
            asset_id=snipe.asset_id,
            signature=fill.signature,
        )
        self.bus.publish(
            NotificationType.AUTO_SELL_EXECUTED, snipe.asset_id,
            trigger=decision.trigger.value, sell_percent=decision.sell_percent,
            tokens_sold=fill.token_quantity, sol_received=fill.sol_received,
            signature=fill.signature, closed=closed,
        )

        if closed:
            self.ledger.close_snipe(snipe)
            reservation = self._reservations.pop(snipe.id, None)
            if reservation is not None:
                await self.safety.close(reservation)
            await self.monitor.stop_monitoring(snipe.asset_id)
        return fill

    # ------------------------------------------------------------------- exits

    async def tick(self, now: Optional[float] = None, current_slot: Optional[int] = None) -> List[ExitDecision]:
        """Value every open snipe and execute whichever exits fire."""
        decisions = []
        for snipe in list(self.ledger.active.values()):
            try:
                decision = await self._tick_snipe(snipe, now, current_slot)
            except Exception as e:
                # One broken quote must not hold up exits on the other snipes
                logger.error(f"❌ Tick failed for {snipe.asset_id[:8]}...: {e}", exc_info=True)
                continue
            if not snipe.is_active:
                self.locks.discard(snipe.asset_id)
            if decision is not None:
                decisions.append(decision)
        self.ledger.refresh_unrealized()
        return decisions

    async def _tick_snipe(self, snipe: ActiveSnipe, now: Optional[float], current_slot: Optional[int]) -> Optional[ExitDecision]:
        async with self.locks.get(snipe.asset_id):
            if not snipe.is_active:
                return None
            try:
                quote = await asyncio.wait_for(
                    self.oracle.current_price(snipe.asset_id), timeout=self.policy.advanced.execution_timeout_sec
                )
            except asyncio.TimeoutError:
                logger.debug(f"Price timeout for {snipe.asset_id[:8]}..., skipping tick")
                return None
            if quote is None:
                logger.debug(f"Stale price for {snipe.asset_id[:8]}..., skipping tick")
                return None

            decision = self.triggers.evaluate(
                snipe, quote.price_sol, now if now is not None else self.clock(), current_slot
            )
            if decision is None:
                return None
            await self._execute_exit(snipe, decision)
            return decision

    async def _on_sniper_detected(self, session: MonitorSession):
        asset_id = session.asset_id
        snipe = self.ledger.find_active(asset_id)
        if snipe is None:
            self.ledger.record_protection(
                ProtectionEvent(asset_id, SNIPER_DETECTED, self.clock(), trade=session.trigger)
            )
            return

        async with self.locks.get(asset_id):
            decision = ExitDecision(
                AutoSellTrigger.SNIPER_DETECTED,
                clamp_percent(session.window.sell_percentage),
                snipe.current_price,
                f"sniper {session.trigger.trader[:8]}... {session.trigger.side} {session.trigger.sol_amount:.3f} SOL",
            )
            fill = await self._execute_exit(snipe, decision)

        self.ledger.record_protection(ProtectionEvent(
            asset_id=asset_id,
            reason=SNIPER_DETECTED,
            timestamp=self.clock(),
            trade=session.trigger,
            snipe_id=snipe.id,
            tokens_sold=fill.token_quantity if fill else None,
            sol_received=fill.sol_received if fill else None,
            signature=fill.signature if fill else "",
        ))

    async def observe_trade(self, trade: TradeActivity):
        """Route a trade to dev-sell tracking and the sniper monitor."""
        snipe = self.ledger.find_active(trade.asset_id)
        if snipe is not None and trade.side == "sell" and snipe.creator and trade.trader == snipe.creator:
            dev_tokens = self._dev_tokens.get(trade.asset_id)
            if dev_tokens:
                snipe.dev_sold_pct = min(100.0, snipe.dev_sold_pct + trade.token_amount / dev_tokens * 100)
            else:
                # Unknown holdings: a creator sell counts as a full dump
                snipe.dev_sold_pct = 100.0
            self.ledger.log(
                LogLevel.WARNING, f"⚠️ Creator sold ({snipe.dev_sold_pct:.1f}% of holdings)", asset_id=trade.asset_id
            )
        return await self.monitor.observe_trade(trade)

    def report_liquidity(self, asset_id: str, liquidity_usd: float):
        snipe = self.ledger.find_active(asset_id)
        if snipe is None:
            return
        snipe.last_liquidity_usd = liquidity_usd
        snipe.peak_liquidity_usd = max(snipe.peak_liquidity_usd, liquidity_usd)

    async def manual_sell(self, asset_id: str, percent: float = 100.0) -> Optional[SellFill]:
        snipe = self.ledger.find_active(asset_id)
        if snipe is None:
            return None
        async with self.locks.get(asset_id):
            decision = ExitDecision(AutoSellTrigger.MANUAL, clamp_percent(percent), snipe.current_price, "manual")
            return await self._execute_exit(snipe, decision)

    async def emergency_stop(self, reason: str = "manual") -> int:
        """Halt new entries and dump every open snipe. Returns snipes sold."""
        if not self.safety.engage_emergency_stop(reason):
            return 0

        sold = 0
        for snipe in list(self.ledger.active.values()):
            async with self.locks.get(snipe.asset_id):
                decision = ExitDecision(AutoSellTrigger.EMERGENCY, 100.0, snipe.current_price, reason)
                fill = await self._execute_exit(snipe, decision, slippage_bps=EMERGENCY_SLIPPAGE_BPS)
                if fill is not None:
                    sold += 1

        self.ledger.log(LogLevel.ERROR, f"🚨 EMERGENCY STOP: {sold} positions sold", details=reason)
        self.bus.publish(NotificationType.EMERGENCY_STOP, None, positions=sold, reason=reason)
        return sold

    # ------------------------------------------------------------------- views

    def get_monitor_status(self, asset_id: str) -> MonitorStatusView:
        return self.monitor.get_status(asset_id)

    def stats(self) -> SessionStats:
        self.ledger.refresh_unrealized()
        return self.ledger.stats

    def _snapshot_extra(self) -> dict:
        return {
            "monitors": [view.to_dict() for view in self.monitor.status_views()],
            "safety": self.safety.get_status(),
            "policy": {"enabled": self.policy.enabled, "target_pools": list(self.policy.targeting.target_pools)},
        }

    def snapshot(self) -> dict:
        return self.ledger.snapshot(self.clock(), extra=self._snapshot_extra())

    def write_snapshot(self):
        if self.snapshot_path is None:
            return
        self.ledger.write_snapshot(self.snapshot_path, self.clock(), extra=self._snapshot_extra())
