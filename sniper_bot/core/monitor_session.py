"""
Sniper Monitor - post-launch monitoring sessions

For a short window after a launch, watches trades on the asset and
flags the first wallet that trades too large a share of supply or too
much SOL, in either direction. The engine reacts to the flag by auto-selling.

States:
    idle -> monitoring -> triggered   (first offending trade, one way)
                       -> expired     (window elapsed, no trigger)
                       -> error       (observation failed for good)
    not_found is reported for assets that were never monitored.

Live sessions sit in `sessions`; once a session reaches a terminal state or
is stopped it moves to the bounded `finished` table, which keeps its
last-known status queryable.

Each session runs its own ticker task that checks expiry and, when a
TradeSource is configured, polls it for recent trades.
"""

import time
import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from sniper_bot.config.policy import MonitorConfig
from sniper_bot.constants import (
    MAX_MONITOR_BLOCKS,
    MONITOR_GRACE_BLOCKS,
    MONITOR_TICK_SEC,
    SLOT_TIME_MS,
    TRADE_POLL_TIMEOUT_SEC,
)
from sniper_bot.core.gateways import TradeSource
from sniper_bot.core.ledger import SniperLedger
from sniper_bot.core.models import (
    MonitorSession,
    MonitorStatus,
    MonitorStatusView,
    MonitorWindow,
    TradeActivity,
    TriggerTrade,
)
from sniper_bot.core.notifications import NotificationBus, NotificationType

logger = logging.getLogger(__name__)

SNIPER_DETECTED = "sniper_detected"
FINISHED_SESSIONS_MAX = 500

TriggerHandler = Callable[[MonitorSession], Awaitable[None]]


def window_duration_sec(window_blocks: int, window_seconds: float = 0.0) -> float:
    """Seconds a session stays open: explicit seconds, else (blocks + grace) slots."""
    if window_seconds > 0:
        return window_seconds
    blocks = min(max(window_blocks, 0), MAX_MONITOR_BLOCKS)
    return (blocks + MONITOR_GRACE_BLOCKS) * SLOT_TIME_MS / 1000


class SniperMonitor:
    """
    Usage:
        monitor = SniperMonitor(policy.monitor, ledger, bus, on_trigger=engine.handle_sniper)
        monitor.start_monitoring(mint, launch_slot=slot, total_supply=1e9)
        await monitor.observe_trade(trade)
        view = monitor.get_status(mint)
    """

    def __init__(
        self,
        config: MonitorConfig,
        ledger: SniperLedger,
        bus: NotificationBus,
        trade_source: Optional[TradeSource] = None,
        on_trigger: Optional[TriggerHandler] = None,
        clock: Callable[[], float] = time.time,
        tick_sec: Optional[float] = MONITOR_TICK_SEC,
        poll_timeout_sec: float = TRADE_POLL_TIMEOUT_SEC,
    ):
        self.config = config
        self.ledger = ledger
        self.bus = bus
        self.trade_source = trade_source
        self.on_trigger = on_trigger
        self.clock = clock
        self.tick_sec = tick_sec
        self.poll_timeout_sec = poll_timeout_sec

        self.sessions: Dict[str, MonitorSession] = {}
        self.finished: "OrderedDict[str, MonitorSession]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._last_poll: Dict[str, float] = {}

    # ------------------------------------------------------------------ start

    def start_monitoring(
        self,
        asset_id: str,
        launch_slot: Optional[int] = None,
        total_supply: Optional[float] = None,
        ignore_wallets: Iterable[str] = (),
        window_blocks: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> MonitorSession:
        """Open a session; a second call while one is live returns it unchanged."""
        existing = self.sessions.get(asset_id)
        if existing is not None and existing.status == MonitorStatus.MONITORING:
            return existing

        cfg = self.config
        blocks = min(cfg.window_blocks if window_blocks is None else window_blocks, MAX_MONITOR_BLOCKS)
        seconds = cfg.window_seconds if window_seconds is None else window_seconds
        now = self.clock()

        window = MonitorWindow(
            window_blocks=blocks,
            window_seconds=seconds,
            max_supply_pct_threshold=cfg.max_supply_pct_threshold,
            max_sol_amount_threshold=cfg.max_sol_amount_threshold,
            sell_percentage=cfg.sell_percentage,
        )
        session = MonitorSession(
            asset_id=asset_id,
            window=window,
            started_at=now,
            expires_at=now + window_duration_sec(blocks, seconds),
            launch_slot=launch_slot,
            total_supply=total_supply,
            ignore_wallets=frozenset(cfg.ignore_wallets) | frozenset(ignore_wallets),
        )
        self.sessions[asset_id] = session
        self.finished.pop(asset_id, None)
        self._last_poll[asset_id] = now

        if self.tick_sec:
            self._tasks[asset_id] = asyncio.get_running_loop().create_task(self._run(asset_id))

        logger.info(
            f"👀 Monitoring {asset_id[:8]}... for snipers "
            f"({blocks} blocks, {session.expires_at - now:.1f}s)"
        )
        self.bus.publish(
            NotificationType.MONITORING_STARTED, asset_id,
            expires_at=session.expires_at, config=window.to_dict()
        )
        return session

    # ------------------------------------------------------------ transitions

    def _retire(self, asset_id: str):
        """Move a session out of the live table, keeping its last status."""
        session = self.sessions.pop(asset_id, None)
        self._last_poll.pop(asset_id, None)
        if session is None:
            return
        self.finished[asset_id] = session
        self.finished.move_to_end(asset_id)
        while len(self.finished) > FINISHED_SESSIONS_MAX:
            self.finished.popitem(last=False)

    def _expire_if_due(self, session: MonitorSession, now: float) -> bool:
        if session.status == MonitorStatus.MONITORING and now > session.expires_at:
            session.status = MonitorStatus.EXPIRED
            self._retire(session.asset_id)
            logger.info(f"⏱️ Monitoring window closed for {session.asset_id[:8]}... (no sniper)")
            self.bus.publish(NotificationType.MONITOR_EXPIRED, session.asset_id)
            return True
        return False

    def _fail(self, session: MonitorSession, error: str):
        if session.status != MonitorStatus.MONITORING:
            return
        session.status = MonitorStatus.ERROR
        session.error = error
        self._retire(session.asset_id)
        logger.error(f"❌ Monitoring failed for {session.asset_id[:8]}...: {error}")
        self.bus.publish(NotificationType.MONITOR_ERROR, session.asset_id, error=error)

    def _match(self, session: MonitorSession, trade: TradeActivity) -> Optional[TriggerTrade]:
        # Early buyers and early dumpers are both judged on size
        if trade.side not in ("buy", "sell") or trade.trader in session.ignore_wallets:
            return None
        if (
            session.launch_slot is not None
            and trade.slot is not None
            and trade.slot > session.launch_slot + session.window.window_blocks
        ):
            return None

        window = session.window
        supply_pct = None
        if session.total_supply:
            supply_pct = trade.token_amount / session.total_supply * 100

        over_supply = supply_pct is not None and supply_pct > window.max_supply_pct_threshold
        over_sol = trade.sol_amount > window.max_sol_amount_threshold
        if not (over_supply or over_sol):
            return None

        return TriggerTrade(
            reason=SNIPER_DETECTED,
            trader=trade.trader,
            sol_amount=trade.sol_amount,
            token_amount=trade.token_amount,
            timestamp=trade.timestamp,
            supply_pct=supply_pct,
            signature=trade.signature,
            side=trade.side,
        )

    async def observe_trade(self, trade: TradeActivity) -> Optional[TriggerTrade]:
        """
        Feed one trade. Returns the trigger if this trade tripped the session.

        Only the first offending trade is recorded; later calls are no-ops.
        """
        session = self.sessions.get(trade.asset_id)
        if session is None or session.status != MonitorStatus.MONITORING:
            return None
        if self._expire_if_due(session, self.clock()):
            self._cancel_task(trade.asset_id)
            return None

        trigger = self._match(session, trade)
        if trigger is None:
            return None

        # Transition before any await so concurrent observers see it
        session.status = MonitorStatus.TRIGGERED
        session.triggered = True
        session.trigger = trigger
        self._cancel_task(trade.asset_id)
        self._retire(trade.asset_id)

        supply = f"{trigger.supply_pct:.2f}% supply, " if trigger.supply_pct is not None else ""
        verb = "bought" if trigger.side == "buy" else "sold"
        logger.warning(
            f"🚨 Sniper on {trade.asset_id[:8]}...: {trade.trader[:8]}... {verb} "
            f"{supply}{trigger.sol_amount:.3f} SOL"
        )
        self.bus.publish(
            NotificationType.SNIPER_DETECTED, trade.asset_id,
            trader=trigger.trader, side=trigger.side, sol_amount=trigger.sol_amount,
            supply_pct=trigger.supply_pct, signature=trigger.signature,
        )

        if self.on_trigger is not None:
            await self.on_trigger(session)
        return trigger

    # ------------------------------------------------------------ status/stop

    def get_status(self, asset_id: str) -> MonitorStatusView:
        now = self.clock()
        session = self.sessions.get(asset_id)
        if session is not None and self._expire_if_due(session, now):
            self._cancel_task(asset_id)
        if session is None:
            session = self.finished.get(asset_id)
        if session is None:
            return MonitorStatusView(asset_id=asset_id, status=MonitorStatus.NOT_FOUND)

        remaining_ms = 0
        if session.status == MonitorStatus.MONITORING and asset_id in self.sessions:
            remaining_ms = max(0, int((session.expires_at - now) * 1000))

        trigger = session.trigger
        if session.triggered:
            event = self.ledger.latest_protection(asset_id, SNIPER_DETECTED)
            if event is not None and event.trade is not None:
                trigger = TriggerTrade(
                    reason=event.reason,
                    trader=event.trade.trader,
                    sol_amount=event.trade.sol_amount,
                    token_amount=event.trade.token_amount,
                    timestamp=event.trade.timestamp,
                    supply_pct=event.trade.supply_pct,
                    signature=event.trade.signature,
                    tokens_sold=event.tokens_sold,
                    sol_received=event.sol_received,
                    side=event.trade.side,
                )

        return MonitorStatusView(
            asset_id=asset_id,
            status=session.status,
            triggered=session.triggered,
            remaining_ms=remaining_ms,
            started_at=session.started_at,
            expires_at=session.expires_at,
            config=session.window,
            trigger=trigger,
            error=session.error,
        )

    def status_views(self, finished_limit: int = 20) -> List[MonitorStatusView]:
        """Live sessions, then the most recently finished ones."""
        live = [self.get_status(a) for a in list(self.sessions)]
        recent = list(self.finished)[-finished_limit:] if finished_limit > 0 else []
        done = [self.get_status(a) for a in reversed(recent) if a not in self.sessions]
        return live + done

    def _cancel_task(self, asset_id: str):
        task = self._tasks.pop(asset_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def stop_monitoring(self, asset_id: str) -> MonitorStatusView:
        """Stop the ticker and retire the session; the last known status stays queryable."""
        task = self._tasks.pop(asset_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._retire(asset_id)
        return self.get_status(asset_id)

    async def stop_all(self):
        for asset_id in list(self.sessions):
            await self.stop_monitoring(asset_id)

    def active_sessions(self) -> Dict[str, MonitorSession]:
        return {k: s for k, s in self.sessions.items() if s.status == MonitorStatus.MONITORING}

    # ----------------------------------------------------------------- ticker

    async def _run(self, asset_id: str):
        while True:
            await asyncio.sleep(self.tick_sec)
            session = self.sessions.get(asset_id)
            if session is None or session.status != MonitorStatus.MONITORING:
                return
            try:
                if self._expire_if_due(session, self.clock()):
                    self._tasks.pop(asset_id, None)
                    return
                if self.trade_source is not None:
                    await self._poll(session)
            except Exception as e:
                # A failing trigger handler must not take the ticker down with it
                logger.error(f"❌ Monitor tick failed for {asset_id[:8]}...: {e}", exc_info=True)

    async def _poll(self, session: MonitorSession):
        asset_id = session.asset_id
        since = self._last_poll.get(asset_id, session.started_at)
        try:
            trades = await asyncio.wait_for(
                self.trade_source.recent_trades(asset_id, since), timeout=self.poll_timeout_sec
            )
        except asyncio.TimeoutError:
            logger.debug(f"Trade poll timed out for {asset_id[:8]}..., retrying next tick")
            return
        except Exception as e:
            logger.exception(f"Trade source failed for {asset_id[:8]}...")
            self._fail(session, str(e))
            self._tasks.pop(asset_id, None)
            return

        for trade in sorted(trades, key=lambda t: t.timestamp):
            if asset_id in self._last_poll:
                self._last_poll[asset_id] = max(self._last_poll[asset_id], trade.timestamp)
            if await self.observe_trade(trade):
                break
