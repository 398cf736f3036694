"""
Unit tests for sniper monitoring sessions

Tests:
1. Window length and expiry
2. First-trigger-wins transitions
3. Supply / SOL thresholds on buys and sells, ignored wallets, slot window
4. Live and finished session tables
5. Ticker polling against a TradeSource
"""

import asyncio

import pytest

from sniper_bot.config.policy import MonitorConfig
from sniper_bot.core.ledger import SniperLedger
from sniper_bot.core.models import MonitorStatus, ProtectionEvent, TradeActivity
from sniper_bot.core.monitor_session import SNIPER_DETECTED, SniperMonitor, window_duration_sec
from sniper_bot.core.notifications import NotificationBus, NotificationType

MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
SNIPER = "HFqU5x63VTqvQss8hp11i4wVV8bD44PvuiVjRokw87Hz"
FRIEND = "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49"
DUMPER = "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def trade(sol=1.0, tokens=1_000_000.0, side="buy", trader=SNIPER, slot=None, ts=1000.5):
    return TradeActivity(
        asset_id=MINT, trader=trader, side=side, sol_amount=sol, token_amount=tokens,
        timestamp=ts, slot=slot, signature=f"sig_{trader[:4]}_{sol}",
    )


def make_monitor(clock=None, on_trigger=None, trade_source=None, tick_sec=None, **config):
    bus = NotificationBus()
    monitor = SniperMonitor(
        MonitorConfig(**config),
        SniperLedger(),
        bus,
        trade_source=trade_source,
        on_trigger=on_trigger,
        clock=clock or FakeClock(),
        tick_sec=tick_sec,
        poll_timeout_sec=0.05,
    )
    return monitor, bus


class TestWindow:
    def test_blocks_plus_grace(self):
        assert window_duration_sec(6) == pytest.approx(3.2)

    def test_blocks_capped(self):
        assert window_duration_sec(50) == pytest.approx(4.0)

    def test_explicit_seconds_win(self):
        assert window_duration_sec(6, 12.0) == 12.0

    def test_start_snapshot(self):
        monitor, bus = make_monitor(window_blocks=20)
        session = monitor.start_monitoring(MINT)
        assert session.window.window_blocks == 8
        assert session.expires_at == pytest.approx(1004.0)
        assert bus.recent(NotificationType.MONITORING_STARTED, MINT)

    def test_start_is_idempotent_while_monitoring(self):
        monitor, _ = make_monitor()
        first = monitor.start_monitoring(MINT)
        assert monitor.start_monitoring(MINT) is first


class TestExpiry:
    def test_expires_after_window(self):
        clock = FakeClock()
        monitor, bus = make_monitor(clock=clock)
        monitor.start_monitoring(MINT)

        clock.now = 1003.2
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.MONITORING
        assert view.remaining_ms == 0

        clock.now = 1003.3
        assert monitor.get_status(MINT).status == MonitorStatus.EXPIRED
        assert len(bus.recent(NotificationType.MONITOR_EXPIRED, MINT)) == 1

    def test_trade_after_expiry_ignored(self):
        clock = FakeClock()
        monitor, _ = make_monitor(clock=clock)
        monitor.start_monitoring(MINT)
        clock.now = 1010.0
        assert asyncio.run(monitor.observe_trade(trade(sol=50))) is None
        assert monitor.get_status(MINT).status == MonitorStatus.EXPIRED

    def test_unknown_asset_is_not_found(self):
        monitor, _ = make_monitor()
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.NOT_FOUND
        assert view.to_dict()["status"] == "not_found"


class TestTriggers:
    def test_large_sol_buy_triggers_once(self):
        calls = []

        async def on_trigger(session):
            calls.append(session.asset_id)

        clock = FakeClock()
        monitor, bus = make_monitor(clock=clock, on_trigger=on_trigger)
        monitor.start_monitoring(MINT)

        trigger = asyncio.run(monitor.observe_trade(trade(sol=6.0)))
        assert trigger.reason == SNIPER_DETECTED
        assert trigger.trader == SNIPER
        assert asyncio.run(monitor.observe_trade(trade(sol=20.0, trader=FRIEND))) is None

        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.TRIGGERED
        assert view.triggered is True
        assert view.trigger.sol_amount == 6.0
        assert calls == [MINT]
        assert len(bus.recent(NotificationType.SNIPER_DETECTED, MINT)) == 1

        # Terminal: never expires afterwards
        clock.now = 2000.0
        assert monitor.get_status(MINT).status == MonitorStatus.TRIGGERED

    def test_sol_threshold_is_strict(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        assert asyncio.run(monitor.observe_trade(trade(sol=5.0))) is None
        assert asyncio.run(monitor.observe_trade(trade(sol=5.01))) is not None

    def test_supply_threshold(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT, total_supply=1_000_000_000)
        assert asyncio.run(monitor.observe_trade(trade(sol=0.5, tokens=20_000_000))) is None
        trigger = asyncio.run(monitor.observe_trade(trade(sol=0.5, tokens=40_000_000)))
        assert trigger.supply_pct == pytest.approx(4.0)

    def test_supply_unknown_uses_sol_only(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        assert asyncio.run(monitor.observe_trade(trade(sol=1.0, tokens=900_000_000))) is None

    def test_large_early_sell_triggers(self):
        monitor, bus = make_monitor()
        monitor.start_monitoring(MINT)
        assert asyncio.run(monitor.observe_trade(trade(sol=1.0, side="sell", trader=DUMPER))) is None

        trigger = asyncio.run(monitor.observe_trade(trade(sol=9.0, side="sell", trader=DUMPER)))
        assert trigger.side == "sell"
        assert trigger.trader == DUMPER
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.TRIGGERED
        assert view.trigger.to_dict()["side"] == "sell"
        assert bus.recent(NotificationType.SNIPER_DETECTED, MINT)[0].data["side"] == "sell"

    def test_sell_supply_threshold(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT, total_supply=1_000_000_000)
        trigger = asyncio.run(monitor.observe_trade(trade(sol=0.5, tokens=50_000_000, side="sell")))
        assert trigger.supply_pct == pytest.approx(5.0)

    def test_ignored_wallets(self):
        monitor, _ = make_monitor(ignore_wallets=(FRIEND,))
        monitor.start_monitoring(MINT, ignore_wallets=[SNIPER])
        assert asyncio.run(monitor.observe_trade(trade(sol=9.0, trader=FRIEND))) is None
        assert asyncio.run(monitor.observe_trade(trade(sol=9.0, side="sell", trader=SNIPER))) is None
        assert asyncio.run(monitor.observe_trade(trade(sol=9.0, side="swap", trader=DUMPER))) is None
        assert monitor.get_status(MINT).status == MonitorStatus.MONITORING

    def test_slot_window(self):
        monitor, _ = make_monitor(window_blocks=6)
        monitor.start_monitoring(MINT, launch_slot=100)
        assert asyncio.run(monitor.observe_trade(trade(sol=9.0, slot=107))) is None
        assert asyncio.run(monitor.observe_trade(trade(sol=9.0, slot=106))) is not None

    def test_status_enriched_from_protection_event(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        trigger = asyncio.run(monitor.observe_trade(trade(sol=9.0)))
        monitor.ledger.record_protection(ProtectionEvent(
            MINT, SNIPER_DETECTED, 1001.0, trade=trigger, tokens_sold=123.0, sol_received=0.4, signature="sell_sig",
        ))
        view = monitor.get_status(MINT)
        assert view.trigger.tokens_sold == 123.0
        assert view.trigger.sol_received == 0.4


class TestStop:
    def test_stop_keeps_last_status(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        asyncio.run(monitor.observe_trade(trade(sol=9.0)))
        view = asyncio.run(monitor.stop_monitoring(MINT))
        assert view.status == MonitorStatus.TRIGGERED

    def test_stop_cancels_ticker(self):
        async def scenario():
            monitor, _ = make_monitor(tick_sec=0.01)
            monitor.start_monitoring(MINT)
            task = monitor._tasks[MINT]
            await monitor.stop_monitoring(MINT)
            return task, monitor

        task, monitor = asyncio.run(scenario())
        assert task.cancelled()
        assert monitor.get_status(MINT).status == MonitorStatus.MONITORING
        assert MINT not in monitor.sessions


class TestSessionTables:
    """Live sessions leave `sessions` on stop or completion; the last status stays queryable"""

    def test_trigger_moves_session_to_finished(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        asyncio.run(monitor.observe_trade(trade(sol=9.0)))
        assert MINT not in monitor.sessions
        assert monitor.finished[MINT].status == MonitorStatus.TRIGGERED
        assert monitor.active_sessions() == {}

    def test_expiry_moves_session_to_finished(self):
        clock = FakeClock()
        monitor, _ = make_monitor(clock=clock)
        monitor.start_monitoring(MINT)
        clock.now = 1010.0
        assert monitor.get_status(MINT).status == MonitorStatus.EXPIRED
        assert MINT not in monitor.sessions
        assert MINT in monitor.finished

    def test_stop_retires_without_changing_status(self):
        clock = FakeClock()
        monitor, _ = make_monitor(clock=clock)
        monitor.start_monitoring(MINT)
        asyncio.run(monitor.stop_monitoring(MINT))
        assert monitor.sessions == {}

        # Frozen: a stopped session is not expired later on
        clock.now = 2000.0
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.MONITORING
        assert view.remaining_ms == 0

    def test_restart_after_finish(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        asyncio.run(monitor.observe_trade(trade(sol=9.0)))
        session = monitor.start_monitoring(MINT)
        assert session.status == MonitorStatus.MONITORING
        assert MINT in monitor.sessions
        assert MINT not in monitor.finished

    def test_status_views_live_first(self):
        monitor, _ = make_monitor()
        monitor.start_monitoring(MINT)
        asyncio.run(monitor.observe_trade(trade(sol=9.0)))
        monitor.start_monitoring(FRIEND)
        views = monitor.status_views()
        assert [(v.asset_id, v.status) for v in views] == [
            (FRIEND, MonitorStatus.MONITORING),
            (MINT, MonitorStatus.TRIGGERED),
        ]
        assert monitor.status_views(finished_limit=0)[0].asset_id == FRIEND


class FakeTradeSource:
    def __init__(self, trades=(), error=None, delay=0.0):
        self.trades = list(trades)
        self.error = error
        self.delay = delay
        self.calls = []

    async def recent_trades(self, asset_id, since):
        self.calls.append((asset_id, since))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return [t for t in self.trades if t.asset_id == asset_id and t.timestamp > since]


class TestTicker:
    def run_for(self, source, seconds=0.1):
        async def scenario():
            monitor, bus = make_monitor(trade_source=source, tick_sec=0.01)
            monitor.start_monitoring(MINT)
            await asyncio.sleep(seconds)
            await monitor.stop_all()
            return monitor, bus

        return asyncio.run(scenario())

    def test_polled_trade_triggers(self):
        source = FakeTradeSource([trade(sol=1.0, ts=1000.2), trade(sol=8.0, ts=1000.4)])
        monitor, _ = self.run_for(source)
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.TRIGGERED
        assert view.trigger.sol_amount == 8.0

    def test_poll_timeout_is_transient(self):
        source = FakeTradeSource([trade(sol=8.0)], delay=1.0)
        monitor, _ = self.run_for(source)
        assert monitor.get_status(MINT).status == MonitorStatus.MONITORING
        assert source.calls

    def test_source_failure_moves_to_error(self):
        source = FakeTradeSource(error=RuntimeError("rpc down"))
        monitor, bus = self.run_for(source)
        view = monitor.get_status(MINT)
        assert view.status == MonitorStatus.ERROR
        assert "rpc down" in view.error
        assert bus.recent(NotificationType.MONITOR_ERROR, MINT)

    def test_failing_trigger_handler_leaves_ticker_clean(self):
        async def on_trigger(session):
            raise RuntimeError("sell route down")

        async def scenario():
            monitor, _ = make_monitor(
                trade_source=FakeTradeSource([trade(sol=8.0)]), tick_sec=0.01, on_trigger=on_trigger,
            )
            monitor.start_monitoring(MINT)
            task = monitor._tasks[MINT]
            await asyncio.sleep(0.1)
            await monitor.stop_all()
            return monitor, task

        monitor, task = asyncio.run(scenario())
        assert task.done() and not task.cancelled()
        assert task.exception() is None
        assert monitor.get_status(MINT).status == MonitorStatus.TRIGGERED
