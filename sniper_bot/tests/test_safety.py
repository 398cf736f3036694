"""
Unit tests for SafetyGuard admission

Async paths are driven with asyncio.run inside plain tests.
"""

import asyncio
from datetime import date

import pytest

from sniper_bot.config.policy import build_policy
from sniper_bot.core.safety import BlacklistManager, SafetyGuard
from sniper_bot.exceptions import SafetyViolation

CREATOR = "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"


class FakeClock:
    def __init__(self, now=10_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeDay:
    def __init__(self):
        self.day = date(2025, 1, 1)

    def __call__(self):
        return self.day


def make_guard(clock=None, today=None, **safety):
    defaults = {"cooldown_between_snipes_sec": 0}
    defaults.update(safety)
    policy = build_policy(overrides={"safety": defaults})
    return SafetyGuard(policy, clock=clock or FakeClock(), today=today or FakeDay())


def admit(guard, asset_id, amount=0.5, creator=None):
    return asyncio.run(guard.admit(asset_id, creator, amount))


def rule_of(guard, asset_id, amount=0.5, creator=None):
    with pytest.raises(SafetyViolation) as exc:
        admit(guard, asset_id, amount, creator)
    return exc.value.rule


class TestBudget:
    def test_one_sol_budget_admits_two_half_sol_entries(self):
        guard = make_guard(daily_budget_sol=1.0, max_concurrent_snipes=10)
        admit(guard, "mint_a")
        admit(guard, "mint_b")
        assert rule_of(guard, "mint_c") == "daily_budget"
        assert guard.spent_today == pytest.approx(1.0)

    def test_float_accumulation_stays_within_budget(self):
        guard = make_guard(daily_budget_sol=0.3, max_single_snipe_sol=0.1, max_concurrent_snipes=10)
        for i in range(3):
            admit(guard, f"mint_{i}", amount=0.1)
        assert rule_of(guard, "mint_x", amount=0.1) == "daily_budget"

    def test_release_refunds_budget_and_slot(self):
        guard = make_guard(daily_budget_sol=0.5, max_concurrent_snipes=1)
        reservation = admit(guard, "mint_a")
        asyncio.run(guard.release(reservation))
        assert guard.spent_today == 0.0
        assert guard.open_count == 0
        admit(guard, "mint_b")

    def test_release_is_idempotent(self):
        guard = make_guard()
        reservation = admit(guard, "mint_a", amount=0.2)
        admit(guard, "mint_b", amount=0.2)
        asyncio.run(guard.release(reservation))
        asyncio.run(guard.release(reservation))
        assert guard.spent_today == pytest.approx(0.2)

    def test_close_keeps_spend_and_blocks_reentry(self):
        guard = make_guard(daily_budget_sol=1.0)
        reservation = admit(guard, "mint_a")
        asyncio.run(guard.close(reservation))
        assert guard.open_count == 0
        assert guard.spent_today == pytest.approx(0.5)
        assert rule_of(guard, "mint_a", amount=0.1) == "blacklist_token"

    def test_budget_resets_on_new_day(self):
        today = FakeDay()
        guard = make_guard(today=today, daily_budget_sol=0.5)
        admit(guard, "mint_a")
        assert rule_of(guard, "mint_b") == "daily_budget"

        today.day = date(2025, 1, 2)
        assert guard.spent_today == 0.0
        admit(guard, "mint_b")

    def test_yesterdays_release_does_not_refund_today(self):
        today = FakeDay()
        guard = make_guard(today=today, daily_budget_sol=1.0)
        reservation = admit(guard, "mint_a")
        today.day = date(2025, 1, 2)
        admit(guard, "mint_b")
        asyncio.run(guard.release(reservation))
        assert guard.spent_today == pytest.approx(0.5)


class TestLimits:
    def test_max_concurrent(self):
        guard = make_guard(max_concurrent_snipes=2, daily_budget_sol=5.0)
        admit(guard, "mint_a", 0.1)
        admit(guard, "mint_b", 0.1)
        assert rule_of(guard, "mint_c", 0.1) == "max_concurrent"

    def test_duplicate_asset(self):
        guard = make_guard()
        admit(guard, "mint_a", 0.1)
        assert rule_of(guard, "mint_a", 0.1) == "duplicate"

    def test_max_single(self):
        guard = make_guard(max_single_snipe_sol=0.2)
        assert rule_of(guard, "mint_a", 0.3) == "max_single"

    def test_cooldown(self):
        clock = FakeClock()
        guard = make_guard(clock=clock, cooldown_between_snipes_sec=5)
        admit(guard, "mint_a", 0.1)
        clock.now += 4
        assert rule_of(guard, "mint_b", 0.1) == "cooldown"
        clock.now += 1
        admit(guard, "mint_b", 0.1)

    def test_blacklists(self):
        guard = make_guard(blacklist_tokens=["bad_mint"], blacklist_creators=[CREATOR])
        assert rule_of(guard, "bad_mint", 0.1) == "blacklist_token"
        assert rule_of(guard, "mint_a", 0.1, creator=CREATOR) == "blacklist_creator"

    def test_rejection_reserves_nothing(self):
        guard = make_guard(max_single_snipe_sol=0.2)
        rule_of(guard, "mint_a", 0.3)
        assert guard.spent_today == 0.0
        assert guard.open_count == 0

    def test_concurrent_admissions_respect_budget(self):
        guard = make_guard(daily_budget_sol=1.0, max_concurrent_snipes=10)

        async def burst():
            results = await asyncio.gather(
                *(guard.admit(f"mint_{i}", None, 0.5) for i in range(5)),
                return_exceptions=True,
            )
            return [r for r in results if not isinstance(r, SafetyViolation)]

        assert len(asyncio.run(burst())) == 2


class TestEmergencyStop:
    def test_halts_admission(self):
        guard = make_guard()
        assert guard.engage_emergency_stop("test") is True
        assert rule_of(guard, "mint_a", 0.1) == "emergency_stop"
        assert guard.get_status()["halt_reason"] == "test"

        guard.resume_trading()
        admit(guard, "mint_a", 0.1)

    def test_disabled_by_policy(self):
        guard = make_guard(emergency_stop_enabled=False)
        assert guard.engage_emergency_stop() is False
        assert guard.trading_halted is False


class TestBlacklistManager:
    def test_timeout_expires(self):
        clock = FakeClock()
        blacklist = BlacklistManager(clock)
        blacklist.add_timeout("mint_a", duration_minutes=1)
        assert blacklist.is_blocked("mint_a") is True
        clock.now += 61
        assert blacklist.is_blocked("mint_a") is False
        assert "mint_a" not in blacklist.timeouts

    def test_permanent_block(self):
        blacklist = BlacklistManager()
        blacklist.add_permanent_block("mint_a")
        assert blacklist.is_blocked("mint_a") is True
        assert blacklist.is_blocked(None) is False
