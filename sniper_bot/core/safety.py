"""
Safety Guard - entry admission under budgets and kill switches

Every new snipe must be admitted here first. Admission is atomic: the
checks and the budget/slot reservation happen under one lock, so two
pools detected in the same instant can never both squeeze under a limit.

Checks (in order):
- Emergency stop
- Token / creator blacklists (policy + runtime timeouts)
- Already holding the asset
- Concurrency cap
- Daily budget (resets at the calendar-day rollover)
- Cooldown between snipes
- Max single snipe size

Exits never pass through here.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Optional, Set

from sniper_bot.config.policy import SniperPolicy
from sniper_bot.exceptions import SafetyViolation

logger = logging.getLogger(__name__)

BUDGET_EPSILON = 1e-12


class BlacklistManager:
    """Runtime blocks on top of the policy blacklists."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        # Maps key -> expiration_timestamp
        self.timeouts: Dict[str, float] = {}
        self.permanent_blocks: Set[str] = set()

    def add_timeout(self, key: str, duration_minutes: float = 60.0):
        self.timeouts[key] = self.clock() + duration_minutes * 60
        logger.info(f"🚫 Added timeout for {key[:8]}... ({duration_minutes}m)")

    def add_permanent_block(self, key: str):
        self.permanent_blocks.add(key)
        logger.info(f"🛑 Permanently blocked {key[:8]}...")

    def is_blocked(self, key: Optional[str]) -> bool:
        if not key:
            return False
        if key in self.permanent_blocks:
            return True
        expires = self.timeouts.get(key)
        if expires is None:
            return False
        if self.clock() < expires:
            return True
        del self.timeouts[key]
        return False

    def cleanup(self):
        now = self.clock()
        for key in [k for k, v in self.timeouts.items() if v <= now]:
            del self.timeouts[key]


@dataclass
class Reservation:
    """Budget and concurrency slot held by one admitted snipe."""
    asset_id: str
    amount_sol: float
    day: date
    admitted_at: float
    released: bool = False


class SafetyGuard:
    """
    Usage:
        guard = SafetyGuard(policy)
        try:
            reservation = await guard.admit(mint, creator, 0.1)
        except SafetyViolation as e:
            ...  # rejected, never retried
        ...
        await guard.release(reservation)   # buy failed: refund budget
        await guard.close(reservation)     # position exited: free slot
    """

    def __init__(
        self,
        policy: SniperPolicy,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
    ):
        self.policy = policy
        self.clock = clock
        self.today = today
        self.blacklist = BlacklistManager(clock)

        self._lock = asyncio.Lock()
        self._day = today()
        self._spent_today = 0.0
        self._open: Dict[str, Reservation] = {}
        self._last_admit_at: Optional[float] = None
        self.trading_halted = False
        self.halt_reason = ""

    # ------------------------------------------------------------------ state

    @property
    def spent_today(self) -> float:
        self._roll_day()
        return self._spent_today

    @property
    def open_count(self) -> int:
        return len(self._open)

    def _roll_day(self):
        today = self.today()
        if today != self._day:
            logger.info(f"📊 New trading day {today}: daily budget reset (spent {self._spent_today:.4f} SOL)")
            self._day = today
            self._spent_today = 0.0

    # -------------------------------------------------------------- admission

    def _check(self, asset_id: str, creator: Optional[str], amount_sol: float):
        safety = self.policy.safety
        now = self.clock()

        if self.trading_halted:
            raise SafetyViolation("Trading halted", rule="emergency_stop", reason=self.halt_reason)

        if asset_id in safety.blacklist_tokens or self.blacklist.is_blocked(asset_id):
            raise SafetyViolation("Token blacklisted", rule="blacklist_token", asset_id=asset_id)
        if creator and (creator in safety.blacklist_creators or self.blacklist.is_blocked(creator)):
            raise SafetyViolation("Creator blacklisted", rule="blacklist_creator", creator=creator)

        if asset_id in self._open:
            raise SafetyViolation("Already holding asset", rule="duplicate", asset_id=asset_id)

        if len(self._open) >= safety.max_concurrent_snipes:
            raise SafetyViolation(
                "Max concurrent snipes reached", rule="max_concurrent",
                open=len(self._open), limit=safety.max_concurrent_snipes
            )

        if self._spent_today + amount_sol > safety.daily_budget_sol + BUDGET_EPSILON:
            raise SafetyViolation(
                "Daily budget exceeded", rule="daily_budget",
                spent=round(self._spent_today, 9), amount=amount_sol, budget=safety.daily_budget_sol
            )

        if self._last_admit_at is not None:
            elapsed = now - self._last_admit_at
            if elapsed < safety.cooldown_between_snipes_sec:
                raise SafetyViolation(
                    "Cooldown active", rule="cooldown",
                    remaining_sec=round(safety.cooldown_between_snipes_sec - elapsed, 2)
                )

        if amount_sol > safety.max_single_snipe_sol + BUDGET_EPSILON:
            raise SafetyViolation(
                "Snipe exceeds max single size", rule="max_single",
                amount=amount_sol, limit=safety.max_single_snipe_sol
            )

    async def admit(self, asset_id: str, creator: Optional[str], amount_sol: float) -> Reservation:
        """
        Check every entry limit and reserve budget plus a slot.

        Raises:
            SafetyViolation: entry refused
        """
        async with self._lock:
            self._roll_day()
            try:
                self._check(asset_id, creator, amount_sol)
            except SafetyViolation as e:
                logger.warning(f"🛡️ Entry refused for {asset_id[:8]}...: {e}")
                raise

            now = self.clock()
            reservation = Reservation(asset_id, amount_sol, self._day, now)
            self._spent_today += amount_sol
            self._open[asset_id] = reservation
            self._last_admit_at = now
            logger.debug(
                f"Admitted {asset_id[:8]}... {amount_sol:.4f} SOL "
                f"(spent {self._spent_today:.4f}/{self.policy.safety.daily_budget_sol} SOL, "
                f"{len(self._open)}/{self.policy.safety.max_concurrent_snipes} slots)"
            )
            return reservation

    async def release(self, reservation: Reservation):
        """Refund a reservation whose buy never filled."""
        async with self._lock:
            if reservation.released:
                return
            reservation.released = True
            self._open.pop(reservation.asset_id, None)
            self._roll_day()
            if reservation.day == self._day:
                self._spent_today = max(0.0, self._spent_today - reservation.amount_sol)
            logger.info(f"🔄 Released reservation for {reservation.asset_id[:8]}... ({reservation.amount_sol:.4f} SOL)")

    async def close(self, reservation: Reservation, reentry_timeout_minutes: float = 60.0):
        """Free the slot of an exited position; spend stays booked."""
        async with self._lock:
            if reservation.released:
                return
            reservation.released = True
            self._open.pop(reservation.asset_id, None)
        if reentry_timeout_minutes > 0:
            self.blacklist.add_timeout(reservation.asset_id, reentry_timeout_minutes)

    # ------------------------------------------------------------ kill switch

    def engage_emergency_stop(self, reason: str = "manual") -> bool:
        if not self.policy.safety.emergency_stop_enabled:
            logger.warning("⚠️ Emergency stop requested but disabled by policy")
            return False
        self.trading_halted = True
        self.halt_reason = reason
        logger.critical(f"🚨 EMERGENCY STOP engaged: {reason}")
        return True

    def resume_trading(self):
        self.trading_halted = False
        self.halt_reason = ""
        logger.info("✅ Trading resumed")

    def get_status(self) -> dict:
        safety = self.policy.safety
        return {
            "trading_halted": self.trading_halted,
            "halt_reason": self.halt_reason,
            "spent_today_sol": self.spent_today,
            "daily_budget_sol": safety.daily_budget_sol,
            "open_snipes": len(self._open),
            "max_concurrent_snipes": safety.max_concurrent_snipes,
            "last_admit_at": self._last_admit_at,
        }
