"""
Auto-Sell Trigger Engine

Evaluates an open snipe on every price tick and decides whether to exit.

Order of evaluation (first match wins):
1. Anti-rug (dev dumped too much, or liquidity pulled)
2. Dev sold
3. Take profit   price >= entry * (1 + tp%)
4. Stop loss     price <= entry * (1 - sl%)
5. Trailing stop price <  peak  * (1 - trail%)
6. Time based    held for sell_after_seconds / sell_after_blocks

Anti-rug is armed even when auto-sell is disabled.
"""

import time
import logging
from typing import Optional

from sniper_bot.config.policy import SniperPolicy
from sniper_bot.constants import DUST_TOKEN_QTY, PRICE_EPSILON, SLOT_TIME_MS
from sniper_bot.core.models import (
    ActiveSnipe,
    AutoSellTrigger,
    ExitDecision,
    SellFill,
    SnipeStatus,
)

logger = logging.getLogger(__name__)


def clamp_percent(pct: float) -> float:
    return max(1.0, min(100.0, pct))


class TriggerEngine:
    """
    Stateless over positions: all per-position state lives on the
    ActiveSnipe, so one engine serves every open snipe.

    Usage:
        engine = TriggerEngine(policy)
        engine.arm(snipe)
        decision = engine.evaluate(snipe, price=1.8)
        if decision:
            fill = await gateway.sell(...)
            engine.apply_exit(snipe, decision, fill)
    """

    def __init__(self, policy: SniperPolicy):
        self.policy = policy

    def arm(self, snipe: ActiveSnipe) -> ActiveSnipe:
        """Set peak and exit thresholds from the entry fill."""
        sell = self.policy.auto_sell
        entry = snipe.entry_price

        snipe.peak_price = max(snipe.peak_price, entry)
        if snipe.initial_token_quantity <= 0:
            snipe.initial_token_quantity = snipe.token_quantity
        snipe.take_profit_price = entry * (1 + sell.take_profit_pct / 100)
        snipe.stop_loss_price = entry * (1 - sell.stop_loss_pct / 100)
        snipe.trailing_stop_price = self._trailing_price(snipe.peak_price)

        if sell.sell_after_seconds > 0:
            snipe.sell_after_timestamp = snipe.entry_timestamp + sell.sell_after_seconds
        if sell.sell_after_blocks > 0 and snipe.entry_slot is not None:
            snipe.sell_after_slot = snipe.entry_slot + sell.sell_after_blocks
        return snipe

    def _trailing_price(self, peak: float) -> Optional[float]:
        sell = self.policy.auto_sell
        if not sell.trailing_stop_enabled:
            return None
        return peak * (1 - sell.trailing_stop_pct / 100)

    def mark_price(self, snipe: ActiveSnipe, price: float):
        """Update valuation and ratchet the peak upwards."""
        if price > snipe.peak_price:
            snipe.peak_price = price
            snipe.trailing_stop_price = self._trailing_price(price)

        snipe.current_price = price
        snipe.current_value_sol = snipe.token_quantity * price
        cost = snipe.remaining_cost_basis_sol
        snipe.unrealized_pnl_sol = snipe.current_value_sol - cost
        snipe.unrealized_pnl_pct = (snipe.unrealized_pnl_sol / cost * 100) if cost > 0 else 0.0

    def evaluate(
        self,
        snipe: ActiveSnipe,
        price: Optional[float],
        now: Optional[float] = None,
        current_slot: Optional[int] = None,
    ) -> Optional[ExitDecision]:
        if snipe.status != SnipeStatus.SUCCESS:
            return None
        if price is None or price <= 0:
            return None

        now = now if now is not None else time.time()
        self.mark_price(snipe, price)

        sell = self.policy.auto_sell
        pct = clamp_percent(sell.sell_percent_on_trigger)

        rug_reason = self._anti_rug_reason(snipe)
        if rug_reason:
            return ExitDecision(AutoSellTrigger.ANTI_RUG, pct, price, rug_reason)

        if not sell.enabled:
            return None

        if sell.sell_on_dev_sell and snipe.dev_sold_pct > 0:
            return ExitDecision(
                AutoSellTrigger.DEV_SOLD, pct, price, f"creator sold {snipe.dev_sold_pct:.1f}%"
            )

        if snipe.take_profit_price is not None and price >= snipe.take_profit_price * (1 - PRICE_EPSILON):
            return ExitDecision(
                AutoSellTrigger.TAKE_PROFIT, pct, price, f"price {price:.10g} >= {snipe.take_profit_price:.10g}"
            )

        if snipe.stop_loss_price is not None and price <= snipe.stop_loss_price * (1 + PRICE_EPSILON):
            return ExitDecision(
                AutoSellTrigger.STOP_LOSS, pct, price, f"price {price:.10g} <= {snipe.stop_loss_price:.10g}"
            )

        trail = snipe.trailing_stop_price
        if trail is not None and price < trail * (1 - PRICE_EPSILON):
            return ExitDecision(
                AutoSellTrigger.TRAILING_STOP, pct, price,
                f"price {price:.10g} < {trail:.10g} (peak {snipe.peak_price:.10g})"
            )

        if self._time_expired(snipe, now, current_slot):
            return ExitDecision(AutoSellTrigger.TIME_BASED, pct, price, "hold time elapsed")

        return None

    def _anti_rug_reason(self, snipe: ActiveSnipe) -> Optional[str]:
        adv = self.policy.advanced
        if not adv.anti_rug_enabled:
            return None

        if snipe.dev_sold_pct > adv.anti_rug_max_dev_sell_pct:
            return f"creator sold {snipe.dev_sold_pct:.1f}% > {adv.anti_rug_max_dev_sell_pct:.1f}%"

        if snipe.last_liquidity_usd is not None and snipe.peak_liquidity_usd > 0:
            remaining = snipe.last_liquidity_usd / snipe.peak_liquidity_usd * 100
            if remaining < adv.anti_rug_min_liquidity_pct:
                return f"liquidity at {remaining:.1f}% of peak"
        return None

    def _time_expired(self, snipe: ActiveSnipe, now: float, current_slot: Optional[int]) -> bool:
        sell = self.policy.auto_sell
        if snipe.sell_after_timestamp is not None and now >= snipe.sell_after_timestamp:
            return True

        if sell.sell_after_blocks > 0:
            if current_slot is not None and snipe.sell_after_slot is not None:
                return current_slot >= snipe.sell_after_slot
            # No slot feed: estimate from wall clock
            elapsed_slots = (now - snipe.entry_timestamp) * 1000 / SLOT_TIME_MS
            return elapsed_slots >= sell.sell_after_blocks
        return False

    def apply_exit(self, snipe: ActiveSnipe, decision: ExitDecision, fill: SellFill) -> bool:
        """
        Book a sell fill against the snipe.

        Returns:
            True when the position is fully closed.
        """
        snipe.token_quantity = max(0.0, snipe.token_quantity - fill.token_quantity)
        snipe.realized_sol += fill.sol_received
        snipe.exit_price = fill.price
        snipe.exit_signature = fill.signature
        snipe.exit_trigger = decision.trigger

        if snipe.token_quantity <= DUST_TOKEN_QTY:
            snipe.token_quantity = 0.0
            snipe.status = SnipeStatus.SOLD
            snipe.exit_timestamp = fill.ts or time.time()
            snipe.realized_pnl_sol = snipe.realized_sol - snipe.entry_amount_sol
            snipe.realized_pnl_pct = (
                snipe.realized_pnl_sol / snipe.entry_amount_sol * 100 if snipe.entry_amount_sol > 0 else 0.0
            )
            snipe.current_value_sol = 0.0
            snipe.unrealized_pnl_sol = 0.0
            logger.info(
                f"💰 Closed {snipe.asset_id[:8]}... via {decision.trigger.value}: "
                f"PnL {snipe.realized_pnl_sol:+.4f} SOL ({snipe.realized_pnl_pct:+.1f}%)"
            )
            return True

        # Partial exit: rebase thresholds on the remaining size
        self.mark_price(snipe, fill.price)
        logger.info(
            f"📊 Partial exit {snipe.asset_id[:8]}... via {decision.trigger.value}: "
            f"{snipe.token_quantity:.4f} tokens left"
        )
        return False
