"""
Entry filter pipeline.

Every filter runs and is recorded, even after one has failed, so a
rejected pool always carries the full reason list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from sniper_bot.config.policy import SniperPolicy
from sniper_bot.core.models import FilterResult, NewPoolEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterVerdict:
    passed: bool
    results: tuple[FilterResult, ...]

    @property
    def failed(self) -> list[str]:
        return [r.filter for r in self.results if not r.passed]


def _range_check(name: str, value, low, high) -> FilterResult:
    """Inclusive range; an unobserved value passes only without a lower bound."""
    threshold = (low, high)
    if value is None:
        return FilterResult(name, passed=not low, value=None, threshold=threshold)
    passed = value >= low and (high is None or value <= high)
    return FilterResult(name, passed=passed, value=value, threshold=threshold)


def check_pool_type(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    pools = policy.targeting.target_pools
    return FilterResult("pool_type", event.pool_type in pools, event.pool_type, ", ".join(pools))


def check_block_delay(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    timing = policy.timing
    delay = event.block_delay
    if delay == 0 and timing.snipe_block_zero:
        return FilterResult("block_delay", True, 0, "block zero")
    return _range_check("block_delay", delay, timing.min_block_delay, timing.max_block_delay)


def check_holders(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    f = policy.filters
    return _range_check("holders", event.holder_count, f.min_holders, f.max_holders)


def check_dev_holdings(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    f = policy.filters
    return _range_check("dev_holdings", event.dev_holding_pct, f.min_dev_holdings_pct, f.max_dev_holdings_pct)


def check_transaction_count(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    return _range_check("transaction_count", event.transaction_count, policy.filters.min_transaction_count, None)


def check_liquidity(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    f = policy.filters
    return _range_check("liquidity", event.initial_liquidity_usd, f.min_liquidity_usd, f.max_liquidity_usd)


def check_market_cap(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    f = policy.filters
    # A zero market cap is an unpriced pool, same as unobserved
    value = event.initial_market_cap_usd or None
    return _range_check("market_cap", value, f.min_market_cap_usd, f.max_market_cap_usd or None)


def check_social_links(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    has_social = event.has_twitter or event.has_telegram
    required = policy.targeting.require_social_links
    return FilterResult("social_links", has_social or not required, has_social, required)


def check_website(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    required = policy.targeting.require_website
    return FilterResult("website", event.has_website or not required, event.has_website, required)


def check_verified_creator(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    required = policy.targeting.only_verified_devs
    return FilterResult("verified_creator", bool(event.creator_verified) or not required, event.creator_verified, required)


def check_blacklist(event: NewPoolEvent, policy: SniperPolicy) -> FilterResult:
    safety = policy.safety
    listed = event.asset_id in safety.blacklist_tokens or (
        event.creator is not None and event.creator in safety.blacklist_creators
    )
    return FilterResult("blacklist", not listed, listed, False)


FILTERS = (
    check_pool_type,
    check_block_delay,
    check_holders,
    check_dev_holdings,
    check_transaction_count,
    check_liquidity,
    check_market_cap,
    check_social_links,
    check_website,
    check_verified_creator,
    check_blacklist,
)


def evaluate(event: NewPoolEvent, policy: SniperPolicy) -> FilterVerdict:
    results = tuple(check(event, policy) for check in FILTERS)
    return FilterVerdict(passed=all(r.passed for r in results), results=results)


def apply_filters(event: NewPoolEvent, policy: SniperPolicy) -> NewPoolEvent:
    """Return the event with its verdict and filter trace attached."""
    verdict = evaluate(event, policy)
    if verdict.passed:
        logger.info(f"✅ Filters passed for {event.asset_id[:8]}...")
    else:
        logger.info(f"❌ Filtered {event.asset_id[:8]}...: {', '.join(verdict.failed)}")
    return replace(event, passes_filters=verdict.passed, filter_results=verdict.results)
