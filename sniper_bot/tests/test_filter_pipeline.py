"""
Unit tests for the entry filter pipeline
"""

from dataclasses import replace

import pytest

from sniper_bot.config.policy import build_policy
from sniper_bot.core.filter_pipeline import FILTERS, apply_filters, evaluate
from sniper_bot.core.models import NewPoolEvent

MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
CREATOR = "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"


def make_event(**overrides):
    base = NewPoolEvent(
        venue="launchlab",
        pool_type="bonk-sol",
        asset_id=MINT,
        quote_asset_id="So11111111111111111111111111111111111111112",
        creation_slot=1000,
        creation_timestamp=0.0,
        creation_signature="sig",
        creator=CREATOR,
        initial_liquidity_usd=5000.0,
        observed_slot=1002,
    )
    return replace(base, **overrides)


def failed(event, policy):
    return evaluate(event, policy).failed


class TestPipeline:
    def test_default_event_passes(self):
        verdict = evaluate(make_event(), build_policy())
        assert verdict.passed is True
        assert len(verdict.results) == len(FILTERS)

    def test_every_filter_is_recorded_after_a_failure(self):
        event = make_event(pool_type="pump", initial_liquidity_usd=10.0)
        verdict = evaluate(event, build_policy())
        assert verdict.failed == ["pool_type", "liquidity"]
        assert len(verdict.results) == len(FILTERS)

    def test_apply_filters_attaches_trace(self):
        event = apply_filters(make_event(holder_count=5000), build_policy())
        assert event.passes_filters is False
        assert [r.filter for r in event.filter_results if not r.passed] == ["holders"]


class TestBlockDelay:
    def test_within_range(self):
        policy = build_policy(overrides={"timing": {"min_block_delay": 1, "max_block_delay": 3}})
        assert "block_delay" not in failed(make_event(observed_slot=1003), policy)
        assert "block_delay" in failed(make_event(observed_slot=1004), policy)
        assert "block_delay" in failed(make_event(observed_slot=1000), policy)

    def test_block_zero_allowed(self):
        policy = build_policy(overrides={"timing": {"snipe_block_zero": True, "min_block_delay": 2}})
        assert "block_delay" not in failed(make_event(observed_slot=1000), policy)

    def test_unknown_slot(self):
        assert "block_delay" not in failed(make_event(creation_slot=None), build_policy())
        policy = build_policy(overrides={"timing": {"min_block_delay": 1}})
        assert "block_delay" in failed(make_event(creation_slot=None), policy)


class TestRanges:
    """Unobserved values pass only when the lower bound is zero"""

    @pytest.mark.parametrize("liquidity, ok", [(1000.0, True), (1_000_000.0, True), (999.0, False), (2e6, False), (None, False)])
    def test_liquidity(self, liquidity, ok):
        assert ("liquidity" not in failed(make_event(initial_liquidity_usd=liquidity), build_policy())) is ok

    def test_holders_unobserved(self):
        assert "holders" not in failed(make_event(holder_count=None), build_policy())
        policy = build_policy(overrides={"filters": {"min_holders": 10}})
        assert "holders" in failed(make_event(holder_count=None), policy)
        assert "holders" not in failed(make_event(holder_count=10), policy)

    def test_dev_holdings(self):
        assert "dev_holdings" in failed(make_event(dev_holding_pct=95.0), build_policy())
        assert "dev_holdings" not in failed(make_event(dev_holding_pct=90.0), build_policy())

    def test_transaction_count_has_no_upper_bound(self):
        policy = build_policy(overrides={"filters": {"min_transaction_count": 5}})
        assert "transaction_count" not in failed(make_event(transaction_count=10_000), policy)
        assert "transaction_count" in failed(make_event(transaction_count=4), policy)

    def test_market_cap(self):
        policy = build_policy()
        assert "market_cap" in failed(make_event(initial_market_cap_usd=600_000.0), policy)
        assert "market_cap" not in failed(make_event(initial_market_cap_usd=0.0), policy)

    def test_market_cap_zero_cap_disables_upper_bound(self):
        policy = build_policy(overrides={"filters": {"max_market_cap_usd": 0}})
        assert "market_cap" not in failed(make_event(initial_market_cap_usd=50_000_000.0), policy)


class TestTargeting:
    def test_socials_required(self):
        policy = build_policy(overrides={"targeting": {"require_social_links": True}})
        assert "social_links" in failed(make_event(), policy)
        assert "social_links" not in failed(make_event(has_telegram=True), policy)

    def test_website_required(self):
        policy = build_policy(overrides={"targeting": {"require_website": True}})
        assert "website" in failed(make_event(), policy)
        assert "website" not in failed(make_event(has_website=True), policy)

    def test_verified_creator(self):
        policy = build_policy(overrides={"targeting": {"only_verified_devs": True}})
        assert "verified_creator" in failed(make_event(creator_verified=None), policy)
        assert "verified_creator" not in failed(make_event(creator_verified=True), policy)

    def test_blacklisted_creator(self):
        policy = build_policy(overrides={"safety": {"blacklist_creators": [CREATOR]}})
        assert "blacklist" in failed(make_event(), policy)
        assert "blacklist" not in failed(make_event(creator=None), policy)

    def test_blacklisted_token(self):
        policy = build_policy(overrides={"safety": {"blacklist_tokens": [MINT]}})
        assert "blacklist" in failed(make_event(), policy)
