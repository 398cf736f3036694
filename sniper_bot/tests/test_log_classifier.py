"""
Unit tests for new-pool log classification

Covers:
1. Marker detection (init + success both required)
2. Address extraction order and false-positive guards
3. Quote priority and pool type
4. logsNotification parsing and subscription routing
"""

import json

import pytest

from sniper_bot.core.log_classifier import (
    LogBatch,
    LogClassifier,
    classify,
    extract_asset_id,
    extract_creator,
    has_marker,
    is_valid_address,
    parse_logs_notification,
)
from sniper_bot.core.log_feed import LogsFeed
from sniper_bot.core.venues import load_venues, parse_venues
from sniper_bot.exceptions import VenueGrammarException

LAUNCHLAB = "LanMV9sAd7wArD4vJFi2qDdfnVhFxYSUg6eADduJ3uj"
PUMP = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
WSOL = "So11111111111111111111111111111111111111112"
USD1 = "USD1ttGY1N17NEEHLmELoaybftRBUSErhqYiQzvEmuB"

MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
OTHER_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
CREATOR = "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5"

# Longer than any address: a transaction signature
SIGNATURE = "4" + "xY7kQ2mN9pR3sT5vW8zA" * 4


@pytest.fixture(scope="module")
def registry():
    return load_venues()


@pytest.fixture(scope="module")
def launchlab(registry):
    return registry.get("launchlab")


def launch_logs(*body):
    return [
        f"Program {LAUNCHLAB} invoke [1]",
        "Program log: Instruction: Initialize",
        *body,
        f"Program {LAUNCHLAB} consumed 48211 of 200000 compute units",
        f"Program {LAUNCHLAB} success",
    ]


class TestMarkers:
    """Both an init marker and a success marker are required"""

    def test_initialize_with_mint_is_new_pool(self, launchlab):
        """Initialize + success + mint line yields the mint"""
        result = classify(launchlab, launch_logs(f"Program log: mint: {MINT}"))
        assert result.is_new_pool is True
        assert result.asset_id == MINT
        assert result.venue == "launchlab"

    def test_missing_success_line(self, launchlab):
        logs = launch_logs(f"Program log: mint: {MINT}")[:-1]
        assert classify(launchlab, logs).is_new_pool is False

    def test_missing_init_marker(self, launchlab):
        logs = [
            f"Program {LAUNCHLAB} invoke [1]",
            "Program log: Instruction: BuyExactIn",
            f"Program log: mint: {MINT}",
            f"Program {LAUNCHLAB} success",
        ]
        assert classify(launchlab, logs).is_new_pool is False

    def test_empty_batch(self, launchlab):
        result = classify(launchlab, [])
        assert result.is_new_pool is False
        assert result.asset_id is None

    def test_initialize_variant_matches_by_substring(self, launchlab):
        logs = [
            f"Program {LAUNCHLAB} invoke [1]",
            "Program log: Instruction: InitializeV3",
            f"Program log: mint: {MINT}",
            f"Program {LAUNCHLAB} success",
        ]
        assert classify(launchlab, logs).is_new_pool is True

    def test_multi_part_marker_must_share_a_line(self):
        marker = ((LAUNCHLAB, "Instruction: Initialize"),)
        assert has_marker([f"Program {LAUNCHLAB} Instruction: Initialize"], marker) is True
        assert has_marker([f"Program {LAUNCHLAB} invoke [1]", "Instruction: Initialize"], marker) is False


class TestAddressExtraction:
    """Heuristic extraction must not pick up program accounts or signature slices"""

    def test_only_deny_listed_addresses(self, launchlab):
        logs = launch_logs(
            f"Program log: token: {WSOL}",
            "Program log: mint: TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
            "Program ComputeBudget111111111111111111111111111111 invoke [1]",
        )
        result = classify(launchlab, logs)
        assert result.asset_id is None
        assert result.is_new_pool is False

    def test_signature_is_never_sliced_into_an_address(self, launchlab):
        logs = launch_logs(f"Program log: signature {SIGNATURE}")
        assert extract_asset_id(logs, launchlab) is None
        assert classify(launchlab, logs).is_new_pool is False

    def test_keyed_match_wins_over_program_log(self, launchlab):
        logs = launch_logs(
            f"Program log: pool {OTHER_MINT} created",
            f"Program log: base_mint: {MINT}",
        )
        assert extract_asset_id(logs, launchlab) == MINT

    def test_program_log_fallback(self, launchlab):
        logs = launch_logs(f"Program log: pool created for {MINT}")
        assert extract_asset_id(logs, launchlab) == MINT

    def test_program_log_fallback_skips_instruction_lines(self, launchlab):
        logs = launch_logs(
            f"Program log: Instruction: Route {OTHER_MINT}",
            f"Program log: pool created for {MINT}",
        )
        assert extract_asset_id(logs, launchlab) == MINT

    def test_whole_batch_fallback(self, launchlab):
        logs = launch_logs(f"Program {MINT} invoke [2]")
        assert extract_asset_id(logs, launchlab) == MINT

    def test_is_valid_address(self, launchlab):
        assert is_valid_address(MINT, launchlab) is True
        assert is_valid_address(WSOL, launchlab) is False
        assert is_valid_address("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEc", launchlab) is False
        assert is_valid_address("A" * 44, launchlab) is False
        assert is_valid_address(MINT[:20], launchlab) is False
        assert is_valid_address(MINT + "0", launchlab) is False
        assert is_valid_address("", launchlab) is False

    def test_creator_extracted(self, launchlab):
        logs = launch_logs(f"Program log: mint: {MINT}", f"Program log: creator: {CREATOR}")
        result = classify(launchlab, logs)
        assert result.creator == CREATOR

    def test_creator_never_equals_asset(self, launchlab):
        logs = launch_logs(f"Program log: mint: {MINT}", f"Program log: payer: {MINT}")
        assert extract_creator(logs, launchlab, MINT) is None


class TestQuoteAsset:
    """Quote priority follows the grammar order; WSOL first"""

    def test_no_quote_in_logs_uses_primary(self, launchlab):
        result = classify(launchlab, launch_logs(f"Program log: mint: {MINT}"))
        assert result.quote_asset_id == WSOL
        assert result.pool_type == "bonk-sol"

    def test_usd1_quote(self, launchlab):
        result = classify(launchlab, launch_logs(f"Program log: mint: {MINT}", f"Program log: quote {USD1}"))
        assert result.quote_asset_id == USD1
        assert result.pool_type == "bonk-usd1"

    def test_wsol_wins_when_both_present(self, launchlab):
        logs = launch_logs(
            f"Program log: mint: {MINT}",
            f"Program log: quote {USD1}",
            f"Program log: vault {WSOL}",
        )
        assert classify(launchlab, logs).pool_type == "bonk-sol"


class TestPumpGrammar:
    def test_create_detected(self, registry):
        logs = [
            f"Program {PUMP} invoke [1]",
            "Program log: Instruction: Create",
            f"Program log: mint: {MINT}",
            f"Program log: user: {CREATOR}",
            f"Program {PUMP} success",
        ]
        result = classify(registry.get("pump"), logs)
        assert result.is_new_pool is True
        assert result.pool_type == "pump"
        assert result.creator == CREATOR

    def test_buy_is_not_a_launch(self, registry):
        logs = [
            f"Program {PUMP} invoke [1]",
            "Program log: Instruction: Buy",
            f"Program log: mint: {MINT}",
            f"Program {PUMP} success",
        ]
        assert classify(registry.get("pump"), logs).is_new_pool is False


class TestLogClassifier:
    def test_counts_batches_and_detections(self, registry):
        classifier = LogClassifier(registry)
        classifier.classify_batch(LogBatch("launchlab", tuple(launch_logs(f"Program log: mint: {MINT}"))))
        classifier.classify_batch(LogBatch("launchlab", ("Program log: nothing",)))
        assert classifier.batches_seen == 2
        assert classifier.pools_detected == 1

    def test_unknown_venue(self, registry):
        result = LogClassifier(registry).classify_batch(LogBatch("orca", tuple(launch_logs(f"mint: {MINT}"))))
        assert result.is_new_pool is False


class TestVenueGrammarFile:
    def test_bundled_grammar(self, registry):
        assert registry.version >= 1
        assert "launchlab" in registry
        assert registry.by_program(PUMP).key == "pump"
        assert registry.by_program(WSOL) is None

    def test_unknown_venue_raises(self, registry):
        with pytest.raises(VenueGrammarException):
            registry.get("orca")

    def test_pattern_needs_capture_group(self):
        data = {
            "venues": {
                "x": {
                    "program_id": PUMP,
                    "init_markers": ["Create"],
                    "success_markers": ["success"],
                    "mint_pattern": "mint: [1-9A-HJ-NP-Za-km-z]+",
                    "creator_pattern": "creator: ([1-9A-HJ-NP-Za-km-z]+)",
                    "quotes": [{"mint": WSOL, "pool_type": "pump"}],
                }
            }
        }
        with pytest.raises(VenueGrammarException):
            parse_venues(data)

    def test_markers_required(self):
        data = {"venues": {"x": {"program_id": PUMP, "init_markers": [], "quotes": [{"mint": WSOL, "pool_type": "pump"}]}}}
        with pytest.raises(VenueGrammarException):
            parse_venues(data)


def notification(logs, subscription=7, err=None, slot=250_000_000):
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "result": {
                "context": {"slot": slot},
                "value": {"signature": SIGNATURE, "err": err, "logs": logs},
            },
            "subscription": subscription,
        },
    }


class TestNotificationParsing:
    def test_parses_batch(self):
        batch = parse_logs_notification(notification(["Program log: hi"]), "launchlab")
        assert batch.venue == "launchlab"
        assert batch.logs == ("Program log: hi",)
        assert batch.signature == SIGNATURE
        assert batch.slot == 250_000_000

    def test_failed_transaction_dropped(self):
        assert parse_logs_notification(notification(["x"], err={"InstructionError": [0, "Custom"]}), "pump") is None

    def test_empty_logs_dropped(self):
        assert parse_logs_notification(notification([]), "pump") is None
        assert parse_logs_notification({"jsonrpc": "2.0", "id": 1, "result": 7}, "pump") is None


class TestLogsFeedRouting:
    """Subscription acks map subscription ids back to venues"""

    def test_subscribe_requests(self, registry):
        feed = LogsFeed("wss://example.invalid", registry)
        requests = feed.subscribe_requests()
        assert [r["id"] for r in requests] == list(range(1, len(requests) + 1))
        programs = {r["params"][0]["mentions"][0] for r in requests}
        assert LAUNCHLAB in programs and PUMP in programs

    def test_ack_then_notification(self, registry):
        feed = LogsFeed("wss://example.invalid", [registry.get("launchlab"), registry.get("pump")])
        feed.subscribe_requests()

        assert feed.handle_message(json.dumps({"jsonrpc": "2.0", "id": 2, "result": 99})) is None
        batch = feed.handle_message(json.dumps(notification(["Program log: x"], subscription=99)))
        assert batch.venue == "pump"

    def test_unknown_subscription_and_garbage(self, registry):
        feed = LogsFeed("wss://example.invalid", [registry.get("pump")])
        feed.subscribe_requests()
        assert feed.handle_message(json.dumps(notification(["x"], subscription=5))) is None
        assert feed.handle_message("not json") is None
