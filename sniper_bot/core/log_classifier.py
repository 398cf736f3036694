"""
Log Classifier for new-pool detection

Decides from a single transaction's log lines whether a venue just
created a new pool, and extracts the launched asset, its quote asset and
the creator.

Detection is heuristic: program logs are free text, so every extracted
address is checked against the venue deny-list and must decode to a
32-byte public key. Anything ambiguous is reported as "not a new pool"
rather than raised.
"""

import re
import time
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from sniper_bot.core.venues import VenueGrammar, VenueRegistry

logger = logging.getLogger(__name__)

_B58 = "1-9A-HJ-NP-Za-km-z"
# Whole address-shaped tokens only, never a slice of a longer base58 run (signatures)
ADDRESS_RE = re.compile(rf"(?<![{_B58}])([{_B58}]{{32,44}})(?![{_B58}])")
FULL_ADDRESS_RE = re.compile(rf"^[{_B58}]{{32,44}}$")
REPEATED_CHAR_RE = re.compile(r"(.)\1{9,}")

PROGRAM_LOG_PREFIX = "Program log: "


@dataclass(frozen=True)
class LogBatch:
    """All log lines emitted by one transaction, tagged with its venue."""
    venue: str
    logs: Tuple[str, ...]
    signature: str = ""
    slot: Optional[int] = None
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ClassificationResult:
    is_new_pool: bool
    asset_id: Optional[str] = None
    quote_asset_id: Optional[str] = None
    creator: Optional[str] = None
    venue: str = ""
    pool_type: str = ""


def _line_has(line: str, marker: Tuple[str, ...]) -> bool:
    return all(part in line for part in marker)


def has_marker(logs: Sequence[str], markers: Iterable[Tuple[str, ...]]) -> bool:
    markers = tuple(markers)
    return any(_line_has(line, marker) for line in logs for marker in markers)


def is_valid_address(candidate: str, grammar: VenueGrammar) -> bool:
    """Shape, deny-list and 32-byte decode check for an extracted address."""
    if not candidate or not FULL_ADDRESS_RE.match(candidate):
        return False
    if candidate in grammar.deny_list:
        return False
    if REPEATED_CHAR_RE.search(candidate):
        return False
    if any(candidate.startswith(prefix) for prefix in grammar.deny_prefixes):
        return False
    try:
        Pubkey.from_string(candidate)
    except ValueError:
        return False
    return True


def _first_valid(candidates: Iterable[str], grammar: VenueGrammar, exclude: Optional[str] = None) -> Optional[str]:
    for candidate in candidates:
        if candidate != exclude and is_valid_address(candidate, grammar):
            return candidate
    return None


def _keyed_candidates(logs: Sequence[str], pattern: re.Pattern) -> List[str]:
    found = []
    for line in logs:
        for match in pattern.finditer(line):
            found.append(match.group(1))
    return found


def _program_log_candidates(logs: Sequence[str]) -> List[str]:
    found = []
    for line in logs:
        if line.startswith(PROGRAM_LOG_PREFIX) and "Instruction" not in line:
            found.extend(ADDRESS_RE.findall(line))
    return found


def _batch_candidates(logs: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for line in logs:
        for candidate in ADDRESS_RE.findall(line):
            if candidate not in seen:
                seen.add(candidate)
                ordered.append(candidate)
    return ordered


def extract_asset_id(logs: Sequence[str], grammar: VenueGrammar) -> Optional[str]:
    """Key-value match, then program-emitted lines, then the whole batch."""
    for stage in (
        _keyed_candidates(logs, grammar.mint_pattern),
        _program_log_candidates(logs),
        _batch_candidates(logs),
    ):
        asset_id = _first_valid(stage, grammar)
        if asset_id:
            return asset_id
    return None


def extract_quote_asset(logs: Sequence[str], grammar: VenueGrammar) -> str:
    text = "\n".join(logs)
    for quote in grammar.quotes:
        if quote.mint in text:
            return quote.mint
    return grammar.primary_quote


def extract_creator(logs: Sequence[str], grammar: VenueGrammar, asset_id: Optional[str] = None) -> Optional[str]:
    return _first_valid(_keyed_candidates(logs, grammar.creator_pattern), grammar, exclude=asset_id)


def classify(grammar: VenueGrammar, logs: Sequence[str]) -> ClassificationResult:
    """
    Classify one transaction's logs against a venue grammar.

    Pure: no I/O, no state.

    Returns:
        ClassificationResult; is_new_pool is True only when both an init
        marker and a success marker are present and a valid asset id was
        extracted.
    """
    if not logs:
        return ClassificationResult(is_new_pool=False, venue=grammar.key)

    if not has_marker(logs, grammar.init_markers) or not has_marker(logs, grammar.success_markers):
        return ClassificationResult(is_new_pool=False, venue=grammar.key)

    asset_id = extract_asset_id(logs, grammar)
    if asset_id is None:
        return ClassificationResult(is_new_pool=False, venue=grammar.key)

    quote = extract_quote_asset(logs, grammar)
    return ClassificationResult(
        is_new_pool=True,
        asset_id=asset_id,
        quote_asset_id=quote,
        creator=extract_creator(logs, grammar, asset_id),
        venue=grammar.key,
        pool_type=grammar.pool_type_for(quote),
    )


def parse_logs_notification(message: dict, venue: str) -> Optional[LogBatch]:
    """
    Turn a websocket ``logsNotification`` into a LogBatch.

    Returns None for subscription acks, empty payloads and failed
    transactions.
    """
    params = message.get("params") or {}
    result = params.get("result") or {}
    if not result:
        return None

    value = result.get("value") or {}
    if value.get("err") is not None:
        return None

    logs = value.get("logs") or []
    if not logs:
        return None

    context = result.get("context") or {}
    return LogBatch(
        venue=venue,
        logs=tuple(str(line) for line in logs),
        signature=value.get("signature") or result.get("signature", ""),
        slot=context.get("slot"),
    )


class LogClassifier:
    """Classifies LogBatches using a venue grammar registry."""

    def __init__(self, registry: VenueRegistry):
        self.registry = registry
        self.batches_seen = 0
        self.pools_detected = 0

    def classify_batch(self, batch: LogBatch) -> ClassificationResult:
        self.batches_seen += 1
        if batch.venue not in self.registry:
            logger.debug(f"Skipping batch for unknown venue {batch.venue}")
            return ClassificationResult(is_new_pool=False, venue=batch.venue)

        result = classify(self.registry.get(batch.venue), batch.logs)
        if result.is_new_pool:
            self.pools_detected += 1
            logger.info(
                f"🎯 New {result.pool_type} pool: {result.asset_id[:8]}... "
                f"(quote {result.quote_asset_id[:4]}, sig {batch.signature[:12]})"
            )
        return result
