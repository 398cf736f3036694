"""
Venue grammars.

Each venue's markers, extraction patterns and quote assets are data, kept
in a versioned YAML file so that new launch programs can be supported
without touching the classifier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from sniper_bot.exceptions import VenueGrammarException

logger = logging.getLogger(__name__)

DEFAULT_VENUES_PATH = Path(__file__).resolve().parent.parent / "config" / "venues.yaml"

# A marker matches a line if every substring it lists is on that line
Marker = tuple[str, ...]


@dataclass(frozen=True)
class QuoteAsset:
    mint: str
    pool_type: str


@dataclass(frozen=True)
class VenueGrammar:
    key: str
    name: str
    program_id: str
    init_markers: tuple[Marker, ...]
    success_markers: tuple[Marker, ...]
    mint_pattern: re.Pattern
    creator_pattern: re.Pattern
    quotes: tuple[QuoteAsset, ...]
    primary_quote: str
    deny_list: frozenset[str]
    deny_prefixes: tuple[str, ...]
    version: int = 0

    def pool_type_for(self, quote_mint: str | None) -> str:
        for quote in self.quotes:
            if quote.mint == quote_mint:
                return quote.pool_type
        return self.quotes[0].pool_type if self.quotes else self.key


@dataclass(frozen=True)
class VenueRegistry:
    version: int
    venues: dict[str, VenueGrammar]

    def get(self, key: str) -> VenueGrammar:
        try:
            return self.venues[key]
        except KeyError:
            raise VenueGrammarException("Unknown venue", venue=key, known=sorted(self.venues)) from None

    def by_program(self, program_id: str) -> VenueGrammar | None:
        for grammar in self.venues.values():
            if grammar.program_id == program_id:
                return grammar
        return None

    def __contains__(self, key: str) -> bool:
        return key in self.venues

    def __iter__(self):
        return iter(self.venues.values())


def _markers(raw: Any, venue: str, field_name: str) -> tuple[Marker, ...]:
    if not raw:
        raise VenueGrammarException("Venue grammar needs at least one marker", venue=venue, field=field_name)
    markers = []
    for item in raw:
        if isinstance(item, str):
            markers.append((item,))
        elif isinstance(item, (list, tuple)) and item and all(isinstance(s, str) for s in item):
            markers.append(tuple(item))
        else:
            raise VenueGrammarException("Invalid marker", venue=venue, field=field_name, marker=item)
    return tuple(markers)


def _pattern(raw: Any, venue: str, field_name: str) -> re.Pattern:
    try:
        pattern = re.compile(raw, re.IGNORECASE)
    except (re.error, TypeError) as e:
        raise VenueGrammarException("Invalid pattern", venue=venue, field=field_name, error=str(e)) from e
    if pattern.groups < 1:
        raise VenueGrammarException("Pattern needs a capture group", venue=venue, field=field_name)
    return pattern


def parse_venues(data: dict[str, Any]) -> VenueRegistry:
    if not isinstance(data, dict) or not isinstance(data.get("venues"), dict):
        raise VenueGrammarException("Venue file must define a 'venues' mapping")

    version = int(data.get("version", 0))
    deny_list = frozenset(str(a) for a in data.get("deny_list") or [])
    deny_prefixes = tuple(str(p) for p in data.get("deny_prefixes") or [])

    venues: dict[str, VenueGrammar] = {}
    for key, raw in data["venues"].items():
        if not isinstance(raw, dict):
            raise VenueGrammarException("Venue entry must be a mapping", venue=key)
        try:
            program_id = str(raw["program_id"])
            quotes = tuple(
                QuoteAsset(mint=str(q["mint"]), pool_type=str(q["pool_type"]))
                for q in raw.get("quotes") or []
            )
        except (KeyError, TypeError) as e:
            raise VenueGrammarException("Venue entry is missing a field", venue=key, error=str(e)) from e

        primary = str(raw.get("primary_quote") or (quotes[0].mint if quotes else ""))
        if not primary:
            raise VenueGrammarException("Venue needs a primary quote", venue=key)

        venues[key] = VenueGrammar(
            key=key,
            name=str(raw.get("name", key)),
            program_id=program_id,
            init_markers=_markers(raw.get("init_markers"), key, "init_markers"),
            success_markers=_markers(raw.get("success_markers"), key, "success_markers"),
            mint_pattern=_pattern(raw.get("mint_pattern"), key, "mint_pattern"),
            creator_pattern=_pattern(raw.get("creator_pattern"), key, "creator_pattern"),
            quotes=quotes,
            primary_quote=primary,
            deny_list=deny_list,
            deny_prefixes=deny_prefixes,
            version=version,
        )

    return VenueRegistry(version=version, venues=venues)


def load_venues(path: str | Path | None = None) -> VenueRegistry:
    """Load venue grammars from YAML (defaults to the bundled file)."""
    venue_path = Path(path) if path else DEFAULT_VENUES_PATH
    try:
        with open(venue_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise VenueGrammarException("Cannot read venue grammar file", path=str(venue_path), error=str(e)) from e

    registry = parse_venues(data)
    logger.info(
        f"📜 Venue grammars v{registry.version} loaded: {', '.join(sorted(registry.venues))}"
    )
    return registry
