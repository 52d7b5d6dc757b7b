"""Fuzzy plugin search across registered marketplaces."""

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from codex_market.config.parser import ConfigError
from codex_market.config.schemas import PluginEntry
from codex_market.core.marketplace import MarketplaceRegistry

logger = logging.getLogger(__name__)

# Minimum similarity for a non-substring match to count.
MATCH_CUTOFF = 0.6

WORD_PATTERN = re.compile(r"[a-z0-9]+")

# Name matches rank above tag/keyword matches, which rank above prose.
FIELD_WEIGHTS = {
    "name": 3.0,
    "tags": 2.0,
    "keywords": 2.0,
    "category": 1.5,
    "description": 1.0,
}


@dataclass
class SearchResult:
    """A plugin matching a search query."""

    plugin: PluginEntry
    marketplace: str
    score: float

    @property
    def plugin_id(self) -> str:
        return f"{self.plugin.name}@{self.marketplace}"


def _field_terms(entry: PluginEntry) -> dict[str, list[str]]:
    return {
        "name": [entry.name],
        "tags": entry.tags,
        "keywords": entry.keywords,
        "category": [entry.category] if entry.category else [],
        "description": [entry.description] if entry.description else [],
    }


def term_score(query: str, term: str) -> float:
    """Score one searchable term against a lowercased query.

    An exact match scores 2, a substring match between 1 and 2, and a fuzzy
    match of the whole term or one of its words scores its similarity ratio.
    Anything below ``MATCH_CUTOFF`` scores 0.
    """
    term = term.lower()
    if query == term:
        return 2.0
    if query in term:
        return 1.0 + len(query) / len(term)

    candidates = [term, *WORD_PATTERN.findall(term)]
    best = max(SequenceMatcher(None, query, c).ratio() for c in candidates)
    return best if best >= MATCH_CUTOFF else 0.0


def score_plugin(entry: PluginEntry, query: str) -> float:
    """Best weighted score over a plugin's name, tags, keywords, category and description."""
    query = query.strip().lower()
    if not query:
        return 0.0
    best = 0.0
    for field, terms in _field_terms(entry).items():
        for term in terms:
            best = max(best, FIELD_WEIGHTS[field] * term_score(query, term))
    return best


def search_plugins(registry: MarketplaceRegistry, query: str) -> list[SearchResult]:
    """Search every registered marketplace for plugins matching a query.

    Marketplaces whose manifest can't be loaded are skipped.

    Args:
        registry: Registered marketplaces
        query: Free-text keyword

    Returns:
        Matching plugins, best match first
    """
    results: list[SearchResult] = []
    for name in sorted(registry.list()):
        try:
            manifest = registry.load_manifest(name)
        except ConfigError as e:
            logger.warning("Skipping marketplace '%s': %s", name, e)
            continue
        for entry in manifest.plugins:
            score = score_plugin(entry, query)
            if score > 0:
                results.append(SearchResult(plugin=entry, marketplace=name, score=score))

    results.sort(key=lambda r: (-r.score, r.plugin_id))
    logger.debug("Search for '%s' matched %d plugin(s)", query, len(results))
    return results
