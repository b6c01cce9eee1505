# -*- coding: utf-8 -*-
"""
Query-term to entity-name matching (rapidfuzz).

Seeds graph traversal when there is no usable vector channel: degraded
retrieval (vector index or query embedding unavailable) and GRAPH mode.

Candidates come from the store's substring lookup on term prefixes; each
candidate name is then scored against every query n-gram with the same
number of tokens, so "Alise" in a query still matches the entity "Alice".

Example:
    matcher = NameMatcher(store)
    matcher.match("who manages alice smith?")
    # [(Entity(name='Alice Smith', ...), 1.0)]
"""
# Standard library
import logging
import re
from typing import Dict, List, Optional, Tuple

# Third-party
from rapidfuzz import fuzz

# Config imports (direct)
from config.retrieval_config import RETRIEVAL_CONFIG

# Local
from kgforge.utils.dataclasses import Entity
from kgforge.utils.id_generator import normalize_name

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r'\w+', re.UNICODE)


class NameMatcher:
    """Exact/fuzzy entity lookup from free-text queries."""

    def __init__(self, store, config: Optional[Dict] = None):
        self.store = store
        self.config = {**RETRIEVAL_CONFIG, **(config or {})}
        self.stopwords = set(self.config['stopwords'])

    def tokens(self, text: str) -> List[str]:
        return _TOKEN.findall(normalize_name(text))

    def query_terms(self, query: str) -> List[str]:
        """Content words of the query, stopwords and short tokens removed."""
        min_len = self.config['min_term_length']
        terms = []
        for token in self.tokens(query):
            if len(token) >= min_len and token not in self.stopwords and token not in terms:
                terms.append(token)
        return terms

    def score(self, name: str, query_tokens: List[str]) -> float:
        """Best fuzz.ratio (0-100) of the name against same-length query n-grams."""
        name_tokens = self.tokens(name)
        if not name_tokens or not query_tokens:
            return 0.0
        width = len(name_tokens)
        target = ' '.join(name_tokens)
        if width >= len(query_tokens):
            return fuzz.ratio(target, ' '.join(query_tokens))
        best = 0.0
        for start in range(len(query_tokens) - width + 1):
            window = ' '.join(query_tokens[start:start + width])
            best = max(best, fuzz.ratio(target, window))
            if best == 100.0:
                break
        return best

    def match(self, query: str) -> List[Tuple[Entity, float]]:
        """
        Entities whose name matches the query.

        Returns:
            (entity, score in [0, 1]) sorted by score desc then id, capped at
            config['max_name_seeds']
        """
        terms = self.query_terms(query)
        if not terms:
            return []

        prefix_len = self.config['min_term_length']
        lookups = sorted({term[:prefix_len] for term in terms})
        candidates = self.store.find_entities_by_terms(lookups)

        query_tokens = self.tokens(query)
        threshold = self.config['fuzzy_threshold']
        scored = []
        for entity in candidates:
            value = self.score(entity.name, query_tokens)
            if value >= threshold:
                scored.append((entity, value / 100.0))

        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        matches = scored[:self.config['max_name_seeds']]
        logger.debug(f"Name match for {query!r}: {[(e.name, s) for e, s in matches]}")
        return matches
