#!/usr/bin/env python3
"""
Match Tiers - Strategy objects for the Catalog Resolver cascade

Every tier exposes attempt(item, history) -> list of MatchAttempt, one per
query value it tried. Tiers never decide the final match; the resolver keeps
the best-scoring candidate across tiers.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from step1_extract.models import ExtractedItem

from .catalog import CatalogEntry, CatalogLookup, normalize_identifier, strip_known_prefix
from .models import MatchAttempt

logger = logging.getLogger(__name__)


class MatchTier:
    """Base class for one strategy in the matching cascade"""

    name = 'tier'

    def __init__(self, catalog: CatalogLookup, rules: Dict, run_below: float = 1.0):
        """
        Args:
            catalog: Catalog lookup interface
            rules: Merged 30_matching.yaml rules
            run_below: The tier runs only while the best score so far is below this
        """
        self.catalog = catalog
        self.rules = rules
        self.run_below = run_below

    def should_run(self, best_score: float) -> bool:
        return best_score < self.run_below

    def attempt(self, item: ExtractedItem, history: Sequence[MatchAttempt] = ()) -> List[MatchAttempt]:
        raise NotImplementedError

    def _miss(self, query: str, note: str = '') -> MatchAttempt:
        return MatchAttempt(self.name, query, 0.0, None, None, note)


class ExactIdentifierTier(MatchTier):
    """Exact case-insensitive identifier hit in any namespace scores 1.0"""

    name = 'exact_identifier'

    def attempt(self, item, history=()):
        attempts = []
        for identifier in item.identifiers:
            hits = self.catalog.find_by_identifier(identifier.value)
            if hits:
                entry, namespace = hits[0]
                attempts.append(MatchAttempt(self.name, identifier.value, 1.0, entry.entry_id, namespace))
                logger.debug(f"Exact identifier hit {identifier.value} -> {entry.entry_id} ({namespace})")
                return attempts
            attempts.append(self._miss(identifier.value))
        return attempts


class FuzzyIdentifierTier(MatchTier):
    """Identifier equality after dropping separators, casing and known vendor prefixes"""

    name = 'fuzzy_identifier'

    def __init__(self, catalog, rules, run_below=1.0):
        super().__init__(catalog, rules, run_below)
        fuzzy = rules.get('fuzzy_identifier', {})
        self.strip_characters = fuzzy.get('strip_characters', ' -_./')
        self.strip_prefixes = fuzzy.get('strip_prefixes', [])
        scores = fuzzy.get('scores', {})
        self.separators_score = scores.get('separators_only', 0.95)
        self.prefix_score = scores.get('query_prefix', 0.90)
        self.both_prefix_score = scores.get('both_prefixes', 0.85)

    def _lookup(self, value: str) -> Optional[Tuple[CatalogEntry, str, float]]:
        normalized = normalize_identifier(value, self.strip_characters)
        if len(normalized) < 3:
            return None

        hits = self.catalog.find_by_normalized_identifier(normalized)
        if hits:
            return hits[0][0], hits[0][1], self.separators_score

        # Prefix on one side only
        stripped = strip_known_prefix(normalized, self.strip_prefixes)
        if stripped:
            hits = self.catalog.find_by_normalized_identifier(stripped)
            if hits:
                return hits[0][0], hits[0][1], self.prefix_score
        hits = self.catalog.find_by_normalized_identifier(normalized, stripped=True)
        if hits:
            return hits[0][0], hits[0][1], self.prefix_score

        if stripped:
            hits = self.catalog.find_by_normalized_identifier(stripped, stripped=True)
            if hits:
                return hits[0][0], hits[0][1], self.both_prefix_score
        return None

    def attempt(self, item, history=()):
        attempts = []
        for identifier in item.identifiers:
            found = self._lookup(identifier.value)
            if found:
                entry, namespace, score = found
                attempts.append(MatchAttempt(self.name, identifier.value, score, entry.entry_id, namespace))
            else:
                attempts.append(self._miss(identifier.value))
        return attempts


class FullTextTier(MatchTier):
    """Tokenized term-overlap search over name, brand, model and description fields"""

    name = 'full_text'
    section = 'full_text'

    def __init__(self, catalog, rules, run_below=0.85):
        super().__init__(catalog, rules, run_below)
        config = rules.get(self.section, {})
        self.floor = config.get('score_floor', 0.70)
        self.ceiling = config.get('score_ceiling', 0.95)
        self.candidate_limit = rules.get('full_text', {}).get('candidate_limit', 25)

    def score(self, overlap: float) -> float:
        return round(min(self.ceiling, max(self.floor, self.floor + overlap * (self.ceiling - self.floor))), 4)

    def search(self, query: str) -> MatchAttempt:
        results = self.catalog.full_text_search(query, self.candidate_limit)
        if not results:
            return self._miss(query)
        entry, overlap = results[0]
        return MatchAttempt(self.name, query, self.score(overlap), entry.entry_id)

    def attempt(self, item, history=()):
        query = item.description or item.display_name
        if not query:
            return []
        return [self.search(query)]


class CombinedTier(FullTextTier):
    """Each identifier plus the description, run through the full-text search"""

    name = 'combined'
    section = 'combined'

    def __init__(self, catalog, rules, run_below=0.90):
        super().__init__(catalog, rules, run_below)

    def attempt(self, item, history=()):
        if not item.description or not item.identifiers:
            return []
        return [self.search(f'{identifier.value} {item.description}') for identifier in item.identifiers]


class SubstringTier(MatchTier):
    """
    Raw description against catalog product names, no tokenizing

    Catches names the tokenizer would break apart on punctuation,
    e.g. 'CANON CL-246 C/M/Y COLOR INK'.
    """

    name = 'substring'

    def __init__(self, catalog, rules, run_below=0.90):
        super().__init__(catalog, rules, run_below)
        config = rules.get('substring', {})
        self.min_query_length = config.get('min_query_length', 5)
        self.exact_name_score = config.get('exact_name_score', 0.99)
        self.contains_base = config.get('contains_base', 0.92)
        self.contains_span = config.get('contains_span', 0.07)
        self.query_contains_name = config.get('query_contains_name', 0.88)

    def score(self, query: str, name: str) -> float:
        q, n = query.lower(), name.lower()
        if q == n:
            return self.exact_name_score
        if q in n:
            return round(min(self.contains_base + self.contains_span * len(q) / len(n), self.exact_name_score), 4)
        if n in q and len(n) >= self.min_query_length:
            return self.query_contains_name
        return 0.0

    def attempt(self, item, history=()):
        query = item.description.strip()
        if len(query) < self.min_query_length:
            return []
        best: Optional[Tuple[float, str]] = None
        for entry in self.catalog.search_names(query):
            score = self.score(query, entry.product_name)
            if score > 0 and (best is None or score > best[0]):
                best = (score, entry.entry_id)
        if best is None:
            return [self._miss(query)]
        return [MatchAttempt(self.name, query, best[0], best[1])]


class DescriptionIdentifierTier(MatchTier):
    """
    Input identifiers searched inside catalog names and description text

    Recovers OEM numbers that only appear in a product's description; a hit in
    the product name scores higher than one in the description fields.
    """

    name = 'description_identifier'

    def __init__(self, catalog, rules, run_below=0.90):
        super().__init__(catalog, rules, run_below)
        config = rules.get('description_identifier', {})
        self.min_length = config.get('min_length', 3)
        self.candidate_limit = config.get('candidate_limit', 3)
        self.name_score = config.get('name_score', 0.90)
        self.description_score = config.get('description_score', 0.75)

    def attempt(self, item, history=()):
        attempts = []
        for identifier in item.identifiers:
            value = identifier.value.strip()
            if len(value) < self.min_length:
                continue
            hits = self.catalog.search_descriptions(value, self.candidate_limit)
            if not hits:
                attempts.append(self._miss(value))
                continue
            entry = hits[0]
            in_name = value.upper() in entry.product_name.upper()
            score = self.name_score if in_name else self.description_score
            attempts.append(MatchAttempt(self.name, value, score, entry.entry_id))
            return attempts
        return attempts


class SemanticTier(MatchTier):
    """Embedding nearest neighbor; failures degrade to a zero-score attempt"""

    name = 'semantic'

    def __init__(self, catalog, rules, run_below=0.75):
        super().__init__(catalog, rules, run_below)
        config = rules.get('semantic', {})
        self.threshold = config.get('similarity_threshold', 0.70)
        self.ceiling = config.get('score_ceiling', 0.85)
        self.candidate_limit = config.get('candidate_limit', 5)

    def attempt(self, item, history=()):
        query = item.description or item.display_name
        if not query:
            return []
        try:
            results = self.catalog.semantic_search(query, self.candidate_limit)
        except Exception as e:
            logger.warning(f"Semantic search failed for row {item.source_row_index}: {e}")
            return [self._miss(query, note=f'error: {e}')]

        for entry, similarity in results:
            if similarity >= self.threshold:
                return [MatchAttempt(self.name, query, round(min(similarity, self.ceiling), 4), entry.entry_id)]
        return [self._miss(query)]


class AIFallbackTier(MatchTier):
    """Language-model arbitration over a shortlist of earlier candidates"""

    name = 'ai_fallback'

    def __init__(self, catalog, rules, arbiter, run_below=0.65):
        super().__init__(catalog, rules, run_below)
        config = rules.get('ai_fallback', {})
        self.arbiter = arbiter
        self.shortlist_size = config.get('shortlist_size', 5)
        self.ceiling = config.get('score_ceiling', 0.95)
        self.candidate_limit = rules.get('full_text', {}).get('candidate_limit', 25)

    def shortlist(self, item: ExtractedItem, history: Sequence[MatchAttempt]) -> List[CatalogEntry]:
        ranked = sorted((a for a in history if a.candidate_entry_id), key=lambda a: -a.score)
        ids: List[str] = []
        for attempt in ranked:
            if attempt.candidate_entry_id not in ids:
                ids.append(attempt.candidate_entry_id)
        query = item.description or item.display_name
        if query:
            for entry, _ in self.catalog.full_text_search(query, self.candidate_limit):
                if entry.entry_id not in ids:
                    ids.append(entry.entry_id)
        entries = [self.catalog.get(entry_id) for entry_id in ids[:self.shortlist_size]]
        return [entry for entry in entries if entry is not None]

    def attempt(self, item, history=()):
        candidates = self.shortlist(item, history)
        query = item.display_name
        if not candidates:
            return [self._miss(query, note='empty shortlist')]
        try:
            choice = self.arbiter.choose(item, candidates)
        except Exception as e:
            logger.warning(f"AI fallback failed for row {item.source_row_index}: {e}")
            return [self._miss(query, note=f'error: {e}')]

        if choice is None:
            return [self._miss(query, note='no candidate chosen')]
        entry, confidence = choice
        if entry.entry_id not in {c.entry_id for c in candidates}:
            return [self._miss(query, note='choice outside shortlist')]
        return [MatchAttempt(self.name, query, round(min(confidence, self.ceiling), 4), entry.entry_id)]


TIER_CLASSES = {
    ExactIdentifierTier.name: ExactIdentifierTier,
    FuzzyIdentifierTier.name: FuzzyIdentifierTier,
    CombinedTier.name: CombinedTier,
    SubstringTier.name: SubstringTier,
    DescriptionIdentifierTier.name: DescriptionIdentifierTier,
    FullTextTier.name: FullTextTier,
    SemanticTier.name: SemanticTier,
}


def build_tiers(catalog: CatalogLookup, rules: Dict, flags: Dict, arbiter=None) -> List[MatchTier]:
    """
    Build the tier cascade in the order listed in 30_matching.yaml

    Semantic and AI tiers are added only when their flags are on (and an
    arbiter is supplied for the AI tier).
    """
    tiers: List[MatchTier] = []
    for config in rules.get('tiers', []):
        name = config['name']
        run_below = float(config.get('run_below', 1.0))
        if name == SemanticTier.name and not flags.get('enable_semantic_search'):
            continue
        if name == AIFallbackTier.name:
            if flags.get('enable_ai_fallback') and arbiter is not None:
                tiers.append(AIFallbackTier(catalog, rules, arbiter, run_below))
            continue
        tier_class = TIER_CLASSES.get(name)
        if tier_class is None:
            logger.warning(f"Unknown matching tier in rules: {name}")
            continue
        tiers.append(tier_class(catalog, rules, run_below))
    return tiers
