#!/usr/bin/env python3
"""
Catalog Resolver - Multi-tier matching of extracted items to catalog entries

Tiers run in order (exact identifier, fuzzy identifier, identifier+description,
exact substring, identifier in description, full-text, semantic, AI fallback).
Each tier runs only while the best score so far is below its threshold; the best
candidate across all tiers wins and only a perfect 1.0 stops the cascade early.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from step1_extract.models import ExtractedItem

from .catalog import CatalogLookup
from .match_tiers import MatchTier, build_tiers
from .models import MatchAttempt, MatchResult

logger = logging.getLogger(__name__)

PERFECT_SCORE = 1.0


class CatalogResolver:
    """Resolve ExtractedItems to CatalogEntries through the tier cascade"""

    def __init__(self, catalog: CatalogLookup, rule_loader, arbiter=None,
                 tiers: Optional[Sequence[MatchTier]] = None):
        """
        Initialize resolver

        Args:
            catalog: Catalog lookup interface
            rule_loader: RuleLoader instance (30_matching.yaml + flags)
            arbiter: Optional AIMatchArbiter for the AI fallback tier
            tiers: Explicit tier list (built from rules when omitted)
        """
        self.catalog = catalog
        rules = rule_loader.get_matching_rules()
        self.min_match_score = float(rules.get('min_match_score', 0.70))
        if tiers is None:
            tiers = build_tiers(catalog, rules, rule_loader.get_flags(), arbiter)
        self.tiers = list(tiers)
        logger.debug(f"Matching tiers: {[tier.name for tier in self.tiers]}")

    def resolve(self, item: ExtractedItem) -> MatchResult:
        """
        Resolve one item

        Args:
            item: ExtractedItem

        Returns:
            MatchResult; matched_entry is None when no tier reached the minimum score
        """
        attempts: List[MatchAttempt] = []
        best: Optional[MatchAttempt] = None

        for tier in self.tiers:
            best_score = best.score if best else 0.0
            if best_score >= PERFECT_SCORE:
                break
            if not tier.should_run(best_score):
                continue

            tier_attempts = tier.attempt(item, tuple(attempts))
            attempts.extend(tier_attempts)
            for attempt in tier_attempts:
                # Strictly greater: ties keep the earlier tier and the higher-priority identifier
                if attempt.candidate_entry_id and attempt.score > (best.score if best else 0.0):
                    best = attempt

        if best is None or best.score < self.min_match_score:
            logger.debug(f"Row {item.source_row_index}: no match for '{item.display_name}' "
                         f"({len(attempts)} attempts)")
            return MatchResult(item=item, matched_entry=None, score=0.0, method=None, attempts=tuple(attempts))

        entry = self.catalog.get(best.candidate_entry_id)
        logger.debug(f"Row {item.source_row_index}: '{item.display_name}' -> {entry.entry_id} "
                     f"via {best.tier_name} ({best.score:.2f})")
        return MatchResult(
            item=item,
            matched_entry=entry,
            score=best.score,
            method=best.tier_name,
            attempts=tuple(attempts),
            matched_namespace=best.namespace,
        )

    def resolve_all(self, items: Sequence[ExtractedItem], max_workers: int = 1) -> List[MatchResult]:
        """
        Resolve a list of items

        Args:
            items: Items to resolve
            max_workers: Threads to use; results keep input order either way

        Returns:
            MatchResults in the same order as items
        """
        if max_workers <= 1 or len(items) <= 1:
            return [self.resolve(item) for item in items]
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.resolve, items))
