#!/usr/bin/env python3
"""
Yield Optimizer - Find a strictly compatible lower cost-per-page alternative

Candidates come from the matched entry's family (compatibility group, else
family series) and are ranked by CPP. Every candidate passes hard guardrails
before it may be recommended; a missing recommendation is the answer whenever
compatibility cannot be established.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from step2_match.catalog import CatalogEntry, CatalogLookup

from .price_normalizer import PriceNormalizer

logger = logging.getLogger(__name__)

CROSS_BRAND = 'cross_brand'
CROSS_CATEGORY = 'cross_category'
COLOR_MISMATCH = 'color_mismatch'
FAMILY_MISMATCH = 'family_mismatch'
YIELD_DOWNGRADE = 'yield_downgrade'
YIELD_RATIO = 'yield_ratio_exceeds_bound'
CPP_IMPROVEMENT = 'cpp_improvement_exceeds_bound'


@dataclass(frozen=True)
class GuardrailRejection:
    entry_id: str
    reasons: Tuple[str, ...]


@dataclass(frozen=True)
class Recommendation:
    entry: CatalogEntry
    current_cpp: Decimal
    alternative_cpp: Decimal
    cpp_improvement: float
    yield_ratio: float
    annual_savings: Decimal


@dataclass(frozen=True)
class OptimizationOutcome:
    recommendation: Optional[Recommendation]
    reason: str
    rejections: Tuple[GuardrailRejection, ...] = ()


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return (a or '').strip().lower() == (b or '').strip().lower()


class YieldOptimizer:
    """Recommend higher-yield alternatives that clear every guardrail"""

    def __init__(self, catalog: CatalogLookup, rule_loader, normalizer: Optional[PriceNormalizer] = None):
        """
        Initialize optimizer

        Args:
            catalog: Catalog lookup interface (family_members)
            rule_loader: RuleLoader instance (50_optimization.yaml)
            normalizer: PriceNormalizer for per-each prices and CPP
        """
        self.catalog = catalog
        self.normalizer = normalizer or PriceNormalizer(rule_loader)
        rules = rule_loader.get_optimization_rules()

        self.yield_classes = {str(k).lower(): int(v) for k, v in rules.get('yield_classes', {}).items()}
        guardrails = rules.get('guardrails', {})
        self.max_yield_ratio = float(guardrails.get('max_yield_ratio', 8.0))
        self.max_cpp_improvement = float(guardrails.get('max_cpp_improvement', 0.90))
        thresholds = rules.get('thresholds', {})
        self.min_cpp_improvement = float(thresholds.get('min_cpp_improvement', 0.05))
        self.min_annual_savings = Decimal(str(thresholds.get('min_annual_savings', 5.0)))
        usage = rules.get('usage', {})
        self.annual_pages = int(usage.get('monthly_pages', 1000)) * int(usage.get('horizon_months', 12))

    def yield_rank(self, yield_class: Optional[str]) -> int:
        """Ordinal yield class; missing or unknown counts as standard"""
        if not yield_class:
            return self.yield_classes.get('standard', 1)
        key = str(yield_class).strip().lower().replace('-', ' ').replace(' yield', '').strip().replace(' ', '_')
        return self.yield_classes.get(key, self.yield_classes.get('standard', 1))

    def check_guardrails(self, current: CatalogEntry, candidate: CatalogEntry,
                         current_cpp: Decimal, candidate_cpp: Decimal) -> List[str]:
        """
        Every hard rule the candidate violates (empty list means it is compatible)
        """
        reasons = []
        if not _same_text(current.brand, candidate.brand):
            reasons.append(CROSS_BRAND)
        if not _same_text(current.category, candidate.category):
            reasons.append(CROSS_CATEGORY)
        if current.effective_color != candidate.effective_color:
            reasons.append(COLOR_MISMATCH)
        if current.family_key is None or current.family_key != candidate.family_key:
            reasons.append(FAMILY_MISMATCH)
        if self.yield_rank(candidate.yield_class) < self.yield_rank(current.yield_class):
            reasons.append(YIELD_DOWNGRADE)
        if current.page_yield and candidate.page_yield:
            if candidate.page_yield / current.page_yield > self.max_yield_ratio:
                reasons.append(YIELD_RATIO)
        if current_cpp > 0 and float((current_cpp - candidate_cpp) / current_cpp) > self.max_cpp_improvement:
            reasons.append(CPP_IMPROVEMENT)
        return reasons

    def find_alternative(self, entry: CatalogEntry) -> OptimizationOutcome:
        """
        Search the entry's family for a cheaper-per-page compatible alternative

        Args:
            entry: Matched catalog entry

        Returns:
            OptimizationOutcome with a Recommendation, or None and the reason
        """
        current_cpp = self.normalizer.entry_cost_per_page(entry)
        if current_cpp is None:
            return OptimizationOutcome(None, 'current entry has no page yield or price')
        if entry.family_key is None:
            return OptimizationOutcome(None, 'current entry has no product family')

        ranked = []
        for candidate in self.catalog.family_members(entry):
            if candidate.entry_id == entry.entry_id or not candidate.active:
                continue
            candidate_cpp = self.normalizer.entry_cost_per_page(candidate)
            if candidate_cpp is None or candidate_cpp >= current_cpp:
                continue
            ranked.append((candidate_cpp, candidate.entry_id, candidate))
        ranked.sort(key=lambda row: (row[0], row[1]))

        rejections = []
        for candidate_cpp, _, candidate in ranked:
            reasons = self.check_guardrails(entry, candidate, current_cpp, candidate_cpp)
            if reasons:
                rejections.append(GuardrailRejection(candidate.entry_id, tuple(reasons)))
                logger.debug(f"Rejected alternative {candidate.entry_id} for {entry.entry_id}: {', '.join(reasons)}")
                continue

            improvement = float((current_cpp - candidate_cpp) / current_cpp)
            annual_savings = (current_cpp - candidate_cpp) * self.annual_pages
            if improvement < self.min_cpp_improvement:
                return OptimizationOutcome(None, f'best alternative improves CPP by only {improvement:.1%}',
                                           tuple(rejections))
            if annual_savings < self.min_annual_savings:
                return OptimizationOutcome(None, f'best alternative saves only ${annual_savings:.2f}/year',
                                           tuple(rejections))

            recommendation = Recommendation(
                entry=candidate,
                current_cpp=current_cpp,
                alternative_cpp=candidate_cpp,
                cpp_improvement=improvement,
                yield_ratio=candidate.page_yield / entry.page_yield,
                annual_savings=annual_savings,
            )
            return OptimizationOutcome(recommendation, 'higher yield alternative', tuple(rejections))

        return OptimizationOutcome(None, 'no better alternative', tuple(rejections))
