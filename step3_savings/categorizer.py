#!/usr/bin/env python3
"""
Categorizer & Aggregator - Outcome per priced item and the run summary

Every PricedItem lands in exactly one outcome (optimizable, no_opportunity,
unresolved) and one namespace group. Totals live in an Aggregator value that is
built per chunk or per run and merged; the summary is assembled after sorting by
source row so the report does not depend on processing order.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from .savings_calculator import PricedItem, RecommendationType

logger = logging.getLogger(__name__)

PRIMARY_GROUP = 'primary'
SECONDARY_GROUP = 'secondary'
UNMATCHED_GROUP = 'unmatched'


class CategoryOutcome(str, Enum):
    OPTIMIZABLE = 'optimizable'
    NO_OPPORTUNITY = 'no_opportunity'
    UNRESOLVED = 'unresolved'


def categorize(priced: PricedItem) -> CategoryOutcome:
    if not priced.match.is_match:
        return CategoryOutcome.UNRESOLVED
    if priced.has_savings:
        return CategoryOutcome.OPTIMIZABLE
    return CategoryOutcome.NO_OPPORTUNITY


def namespace_group(priced: PricedItem, primary_namespace: str = 'primary_sku') -> str:
    """primary when the match came through the primary SKU namespace, else secondary"""
    if not priced.match.is_match:
        return UNMATCHED_GROUP
    if priced.match.matched_namespace == primary_namespace:
        return PRIMARY_GROUP
    return SECONDARY_GROUP


@dataclass
class Aggregator:
    """Running counts and sums for one run (or one chunk of it)"""
    counts: Dict[str, int] = field(default_factory=dict)
    group_counts: Dict[str, int] = field(default_factory=dict)
    unique_inputs: Dict[str, Set[str]] = field(default_factory=dict)
    current_cost_total: Decimal = Decimal('0')
    optimized_cost_total: Decimal = Decimal('0')
    savings_total: Decimal = Decimal('0')
    recommendation_counts: Dict[str, int] = field(default_factory=dict)
    cartridges_saved: Dict[str, int] = field(default_factory=dict)

    def add(self, priced: PricedItem, outcome: CategoryOutcome, group: str):
        key = outcome.value
        self.counts[key] = self.counts.get(key, 0) + 1
        group_key = f"{key}/{group}"
        self.group_counts[group_key] = self.group_counts.get(group_key, 0) + 1
        self.unique_inputs.setdefault(key, set()).add(priced.match.item.input_key)

        if outcome == CategoryOutcome.OPTIMIZABLE:
            self.current_cost_total += priced.current_cost
            self.optimized_cost_total += priced.optimized_cost
            self.savings_total += priced.savings
            kind = priced.recommendation_type.value
            self.recommendation_counts[kind] = self.recommendation_counts.get(kind, 0) + 1
            if priced.recommendation_type == RecommendationType.HIGHER_YIELD and priced.cartridges_saved:
                self.cartridges_saved[priced.cartridge_type] = (
                    self.cartridges_saved.get(priced.cartridge_type, 0) + priced.cartridges_saved)

    def merge(self, other: 'Aggregator') -> 'Aggregator':
        """Return a new Aggregator holding both sets of totals"""
        merged = Aggregator(
            current_cost_total=self.current_cost_total + other.current_cost_total,
            optimized_cost_total=self.optimized_cost_total + other.optimized_cost_total,
            savings_total=self.savings_total + other.savings_total,
        )
        for target, a, b in ((merged.counts, self.counts, other.counts),
                             (merged.group_counts, self.group_counts, other.group_counts),
                             (merged.recommendation_counts, self.recommendation_counts, other.recommendation_counts),
                             (merged.cartridges_saved, self.cartridges_saved, other.cartridges_saved)):
            for source in (a, b):
                for key, value in source.items():
                    target[key] = target.get(key, 0) + value
        for source in (self.unique_inputs, other.unique_inputs):
            for key, values in source.items():
                merged.unique_inputs.setdefault(key, set()).update(values)
        return merged

    @property
    def total_items(self) -> int:
        return sum(self.counts.values())


@dataclass
class SavingsSummary:
    aggregator: Aggregator
    breakdown: List[PricedItem]
    environmental: Dict[str, float]
    quality: Optional[Dict[str, Any]] = None

    @property
    def savings_percentage(self) -> float:
        if self.aggregator.current_cost_total <= 0:
            return 0.0
        return float(self.aggregator.savings_total / self.aggregator.current_cost_total * 100)

    def to_dict(self) -> Dict[str, Any]:
        agg = self.aggregator
        return {
            'total_items': agg.total_items,
            'counts': {outcome.value: agg.counts.get(outcome.value, 0) for outcome in CategoryOutcome},
            'group_counts': dict(sorted(agg.group_counts.items())),
            'unique_input_identifiers': {
                outcome.value: len(agg.unique_inputs.get(outcome.value, ())) for outcome in CategoryOutcome
            },
            'recommendation_counts': dict(sorted(agg.recommendation_counts.items())),
            'current_cost_total': float(agg.current_cost_total),
            'optimized_cost_total': float(agg.optimized_cost_total),
            'total_savings': float(agg.savings_total),
            'savings_percentage': round(self.savings_percentage, 2),
            'environmental': self.environmental,
            'quality': self.quality,
            'breakdown': [
                dict(priced.to_dict(), outcome=categorize(priced).value) for priced in self.breakdown
            ],
        }


class SavingsCategorizer:
    """Classify PricedItems and build the SavingsSummary"""

    def __init__(self, rule_loader, primary_namespace: str = 'primary_sku'):
        """
        Initialize categorizer

        Args:
            rule_loader: RuleLoader instance (50_optimization.yaml environmental values)
            primary_namespace: Identifier namespace reported as the primary group
        """
        self.primary_namespace = primary_namespace
        env = rule_loader.get_optimization_rules().get('environmental', {})
        self.co2_per_cartridge = env.get('co2_lbs_per_cartridge', {'toner': 5.2, 'ink': 2.5})
        self.plastic_per_cartridge = float(env.get('plastic_lbs_per_cartridge', 2.0))
        self.shipping_per_cartridge = env.get('shipping_lbs_per_cartridge', {'toner': 2.5, 'ink': 0.2})
        self.co2_per_tree = float(env.get('co2_lbs_per_tree', 48))

    def aggregate(self, priced_items: Iterable[PricedItem]) -> Aggregator:
        aggregator = Aggregator()
        for priced in priced_items:
            aggregator.add(priced, categorize(priced), namespace_group(priced, self.primary_namespace))
        return aggregator

    def environmental_impact(self, aggregator: Aggregator) -> Dict[str, float]:
        """CO2, plastic, shipping weight and tree equivalents for higher-yield swaps"""
        cartridges = sum(aggregator.cartridges_saved.values())
        co2 = sum(float(self.co2_per_cartridge.get(kind, 0)) * count
                  for kind, count in aggregator.cartridges_saved.items())
        shipping = sum(float(self.shipping_per_cartridge.get(kind, 0)) * count
                       for kind, count in aggregator.cartridges_saved.items())
        return {
            'cartridges_saved': cartridges,
            'co2_lbs': round(co2, 2),
            'plastic_lbs': round(cartridges * self.plastic_per_cartridge, 2),
            'shipping_lbs': round(shipping, 2),
            'trees_equivalent': round(co2 / self.co2_per_tree, 2) if self.co2_per_tree else 0.0,
        }

    def summarize(self, priced_items: Iterable[PricedItem], quality: Optional[Dict[str, Any]] = None) -> SavingsSummary:
        """
        Build the run summary

        Args:
            priced_items: Every PricedItem of the run, in any order
            quality: Optional quality report dict carried into the summary

        Returns:
            SavingsSummary with the breakdown sorted by source row
        """
        breakdown = sorted(priced_items, key=lambda priced: priced.source_row_index)
        aggregator = self.aggregate(breakdown)
        summary = SavingsSummary(
            aggregator=aggregator,
            breakdown=breakdown,
            environmental=self.environmental_impact(aggregator),
            quality=quality,
        )
        logger.info(f"✓ Categorized {aggregator.total_items} items: "
                    f"{aggregator.counts.get(CategoryOutcome.OPTIMIZABLE.value, 0)} optimizable, "
                    f"${summary.aggregator.savings_total} total savings")
        return summary
