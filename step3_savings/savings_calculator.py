#!/usr/bin/env python3
"""
Savings Calculator - Price matched items and pick the better recommendation

Two kinds of savings are compared for every matched item:
- better_price: buy the same product at our catalog price
- higher_yield: buy fewer units of a compatible higher-yield alternative
The larger strictly positive figure wins.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from step2_match.catalog import CatalogEntry
from step2_match.models import MatchResult

from .optimizer import OptimizationOutcome, YieldOptimizer
from .price_normalizer import NormalizedPrice, PriceNormalizer, PriceSource

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class RecommendationType(str, Enum):
    BETTER_PRICE = 'better_price'
    HIGHER_YIELD = 'higher_yield'


@dataclass(frozen=True)
class PricedItem:
    match: MatchResult
    current: NormalizedPrice
    current_cost: Decimal
    catalog_price_per_each: Optional[Decimal] = None
    catalog_cost: Optional[Decimal] = None
    recommendation_type: Optional[RecommendationType] = None
    recommended_entry: Optional[CatalogEntry] = None
    recommended_quantity: Optional[int] = None
    optimized_cost: Optional[Decimal] = None
    savings: Optional[Decimal] = None
    reason: str = ''
    optimization: Optional[OptimizationOutcome] = None
    cartridges_saved: int = 0
    cartridge_type: str = 'toner'

    @property
    def source_row_index(self) -> int:
        return self.match.item.source_row_index

    @property
    def has_savings(self) -> bool:
        return self.savings is not None and self.savings > 0

    def to_dict(self) -> Dict[str, Any]:
        entry = self.match.matched_entry
        recommended = self.recommended_entry
        return {
            'source_row_index': self.source_row_index,
            'display_name': self.match.item.display_name,
            'input_identifiers': self.match.item.identifier_values,
            'matched_entry_id': entry.entry_id if entry else None,
            'matched_name': entry.product_name if entry else None,
            'match_score': round(self.match.score, 4),
            'match_method': self.match.method,
            'current': self.current.to_dict(),
            'current_cost': float(self.current_cost),
            'catalog_price_per_each': round(float(self.catalog_price_per_each), 4)
            if self.catalog_price_per_each is not None else None,
            'catalog_cost': float(self.catalog_cost) if self.catalog_cost is not None else None,
            'recommendation_type': self.recommendation_type.value if self.recommendation_type else None,
            'recommended_entry_id': recommended.entry_id if recommended else None,
            'recommended_name': recommended.product_name if recommended else None,
            'recommended_quantity': self.recommended_quantity,
            'optimized_cost': float(self.optimized_cost) if self.optimized_cost is not None else None,
            'savings': float(self.savings) if self.savings is not None else None,
            'reason': self.reason,
            'guardrail_rejections': [
                {'entry_id': r.entry_id, 'reasons': list(r.reasons)}
                for r in (self.optimization.rejections if self.optimization else ())
            ],
            'cartridges_saved': self.cartridges_saved,
        }


def cartridge_type(entry: CatalogEntry) -> str:
    text = f"{entry.category or ''} {entry.product_name}".lower()
    return 'ink' if 'ink' in text.split() else 'toner'


class SavingsCalculator:
    """Turn MatchResults into PricedItems"""

    def __init__(self, optimizer: YieldOptimizer, normalizer: PriceNormalizer):
        self.optimizer = optimizer
        self.normalizer = normalizer

    def price(self, match: MatchResult) -> PricedItem:
        """
        Normalize prices and compute savings for one match

        Args:
            match: MatchResult (matched or not)

        Returns:
            PricedItem; savings is set only when strictly positive
        """
        entry = match.matched_entry
        current = self.normalizer.normalize_item(match.item, entry)
        current_cost = to_money(current.total)

        if entry is None:
            return PricedItem(match=match, current=current, current_cost=current_cost,
                              reason='no catalog match')

        catalog_each = self.normalizer.catalog_price_per_each(entry)
        catalog_cost = to_money(catalog_each * current.quantity_in_each) if catalog_each is not None else None
        base = dict(match=match, current=current, current_cost=current_cost,
                    catalog_price_per_each=catalog_each, catalog_cost=catalog_cost,
                    cartridge_type=cartridge_type(entry))

        if not current.available:
            return PricedItem(reason='price unavailable', **base)

        outcome = self.optimizer.find_alternative(entry)
        options = []

        recommendation = outcome.recommendation
        if recommendation is not None:
            alternative = recommendation.entry
            alternative_each = self.normalizer.catalog_price_per_each(alternative)
            needed = math.ceil(current.quantity_in_each * entry.page_yield / alternative.page_yield)
            alternative_cost = to_money(alternative_each * needed)
            options.append((current_cost - alternative_cost, RecommendationType.HIGHER_YIELD,
                            alternative, needed, alternative_cost))

        # Assumed prices are derived from this entry; better_price needs a document price
        assumed_price = current.price_source != PriceSource.USER_DOCUMENT
        if catalog_cost is not None and not assumed_price:
            options.append((current_cost - catalog_cost, RecommendationType.BETTER_PRICE,
                            entry, current.quantity_in_each, catalog_cost))

        positive = [option for option in options if option[0] > 0]
        if not positive:
            reason = 'already at or below best available price'
            if catalog_cost is None:
                reason = 'catalog price unavailable'
            elif assumed_price:
                reason = f'assumed pricing ({current.price_source.value}), no better alternative'
            return PricedItem(reason=reason, optimization=outcome, **base)

        # Stable max: ties keep the higher-yield option listed first
        savings, kind, recommended, quantity, optimized_cost = max(positive, key=lambda option: option[0])
        if kind == RecommendationType.HIGHER_YIELD:
            reason = (f"Switch to {recommended.product_name} ({recommended.page_yield} pages): "
                      f"{quantity} instead of {current.quantity_in_each} for the same pages")
            saved = max(current.quantity_in_each - quantity, 0)
        else:
            reason = f"Same product at ${catalog_each:.2f} each instead of ${current.price_per_each:.2f}"
            saved = 0

        logger.debug(f"Row {match.item.source_row_index}: {kind.value} saves ${savings}")
        return PricedItem(
            recommendation_type=kind,
            recommended_entry=recommended,
            recommended_quantity=quantity,
            optimized_cost=optimized_cost,
            savings=savings,
            reason=reason,
            optimization=outcome,
            cartridges_saved=saved,
            **base,
        )
