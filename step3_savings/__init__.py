"""
Step 3: Savings
Normalize prices, find compatible higher-yield alternatives and summarize savings
"""

from .price_normalizer import NormalizedPrice, PriceNormalizer, PriceSource
from .optimizer import GuardrailRejection, OptimizationOutcome, Recommendation, YieldOptimizer
from .savings_calculator import PricedItem, RecommendationType, SavingsCalculator
from .categorizer import Aggregator, CategoryOutcome, SavingsCategorizer, SavingsSummary, categorize

__all__ = [
    'NormalizedPrice',
    'PriceNormalizer',
    'PriceSource',
    'GuardrailRejection',
    'OptimizationOutcome',
    'Recommendation',
    'YieldOptimizer',
    'PricedItem',
    'RecommendationType',
    'SavingsCalculator',
    'Aggregator',
    'CategoryOutcome',
    'SavingsCategorizer',
    'SavingsSummary',
    'categorize',
]
