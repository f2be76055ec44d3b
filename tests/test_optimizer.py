#!/usr/bin/env python3
"""
Yield Optimizer Tests: guardrails, thresholds and the compatibility invariants of every recommendation
"""

import os
import random
import unittest
from decimal import Decimal
from pathlib import Path

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step1_extract.rule_loader import RuleLoader
from step3_savings.optimizer import (
    COLOR_MISMATCH,
    CROSS_BRAND,
    CPP_IMPROVEMENT,
    YIELD_DOWNGRADE,
    YIELD_RATIO,
    YieldOptimizer,
)
from step3_savings.price_normalizer import PriceNormalizer

from catalog_fixtures import build_catalog


def cartridge(entry_id, page_yield, price, yield_class='standard', **overrides):
    record = {
        'entry_id': entry_id,
        'product_name': f'Acme Laser Cartridge {entry_id}',
        'primary_sku': f'ACM-{entry_id}',
        'brand': 'Acme',
        'category': 'Toner',
        'color': 'Black',
        'compatibility_group': 'ACME-1',
        'page_yield': page_yield,
        'yield_class': yield_class,
        'price': price,
    }
    record.update(overrides)
    return record


class TestYieldOptimizer(unittest.TestCase):
    """Test alternative search and guardrails"""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures"""
        cls.rules_dir = PROJECT_ROOT / 'rules'
        cls.rule_loader = RuleLoader(cls.rules_dir)

    def optimizer_for(self, records):
        catalog = build_catalog(self.rule_loader, records)
        return catalog, YieldOptimizer(catalog, self.rule_loader, PriceNormalizer(self.rule_loader))

    def test_higher_yield_accepted(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('C300', 300, '30.00'),
            cartridge('C600', 600, '45.00', 'high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('C300'))

        recommendation = outcome.recommendation
        self.assertIsNotNone(recommendation, outcome.reason)
        self.assertEqual(recommendation.entry.entry_id, 'C600')
        self.assertAlmostEqual(recommendation.cpp_improvement, 0.25)
        self.assertEqual(recommendation.yield_ratio, 2.0)
        self.assertEqual(recommendation.annual_savings, Decimal('300'))
        self.assertEqual(outcome.rejections, ())

    def test_tenfold_yield_rejected(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('C300', 300, '30.00'),
            cartridge('C3000', 3000, '150.00', 'super_high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('C300'))

        self.assertIsNone(outcome.recommendation, "A 10x yield jump must never be recommended")
        self.assertEqual(len(outcome.rejections), 1)
        self.assertEqual(outcome.rejections[0].entry_id, 'C3000')
        self.assertEqual(outcome.rejections[0].reasons, (YIELD_RATIO,))

    def test_rejected_candidate_skipped_for_next_best(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('C300', 300, '30.00'),
            cartridge('C600', 600, '45.00', 'high'),
            cartridge('C3000', 3000, '150.00', 'super_high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('C300'))
        self.assertEqual(outcome.recommendation.entry.entry_id, 'C600')
        self.assertEqual([r.entry_id for r in outcome.rejections], ['C3000'])

    def test_guardrail_reasons(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('HIGH', 600, '45.00', 'high'),
            cartridge('STD', 300, '15.00'),
            cartridge('OTHER', 600, '30.00', 'high', brand='Other Brand'),
            cartridge('CYAN', 600, '30.00', 'high', color='Cyan'),
            cartridge('CHEAP', 600, '2.00', 'high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('HIGH'))
        reasons = {r.entry_id: r.reasons for r in outcome.rejections}

        self.assertIn(YIELD_DOWNGRADE, reasons['STD'])
        self.assertIn(CROSS_BRAND, reasons['OTHER'])
        self.assertIn(COLOR_MISMATCH, reasons['CYAN'])
        self.assertIn(CPP_IMPROVEMENT, reasons['CHEAP'], "A >90% CPP drop points to a pricing error")
        self.assertIsNone(outcome.recommendation)
        self.assertEqual(outcome.reason, 'no better alternative')

    def test_minimum_improvement_threshold(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('C300', 300, '30.00'),
            cartridge('C600', 600, '59.00', 'high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('C300'))
        self.assertIsNone(outcome.recommendation)
        self.assertIn('improves CPP by only', outcome.reason)

    def test_minimum_annual_savings_threshold(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('C300', 300, '0.30'),
            cartridge('C600', 600, '0.50', 'high'),
        ])
        outcome = optimizer.find_alternative(catalog.get('C300'))
        self.assertIsNone(outcome.recommendation)
        self.assertIn('saves only', outcome.reason)

    def test_missing_family_or_yield(self):
        catalog, optimizer = self.optimizer_for([
            cartridge('LONE', 300, '30.00', compatibility_group=None),
            cartridge('NOYIELD', None, '30.00'),
        ])
        self.assertEqual(optimizer.find_alternative(catalog.get('LONE')).reason, 'current entry has no product family')
        self.assertEqual(optimizer.find_alternative(catalog.get('NOYIELD')).reason,
                         'current entry has no page yield or price')

    def test_yield_rank(self):
        _, optimizer = self.optimizer_for([])
        self.assertEqual(optimizer.yield_rank('High Yield'), 2)
        self.assertEqual(optimizer.yield_rank('Extra-High'), 3)
        self.assertEqual(optimizer.yield_rank('super high yield'), 4)
        self.assertEqual(optimizer.yield_rank(None), 1)
        self.assertEqual(optimizer.yield_rank('XL'), 1, "Unknown classes count as standard")

    def test_recommendations_never_violate_compatibility(self):
        """Randomized families: every recommendation keeps brand, category, color and yield class"""
        rng = random.Random(20240105)
        for round_number in range(40):
            records = []
            for index in range(6):
                records.append(cartridge(
                    f'R{round_number}-{index}',
                    rng.choice([150, 300, 600, 1200, 2500, 5000]),
                    f'{rng.uniform(5, 250):.2f}',
                    rng.choice(['standard', 'high', 'extra_high', 'super_high']),
                    brand=rng.choice(['Acme', 'Zenith']),
                    category=rng.choice(['Toner', 'Ink']),
                    color=rng.choice(['Black', 'Cyan', None]),
                ))
            catalog, optimizer = self.optimizer_for(records)

            for entry in catalog.entries:
                recommendation = optimizer.find_alternative(entry).recommendation
                if recommendation is None:
                    continue
                alternative = recommendation.entry
                self.assertEqual(alternative.brand, entry.brand)
                self.assertEqual(alternative.category, entry.category)
                self.assertEqual(alternative.effective_color, entry.effective_color)
                self.assertGreaterEqual(optimizer.yield_rank(alternative.yield_class),
                                        optimizer.yield_rank(entry.yield_class))
                self.assertLessEqual(alternative.page_yield / entry.page_yield, 8.0)
                self.assertLessEqual(recommendation.cpp_improvement, 0.90)
                self.assertGreaterEqual(recommendation.cpp_improvement, 0.05)
                self.assertLess(recommendation.alternative_cpp, recommendation.current_cpp)


if __name__ == '__main__':
    unittest.main()
