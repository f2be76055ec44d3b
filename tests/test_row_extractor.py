#!/usr/bin/env python3
"""
Row Extractor Tests: identifier scanning, header repeats, row accounting, confidence
"""

import os
import unittest
from decimal import Decimal
from pathlib import Path

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step1_extract.models import RawTable
from step1_extract.row_extractor import RowExtractor
from step1_extract.rule_loader import RuleLoader


class TestRowExtractor(unittest.TestCase):
    """Test row extraction"""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures"""
        cls.rules_dir = PROJECT_ROOT / 'rules'
        cls.rule_loader = RuleLoader(cls.rules_dir)

    def setUp(self):
        self.extractor = RowExtractor(self.rule_loader)

    def test_identifier_found_in_unlabeled_column(self):
        table = RawTable.from_rows([
            ['Description', 'Qty', 'Unit Price', 'Ref'],
            ['HP 64 Black Ink Cartridge', '2', '$19.99', 'N9J90AN'],
        ])
        item = self.extractor.extract(table).items[0]
        self.assertEqual(item.identifier_values, ['N9J90AN'], "Identifier-looking cell should be scanned")
        self.assertEqual(item.identifiers[0].kind, 'scanned')
        self.assertEqual(item.identifiers[0].source_column, 3)
        self.assertEqual(item.description, 'HP 64 Black Ink Cartridge')

    def test_looks_like_identifier(self):
        for value in ('CF226A', 'TN-660', 'M-PAPER', 'N9J90AN'):
            self.assertTrue(self.extractor.looks_like_identifier(value), f"{value} should look like an identifier")
        for value in ('12345', 'EA', 'Black', 'HP 26A', '$19.99'):
            self.assertFalse(self.extractor.looks_like_identifier(value), f"{value} should not look like an identifier")

    def test_header_repeat_and_empty_rows_accounted(self):
        table = RawTable.from_rows([
            ['SKU', 'Description', 'Qty', 'Unit Price'],
            ['CF226A', 'HP 26A Black Toner Cartridge', '2', '89.99'],
            ['SKU', 'Description', 'Qty', 'Unit Price'],
            ['CE285A', 'HP 85A Black Toner Cartridge', '1', '62.50'],
            ['N/A', '', '', ''],
        ])
        result = self.extractor.extract(table)
        diagnostics = result.diagnostics

        self.assertEqual(len(result.items), 2)
        self.assertEqual(diagnostics.data_rows, 4)
        self.assertEqual(diagnostics.rejected_header_repeat, 1, "Repeated header should be skipped")
        self.assertEqual(diagnostics.rejected_empty, 1, "Placeholder-only row should be rejected")
        self.assertEqual(len(result.items), diagnostics.data_rows - diagnostics.rejected,
                         "Every data row is either extracted or counted as rejected")
        self.assertEqual([item.source_row_index for item in result.items], [1, 3])

    def test_footer_rows_rejected(self):
        table = RawTable.from_rows([
            ['SKU', 'Description', 'Qty', 'Unit Price'],
            ['CF226A', 'HP 26A Black Toner Cartridge', '2', '89.99'],
            ['', 'Subtotal', '', '179.98'],
            ['', 'Total', '', '179.98'],
            ['Page 1 of 2', '', '', ''],
            ['', 'Totally Recycled Copy Paper', '1', '9.99'],
        ])
        result = self.extractor.extract(table)

        self.assertEqual([item.display_name for item in result.items],
                         ['HP 26A Black Toner Cartridge', 'Totally Recycled Copy Paper'])
        self.assertEqual(result.diagnostics.rejected_metadata, 3)
        self.assertEqual(len(result.items), result.diagnostics.data_rows - result.diagnostics.rejected)
        self.assertTrue(self.extractor.is_metadata_row('Part Number'))
        self.assertFalse(self.extractor.is_metadata_row('Pagewide 972A Black'))

    def test_confidence_and_display_name_fallback(self):
        table = RawTable.from_rows([
            ['SKU', 'Description', 'Qty', 'Unit Price'],
            ['CF226A', 'HP 26A Black Toner Cartridge', '2', '89.99'],
            ['CE285A', '', '1', ''],
        ])
        full, partial = self.extractor.extract(table).items

        self.assertEqual(full.extraction_confidence, 1.0)
        self.assertAlmostEqual(partial.extraction_confidence, 0.5, places=4,
                               msg="Identifier + quantity only should score 0.35 + 0.15")
        self.assertEqual(partial.unit_price, Decimal('0'), "Missing price should be 0 (unknown)")
        self.assertEqual(partial.display_name, 'CE285A', "Display name should fall back to the identifier")

    def test_price_above_cap_and_default_quantity(self):
        table = RawTable.from_rows([
            ['SKU', 'Description', 'Qty', 'Unit Price'],
            ['CF226A', 'HP 26A Black Toner Cartridge', '2', '89.99'],
            ['CE285A', 'HP 85A Black Toner Cartridge', '', '62.50'],
            ['TN-660', 'Brother TN660 Black Toner', '1', '1500.00'],
        ])
        items = self.extractor.extract(table).items

        self.assertEqual(items[1].quantity, 1, "Blank quantity should default to 1")
        self.assertEqual(items[2].unit_price, Decimal('0'), "Prices above the sanity cap are treated as unknown")

    def test_description_fallback_without_description_column(self):
        table = RawTable.from_rows([
            ['SKU', 'Qty', 'Unit Price', 'Notes'],
            ['CF226A', '2', '89.99', 'HP 26A Black Toner Cartridge'],
        ])
        item = self.extractor.extract(table).items[0]
        self.assertEqual(item.description, 'HP 26A Black Toner Cartridge')

    def test_item_round_trips_through_checkpoint_dict(self):
        table = RawTable.from_rows([
            ['SKU', 'Description', 'Qty', 'Unit Price', 'UOM'],
            ['CF226A', 'HP 26A Black Toner Cartridge', '2', '89.99', 'BX'],
        ])
        item = self.extractor.extract(table).items[0]
        restored = type(item).from_dict(item.to_dict())
        self.assertEqual(restored, item)


if __name__ == '__main__':
    unittest.main()
