#!/usr/bin/env python3
"""
Input Reader Tests: CSV and Excel loading, best sheet selection
"""

import os
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step1_extract.input_readers import load_table, read_raw_tables, score_table, select_best_sheet
from step1_extract.models import RawTable
from step1_extract.rule_loader import RuleLoader
from step1_extract.structure_analyzer import StructureAnalyzer, StructureUnresolvedError

USAGE_CSV = (
    '\ufeffSupply Usage Report\n'
    '\n'
    'OEM Part Number,Description,Qty,Unit Price\n'
    'CF226A,HP 26A Black Toner,2,$150.00\n'
    ',,,\n'
    'TN660,"Brother TN660, High Yield",1,$60.00\n'
)


class TestInputReaders(unittest.TestCase):
    """Test document loading"""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures"""
        cls.rules_dir = PROJECT_ROOT / 'rules'
        cls.rule_loader = RuleLoader(cls.rules_dir)
        cls.analyzer = StructureAnalyzer(cls.rule_loader)

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def write_csv(self, text, name='usage.csv'):
        path = self.tmp_dir / name
        path.write_text(text, encoding='utf-8')
        return path

    def test_csv_single_table(self):
        tables = read_raw_tables(self.write_csv(USAGE_CSV))
        self.assertEqual(len(tables), 1)

        table = tables[0]
        self.assertEqual(table.name, 'usage')
        self.assertEqual(len(table), 4, "Blank rows are dropped")
        self.assertEqual(table.rows[0], ('Supply Usage Report',), "BOM stripped and ragged rows kept")
        self.assertEqual(table.rows[3][1], 'Brother TN660, High Yield')

    def test_unsupported_format(self):
        path = self.tmp_dir / 'usage.pdf'
        path.write_bytes(b'%PDF-1.4')
        with self.assertRaises(ValueError):
            read_raw_tables(path)

    def test_excel_best_sheet(self):
        workbook = Workbook()
        notes = workbook.active
        notes.title = 'Notes'
        notes.append(['Confidential'])
        notes.append(['Prepared quarterly'])
        usage = workbook.create_sheet('Usage')
        usage.append(['OEM Part Number', 'Description', 'Qty', 'Unit Price'])
        usage.append(['CF226A', 'HP 26A Black Toner', '2', '150.00'])
        usage.append(['TN660', 'Brother TN660 High Yield', '1', '60.00'])
        path = self.tmp_dir / 'usage.xlsx'
        workbook.save(path)

        tables = read_raw_tables(path)
        self.assertEqual([t.name for t in tables], ['Notes', 'Usage'])

        table = load_table(path, self.analyzer)
        self.assertEqual(table.name, 'Usage')
        self.assertEqual(table.rows[1][0], 'CF226A')

    def test_select_best_sheet(self):
        plain = RawTable.from_rows([['Confidential'], ['Prepared quarterly']], name='notes')
        items = RawTable.from_rows([
            ['OEM Part Number', 'Description', 'Qty', 'Unit Price'],
            ['CF226A', 'HP 26A Black Toner', '2', '150.00'],
        ], name='items')

        self.assertGreater(score_table(items, self.analyzer), score_table(plain, self.analyzer))
        self.assertIs(select_best_sheet([plain, items], self.analyzer), items)
        self.assertIsNone(select_best_sheet([], self.analyzer))

    def test_empty_document(self):
        with self.assertRaises(StructureUnresolvedError):
            load_table(self.write_csv('\n\n', name='empty.csv'), self.analyzer)


if __name__ == '__main__':
    unittest.main()
