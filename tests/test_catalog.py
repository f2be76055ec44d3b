#!/usr/bin/env python3
"""
Catalog Tests: entry parsing, color detection, indexes, file loaders and the database snapshot
"""

import json
import os
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import psycopg2

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step1_extract.rule_loader import RuleLoader
from step2_match.catalog import (
    CatalogEntry,
    CatalogLookupError,
    ProductCatalog,
    detect_color,
    normalize_color,
    normalize_identifier,
    strip_known_prefix,
    tokenize,
)
from step2_match.catalog_db import ENV_KEYS, load_catalog_from_database, resolve_connection_settings

from catalog_fixtures import CATALOG_RECORDS, build_catalog


class TestCatalogEntry(unittest.TestCase):
    """Test entry parsing and text helpers"""

    def test_from_dict(self):
        entry = CatalogEntry.from_dict({
            'entry_id': 7, 'product_name': 'Acme Toner', 'primary_sku': 'ACM-1', 'oem_number': 'A1',
            'depot_sku': '', 'page_yield': '2,500', 'pack_quantity': '0', 'uom': 'bx',
            'price': '$1,020.50', 'list_price': 'n/a', 'active': 'false',
        })
        self.assertEqual(entry.entry_id, '7')
        self.assertEqual(entry.alternate_skus, (('oem_number', 'A1'),), "Blank namespaces are skipped")
        self.assertEqual(entry.page_yield, 2500)
        self.assertEqual(entry.pack_quantity, 1, "Pack quantity is at least 1")
        self.assertEqual(entry.uom, 'BX')
        self.assertEqual(entry.price, Decimal('1020.50'))
        self.assertIsNone(entry.list_price)
        self.assertFalse(entry.active)

    def test_missing_id_or_name(self):
        with self.assertRaises(CatalogLookupError):
            CatalogEntry.from_dict({'entry_id': 'X1'})

    def test_colors(self):
        self.assertEqual(detect_color('CANON CL-246 C/M/Y COLOR INK'), 'color')
        self.assertEqual(detect_color('HP 26A Black Original'), 'black')
        self.assertEqual(detect_color('Epson 220 Cyan Ink'), 'cyan')
        self.assertEqual(detect_color('Tri-Color Ink Cartridge'), 'color')
        self.assertIsNone(detect_color('Copy Paper'))
        self.assertEqual(normalize_color('BK'), 'black')
        self.assertIsNone(normalize_color('  '))

        entry = CatalogEntry(entry_id='E1', product_name='Lexmark 50F Toner Black')
        self.assertEqual(entry.effective_color, 'black', "Color falls back to the product name")

    def test_identifier_helpers(self):
        self.assertEqual(normalize_identifier('cf-226 a'), 'CF226A')
        self.assertEqual(strip_known_prefix('MHEWCF226A'), 'CF226A')
        self.assertEqual(strip_known_prefix('MCF226A'), 'CF226A')
        self.assertIsNone(strip_known_prefix('CF226A'))
        self.assertIsNone(strip_known_prefix('MAB'), "Too little left after the prefix")
        self.assertEqual(tokenize('Canon PG-245 Black Ink, 1 pk'), ['CANON', 'PG', '245', 'BLACK', 'INK', 'PK'])


class TestProductCatalog(unittest.TestCase):
    """Test in-memory indexes and loaders"""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures"""
        cls.rules_dir = PROJECT_ROOT / 'rules'
        cls.rule_loader = RuleLoader(cls.rules_dir)
        cls.catalog = build_catalog(cls.rule_loader)

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_lookup_indexes(self):
        hits = self.catalog.find_by_identifier(' cf226a ')
        self.assertEqual([(entry.entry_id, namespace) for entry, namespace in hits], [('P100', 'oem_number')])
        self.assertEqual(self.catalog.find_by_normalized_identifier('HEWCF226A')[0][0].entry_id, 'P100')
        self.assertEqual([e.entry_id for e in self.catalog.family_members(self.catalog.get('P101'))], ['P100', 'P101'])
        self.assertEqual([e.entry_id for e in self.catalog.search_names('canon')], ['P200', 'P201'])
        self.assertEqual(self.catalog.semantic_search('black toner'), [], "No index attached")

    def test_full_text_ranks_name_overlap(self):
        hits = self.catalog.full_text_search('Brother TN660 toner')
        self.assertEqual(hits[0][0].entry_id, 'P300')
        self.assertEqual(hits[0][1], 1.0)

    def test_inactive_and_duplicate_entries(self):
        records = CATALOG_RECORDS + [
            {'entry_id': 'P900', 'product_name': 'Retired Toner', 'oem_number': 'OLD900', 'active': False},
            {'entry_id': 'P100', 'product_name': 'Duplicate row'},
        ]
        catalog = build_catalog(self.rule_loader, records)
        self.assertIsNotNone(catalog.get('P900'), "Inactive entries stay reachable by id")
        self.assertEqual(catalog.find_by_identifier('OLD900'), [])
        self.assertEqual(catalog.get('P100').product_name, CATALOG_RECORDS[0]['product_name'])
        self.assertEqual(len(catalog.entries), len(CATALOG_RECORDS))

    def test_from_json_products_key(self):
        path = self.tmp_dir / 'catalog.json'
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({'products': CATALOG_RECORDS[:2]}, f)
        catalog = ProductCatalog.from_file(path)
        self.assertEqual(len(catalog), 2)
        self.assertEqual(catalog.get('P101').page_yield, 9000)

    def test_from_csv(self):
        path = self.tmp_dir / 'catalog.csv'
        path.write_text(
            'entry_id,product_name,oem_number,price,pack_quantity\n'
            'C1,Acme Toner Black,AC-1,$55.00,\n'
            'C2,Acme Paper,,12.50,10\n',
            encoding='utf-8',
        )
        catalog = ProductCatalog.from_file(path)
        self.assertEqual(catalog.get('C1').price, Decimal('55.00'))
        self.assertEqual(catalog.get('C1').pack_quantity, 1)
        self.assertEqual(catalog.get('C2').pack_quantity, 10)
        self.assertEqual(catalog.get('C2').alternate_skus, ())

    def test_unreadable_catalogs(self):
        with self.assertRaises(CatalogLookupError):
            ProductCatalog.from_file(self.tmp_dir / 'missing.json')

        broken = self.tmp_dir / 'broken.json'
        broken.write_text('{"products": [', encoding='utf-8')
        with self.assertRaises(CatalogLookupError):
            ProductCatalog.from_file(broken)

        unsupported = self.tmp_dir / 'catalog.txt'
        unsupported.write_text('x', encoding='utf-8')
        with self.assertRaises(CatalogLookupError):
            ProductCatalog.from_file(unsupported)


class TestCatalogDatabase(unittest.TestCase):
    """Test connection settings and the product snapshot with a fake connection"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.env_file = Path(self._tmp.name) / '.env'

    def tearDown(self):
        self._tmp.cleanup()

    def test_settings_precedence(self):
        self.env_file.write_text('# catalog\nCATALOG_DB_HOST=from-file\nCATALOG_DB_PASSWORD=secret\n', encoding='utf-8')
        defaults = {'host': 'localhost', 'port': 5432, 'database': 'catalog', 'user': 'catalog_reader', 'password': ''}

        with patch.dict(os.environ, {}, clear=False):
            for name in ENV_KEYS.values():
                os.environ.pop(name, None)
            os.environ['CATALOG_DB_HOST'] = 'from-env'
            os.environ['CATALOG_DB_PORT'] = '6543'
            settings = resolve_connection_settings(defaults, self.env_file)

        self.assertEqual(settings['host'], 'from-env', "Environment wins over .env")
        self.assertEqual(settings['password'], 'secret')
        self.assertEqual(settings['port'], 6543)
        self.assertEqual(settings['user'], 'catalog_reader')
        self.assertEqual(defaults['host'], 'localhost', "Defaults are not modified")

    def fake_connection(self, rows=None, error=None):
        cursor = MagicMock()
        cursor.fetchall.return_value = rows or []
        if error is not None:
            cursor.execute.side_effect = error
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        return conn, cursor

    def test_snapshot(self):
        conn, cursor = self.fake_connection([
            {'entry_id': '11', 'product_name': 'HP 26A Black Toner', 'primary_sku': 'HEW-CF226A',
             'oem_number': 'CF226A', 'price': Decimal('120.00'), 'active': True},
        ])
        catalog = load_catalog_from_database(conn, 'catalog_products')

        cursor.execute.assert_called_once()
        self.assertEqual(catalog.find_by_identifier('CF226A')[0][0].entry_id, '11')

    def test_query_failure(self):
        conn, _ = self.fake_connection(error=psycopg2.OperationalError('server closed the connection'))
        with self.assertRaises(CatalogLookupError):
            load_catalog_from_database(conn)


if __name__ == '__main__':
    unittest.main()
