#!/usr/bin/env python3
"""
Batch Runner Tests: chunked matching, checkpoint resume, cancellation, failures and determinism
"""

import os
import tempfile
import unittest
from pathlib import Path

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from orchestration.batch_runner import BatchRunner, cancel_job
from orchestration.checkpoint_store import CheckpointStore
from step1_extract.models import RawTable
from step1_extract.rule_loader import RuleLoader
from step1_extract.structure_analyzer import StructureUnresolvedError
from step2_match.catalog import CatalogLookupError
from step2_match.catalog_resolver import CatalogResolver

from catalog_fixtures import CATALOG_RECORDS, build_catalog

USAGE_ROWS = [
    ['OEM Part Number', 'Description', 'Qty', 'Unit Price'],
    ['CF226A', 'HP 26A Black Original LaserJet Toner Cartridge', '2', '$150.00'],
    ['PG-245', 'CANON PG-245 BLACK INK', '3', '$25.00'],
    ['', 'CANON CL-246 C/M/Y COLOR INK', '1', '$30.00'],
    ['TN660', 'Brother TN660 High Yield Black Toner', '1', '$60.00'],
    ['ZZ-0001', 'Ergonomic mesh office chair', '1', '$199.00'],
]


class ExplodingResolver(CatalogResolver):
    def resolve(self, item):
        raise RuntimeError("catalog connection lost")


class TestBatchRunner(unittest.TestCase):
    """Test checkpointed chunk processing"""

    @classmethod
    def setUpClass(cls):
        """Set up test fixtures"""
        cls.rules_dir = PROJECT_ROOT / 'rules'
        cls.rule_loader = RuleLoader(cls.rules_dir)
        cls.catalog = build_catalog(cls.rule_loader)
        cls.table = RawTable.from_rows(USAGE_ROWS, name='usage')

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CheckpointStore(Path(self._tmp.name))

    def tearDown(self):
        self._tmp.cleanup()

    def runner(self, chunk_size=2, catalog=None, **kwargs):
        return BatchRunner(self.store, self.rule_loader, catalog or self.catalog, chunk_size=chunk_size, **kwargs)

    def test_chunks_advance_cursor_and_resume_from_checkpoint(self):
        progress = self.runner().start('job1', self.table)
        self.assertEqual((progress.state, progress.processed, progress.total, progress.percent),
                         ('extracted', 0, 5, 15))

        progress = self.runner().run_chunk('job1')
        self.assertEqual((progress.state, progress.processed, progress.percent), ('matching', 2, 33))
        self.assertEqual(str(progress), 'job1: processed 2 of 5 (matching, 33%)')

        # A fresh runner continues from the persisted cursor
        progress = self.runner().run_chunk('job1')
        self.assertEqual(progress.processed, 4)
        progress = self.runner().run_chunk('job1')
        self.assertEqual((progress.state, progress.processed, progress.percent), ('matched', 5, 60))
        self.assertEqual(len(self.store.load('job1')['results']), 5)

        again = self.runner().run_chunk('job1')
        self.assertEqual(again.processed, 5, "Matched jobs have no chunk left to run")

        summary = self.runner().finalize('job1')
        self.assertEqual(self.store.state('job1'), 'completed')
        self.assertEqual(self.runner().status('job1').percent, 100)
        self.assertEqual(summary['job_id'], 'job1')

    def test_summary_for_usage_report(self):
        self.runner().start('job2', self.table)
        summary = self.runner().run('job2')

        self.assertEqual(summary['counts'], {'optimizable': 3, 'no_opportunity': 1, 'unresolved': 1})
        self.assertAlmostEqual(summary['total_savings'], 110.04)
        methods = [row['match_method'] for row in summary['breakdown']]
        self.assertEqual(methods, ['exact_identifier', 'exact_identifier', 'substring', 'exact_identifier', None])
        self.assertEqual(summary['breakdown'][0]['recommended_entry_id'], 'P101')
        self.assertEqual(summary['quality']['match_grade'], 'excellent')
        self.assertEqual(summary['diagnostics']['extracted'], 5)
        self.assertEqual(self.runner().finalize('job2'), summary, "Completed jobs return the stored summary")

    def test_results_independent_of_chunk_size_and_workers(self):
        self.runner(chunk_size=1).start('small', self.table)
        small = self.runner(chunk_size=1).run('small')
        self.runner(chunk_size=100, max_workers=3).start('large', self.table)
        large = self.runner(chunk_size=100, max_workers=3).run('large')

        small.pop('job_id')
        large.pop('job_id')
        self.assertEqual(small, large)

    def test_progress_callback_per_chunk(self):
        seen = []
        runner = self.runner(on_chunk_complete=seen.append)
        runner.start('job3', self.table)
        runner.run('job3')
        self.assertEqual([p.processed for p in seen], [2, 4, 5])
        self.assertEqual(seen[-1].state, 'matched')

    def test_cancel_stops_further_chunks(self):
        runner = self.runner()
        runner.start('job4', self.table)
        runner.run_chunk('job4')

        self.assertEqual(runner.cancel('job4'), 'cancelled')
        self.assertIsNone(runner.run('job4'))
        status = runner.status('job4')
        self.assertEqual((status.state, status.processed), ('cancelled', 2))
        self.assertEqual(runner.run_chunk('job4').processed, 2, "Cancelled jobs schedule nothing")

    def test_cancel_leaves_finished_jobs_alone(self):
        runner = self.runner()
        runner.start('job5', self.table)
        runner.run('job5')
        self.assertEqual(cancel_job(self.store, 'job5'), 'completed')

    def test_unresolved_structure_fails_job(self):
        table = RawTable.from_rows([['1', '2', '3'], ['4', '5', '6']])
        with self.assertRaises(StructureUnresolvedError):
            self.runner().start('job6', table)
        checkpoint = self.store.load('job6')
        self.assertEqual(checkpoint['state'], 'failed')
        self.assertIn('No header row', checkpoint['error'])

    def test_resolver_error_fails_job(self):
        runner = self.runner(resolver=ExplodingResolver(self.catalog, self.rule_loader))
        runner.start('job7', self.table)
        with self.assertRaises(RuntimeError):
            runner.run_chunk('job7')

        checkpoint = self.store.load('job7')
        self.assertEqual(checkpoint['state'], 'failed')
        self.assertEqual(checkpoint['cursor'], 0, "Failed chunk must not advance the cursor")
        self.assertIsNone(runner.run('job7'))

    def test_missing_catalog_entry_at_finalize(self):
        runner = self.runner(chunk_size=10)
        runner.start('job8', self.table)
        runner.run_chunk('job8')

        shrunk = build_catalog(self.rule_loader, [r for r in CATALOG_RECORDS if r['entry_id'] != 'P100'])
        with self.assertRaises(CatalogLookupError):
            self.runner(catalog=shrunk).finalize('job8')
        self.assertEqual(self.store.state('job8'), 'failed')

    def test_finalize_requires_matched_job(self):
        runner = self.runner()
        runner.start('job9', self.table)
        with self.assertRaises(ValueError):
            runner.finalize('job9')

    def test_checkpoint_listing(self):
        self.runner().start('a', self.table)
        self.runner().start('b', self.table)
        self.assertEqual(self.store.list_jobs(), ['a', 'b'])
        self.assertIsNone(self.store.state('missing'))
        with self.assertRaises(FileNotFoundError):
            self.store.load('missing')


if __name__ == '__main__':
    unittest.main()
