#!/usr/bin/env python3
"""
Main Workflow Script - Savings Analysis Pipeline
        Step 1: Extract line items from a purchase/usage document (CSV, Excel)
        Step 2: Match items to the product catalog (chunked, checkpointed)
        Step 3: Price, optimize and summarize savings

Usage:
    python workflow.py run usage.xlsx --catalog data/catalog.json
    python workflow.py resume <job_id>
    python workflow.py status <job_id>
"""

import sys
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from datetime import datetime

# Load environment variables from .env file if it exists
_env_file = Path(__file__).parent / '.env'
if _env_file.exists():
    with open(_env_file, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                os.environ.setdefault(key.strip(), value.strip())

from step1_extract.logger import setup_logger
from step1_extract.rule_loader import RuleLoader
from step1_extract.structure_analyzer import StructureAnalyzer
from step1_extract.row_extractor import RowExtractor
from step1_extract.input_readers import load_table
from step2_match.catalog import CatalogLookup, ProductCatalog, catalog_options
from step2_match.catalog_db import load_catalog
from step2_match.ollama_client import OllamaClient
from step2_match.semantic_index import SemanticIndex
from step2_match.ai_matcher import AIMatchArbiter
from orchestration.checkpoint_store import CheckpointStore
from orchestration.batch_runner import BatchRunner, cancel_job
from config import CATALOG, DB_CONFIG, OLLAMA, PATHS, PROCESSING, RULES_DIR, LOGGING

CATALOG_FROM_DB = 'db'


class SavingsWorkflow:
    """Wire rules, catalog, optional Ollama tiers and the batch runner together"""

    def __init__(self, rules_dir: Optional[str] = None, checkpoint_dir: Optional[str] = None,
                 output_dir: Optional[str] = None):
        """
        Initialize workflow

        Args:
            rules_dir: Rule directory (defaults to config.RULES_DIR)
            checkpoint_dir: Checkpoint directory (defaults to PATHS['checkpoint_folder'])
            output_dir: Summary output directory (defaults to PATHS['output_folder'])
        """
        self.logger = logging.getLogger(__name__)
        self.rule_loader = RuleLoader(Path(rules_dir or RULES_DIR))
        self.store = CheckpointStore(Path(checkpoint_dir or PATHS['checkpoint_folder']))
        self.output_dir = Path(output_dir or PATHS['output_folder'])

    def load_catalog(self, catalog_source: str) -> CatalogLookup:
        """
        Load the catalog from a file or, for 'db', from PostgreSQL

        Raises:
            CatalogLookupError: catalog missing or unreadable
        """
        options = catalog_options(self.rule_loader)
        flags = self.rule_loader.get_flags()
        if flags.get('enable_semantic_search'):
            options['semantic_index'] = SemanticIndex(OllamaClient.from_config(OLLAMA).embed)
            self.logger.info("Semantic search tier enabled")

        if catalog_source == CATALOG_FROM_DB:
            return load_catalog(DB_CONFIG, table=CATALOG['table'], **options)
        return ProductCatalog.from_file(Path(catalog_source), **options)

    def build_runner(self, catalog: CatalogLookup, chunk_size: Optional[int] = None) -> BatchRunner:
        arbiter = None
        if self.rule_loader.get_flags().get('enable_ai_fallback'):
            arbiter = AIMatchArbiter(OllamaClient.from_config(OLLAMA))
            self.logger.info(f"AI fallback tier enabled ({OLLAMA['model_name']})")

        def report_progress(progress):
            self.logger.info(f"Progress {progress.percent}%: {progress.processed}/{progress.total} items matched")

        return BatchRunner(
            self.store,
            self.rule_loader,
            catalog,
            arbiter=arbiter,
            chunk_size=chunk_size or PROCESSING['chunk_size'],
            max_workers=PROCESSING['max_workers'],
            on_chunk_complete=report_progress,
        )

    def _write_summary(self, job_id: str, summary: Dict[str, Any]) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_file = self.output_dir / f"{job_id}_summary.json"
        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(summary, f, indent=2, ensure_ascii=False, default=str)
        self.logger.info(f"✓ Saved summary to {output_file}")
        return output_file

    def extract(self, input_file: Path) -> Dict[str, Any]:
        """Structure + items for a document, without matching"""
        analyzer = StructureAnalyzer(self.rule_loader)
        extractor = RowExtractor(self.rule_loader, analyzer)
        table = load_table(input_file, analyzer)
        result = extractor.extract(table)
        self.logger.info(f"✓ Extracted {len(result.items)} items from {input_file.name} "
                         f"(sheet '{table.name}')")
        return {
            'sheet': table.name,
            'structure': result.structure.to_dict(),
            'diagnostics': result.diagnostics.to_dict(),
            'items': [item.to_dict() for item in result.items],
        }

    def run(self, input_file: Path, catalog_source: str, job_id: Optional[str] = None,
            chunk_size: Optional[int] = None) -> Optional[Dict[str, Any]]:
        job_id = job_id or f"job_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        self.logger.info("=" * 80)
        self.logger.info(f"SAVINGS ANALYSIS {job_id}: {input_file}")
        self.logger.info("=" * 80)

        catalog = self.load_catalog(catalog_source)
        runner = self.build_runner(catalog, chunk_size)
        table = load_table(input_file, runner.analyzer)
        runner.start(job_id, table, source={'input': str(input_file), 'catalog': catalog_source})
        summary = runner.run(job_id)
        if summary is not None:
            self._write_summary(job_id, summary)
        return summary

    def _runner_for_job(self, job_id: str) -> BatchRunner:
        checkpoint = self.store.load(job_id)
        catalog_source = checkpoint.get('source', {}).get('catalog') or CATALOG['default_file']
        return self.build_runner(self.load_catalog(catalog_source), checkpoint.get('chunk_size'))

    def match_chunk(self, job_id: str):
        return self._runner_for_job(job_id).run_chunk(job_id)

    def resume(self, job_id: str) -> Optional[Dict[str, Any]]:
        self.logger.info(f"Resuming job {job_id} from {self.store.path_for(job_id)}")
        summary = self._runner_for_job(job_id).run(job_id)
        if summary is not None:
            self._write_summary(job_id, summary)
        return summary

    def cancel(self, job_id: str) -> str:
        return cancel_job(self.store, job_id)

    def status(self, job_id: str) -> Dict[str, Any]:
        checkpoint = self.store.load(job_id)
        return {
            'job_id': job_id,
            'state': checkpoint.get('state'),
            'processed': checkpoint.get('cursor', 0),
            'total': checkpoint.get('total', 0),
            'error': checkpoint.get('error'),
            'updated_at': checkpoint.get('updated_at'),
        }


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description='Supply Savings Analysis Workflow')
    parser.add_argument('--rules-dir', type=str, help='Rule directory (default: rules/)')
    parser.add_argument('--checkpoint-dir', type=str, help='Checkpoint directory')
    parser.add_argument('--output-dir', type=str, help='Summary output directory')
    parser.add_argument('--log-level', type=str, default=LOGGING['level'],
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Extract, match and summarize a document')
    run_parser.add_argument('input', type=str, help='Input document (.csv or .xlsx)')
    run_parser.add_argument('--catalog', type=str, default=CATALOG['default_file'],
                            help="Catalog file (.json/.csv/.xlsx) or 'db'")
    run_parser.add_argument('--job-id', type=str, help='Job id (default: timestamp)')
    run_parser.add_argument('--chunk-size', type=int, help='Items matched per checkpoint')

    match_parser = subparsers.add_parser('match', help='Match the next chunk of a job')
    match_parser.add_argument('job_id', type=str)

    for name, help_text in (('resume', 'Continue a job from its checkpoint'),
                            ('cancel', 'Stop scheduling further chunks of a job'),
                            ('status', 'Show job progress')):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('job_id', type=str)

    extract_parser = subparsers.add_parser('extract', help='Print structure and items as JSON')
    extract_parser.add_argument('input', type=str, help='Input document (.csv or .xlsx)')

    args = parser.parse_args()

    logger = setup_logger(args.log_level, PATHS['log_folder'], log_format=LOGGING['format'])
    workflow = SavingsWorkflow(args.rules_dir, args.checkpoint_dir, args.output_dir)

    if args.command == 'run':
        summary = workflow.run(Path(args.input), args.catalog, args.job_id, args.chunk_size)
        if summary is None:
            sys.exit(1)
        print(f"Total savings: ${summary['total_savings']:.2f} ({summary['savings_percentage']:.1f}%)")
    elif args.command == 'match':
        print(workflow.match_chunk(args.job_id))
    elif args.command == 'resume':
        summary = workflow.resume(args.job_id)
        if summary is None:
            sys.exit(1)
        print(f"Total savings: ${summary['total_savings']:.2f} ({summary['savings_percentage']:.1f}%)")
    elif args.command == 'cancel':
        print(workflow.cancel(args.job_id))
    elif args.command == 'status':
        print(json.dumps(workflow.status(args.job_id), indent=2))
    elif args.command == 'extract':
        print(json.dumps(workflow.extract(Path(args.input)), indent=2, ensure_ascii=False, default=str))
    logger.debug(f"Command {args.command} finished")


if __name__ == '__main__':
    main()
