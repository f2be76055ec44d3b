#!/usr/bin/env python3
"""
Batch Runner - Chunked checkpoint/resume processing of one document

States: extracted -> matching -> matched -> completed, or failed / cancelled.
Each run_chunk() call matches the next chunk of items, persists the results with
the advanced cursor and reports "processed k of n". A new runner pointed at the
same checkpoint directory picks up from the persisted cursor.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from step1_extract.models import ExtractedItem, RawTable
from step1_extract.quality_validator import QualityValidator
from step1_extract.row_extractor import RowExtractor
from step1_extract.structure_analyzer import StructureAnalyzer, StructureUnresolvedError
from step2_match.catalog import CatalogLookup
from step2_match.catalog_resolver import CatalogResolver
from step2_match.models import MatchResult
from step3_savings.categorizer import SavingsCategorizer
from step3_savings.optimizer import YieldOptimizer
from step3_savings.price_normalizer import PriceNormalizer
from step3_savings.savings_calculator import SavingsCalculator

from .checkpoint_store import (
    CheckpointStore,
    STATE_CANCELLED,
    STATE_COMPLETED,
    STATE_EXTRACTED,
    STATE_FAILED,
    STATE_MATCHED,
    STATE_MATCHING,
    TERMINAL_STATES,
)

logger = logging.getLogger(__name__)


def cancel_job(store: CheckpointStore, job_id: str) -> str:
    """
    Mark a job cancelled; chunk work already running may finish but nothing further is scheduled

    Returns:
        The resulting state (unchanged for jobs that already finished)
    """
    checkpoint = store.load(job_id)
    if checkpoint['state'] in TERMINAL_STATES:
        logger.info(f"Job {job_id} already {checkpoint['state']}")
        return checkpoint['state']
    store.update(job_id, state=STATE_CANCELLED)
    logger.info(f"Job {job_id} cancelled at {checkpoint.get('cursor', 0)} of {checkpoint.get('total', 0)}")
    return STATE_CANCELLED


@dataclass(frozen=True)
class Progress:
    job_id: str
    processed: int
    total: int
    state: str
    percent: int

    def __str__(self) -> str:
        return f"{self.job_id}: processed {self.processed} of {self.total} ({self.state}, {self.percent}%)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'processed': self.processed,
            'total': self.total,
            'state': self.state,
            'percent': self.percent,
        }


class BatchRunner:
    """Run extraction, chunked matching and savings for checkpointed jobs"""

    def __init__(self, store: CheckpointStore, rule_loader, catalog: CatalogLookup, arbiter=None,
                 resolver: Optional[CatalogResolver] = None, chunk_size: Optional[int] = None,
                 max_workers: Optional[int] = None,
                 on_chunk_complete: Optional[Callable[[Progress], None]] = None):
        """
        Initialize batch runner

        Args:
            store: CheckpointStore holding job documents
            rule_loader: RuleLoader instance
            catalog: Catalog lookup interface (read-only)
            arbiter: Optional AIMatchArbiter for the AI fallback tier
            resolver: Explicit CatalogResolver (built from rules when omitted)
            chunk_size: Items matched per run_chunk() call (shared.yaml processing.chunk_size)
            max_workers: Threads used to match items within a chunk
            on_chunk_complete: Continuation trigger, called with Progress after each chunk
        """
        self.store = store
        self.catalog = catalog
        processing = rule_loader.get_processing_rules()
        self.chunk_size = int(chunk_size or processing.get('chunk_size', 100))
        self.max_workers = int(max_workers or processing.get('max_workers', 1))
        progress_rules = processing.get('progress', {})
        self.progress_start = int(progress_rules.get('matching_start', 15))
        self.progress_end = int(progress_rules.get('matching_end', 60))
        self.on_chunk_complete = on_chunk_complete

        self.analyzer = StructureAnalyzer(rule_loader)
        self.extractor = RowExtractor(rule_loader, self.analyzer)
        self.validator = QualityValidator(rule_loader)
        self.resolver = resolver or CatalogResolver(catalog, rule_loader, arbiter)

        normalizer = PriceNormalizer(rule_loader)
        self.calculator = SavingsCalculator(YieldOptimizer(catalog, rule_loader, normalizer), normalizer)
        namespaces = rule_loader.get_matching_rules().get('identifier_namespaces') or ['primary_sku']
        self.categorizer = SavingsCategorizer(rule_loader, primary_namespace=namespaces[0])

    def _percent(self, state: str, processed: int, total: int) -> int:
        if state == STATE_COMPLETED:
            return 100
        if state == STATE_EXTRACTED:
            return self.progress_start
        if state == STATE_MATCHED or total == 0:
            return self.progress_end
        span = self.progress_end - self.progress_start
        return self.progress_start + int(span * processed / total)

    def _progress(self, job_id: str, checkpoint: Dict[str, Any]) -> Progress:
        state = checkpoint['state']
        processed = int(checkpoint.get('cursor', 0))
        total = int(checkpoint.get('total', 0))
        return Progress(job_id, processed, total, state, self._percent(state, processed, total))

    def _fail(self, job_id: str, error: Exception):
        logger.error(f"Job {job_id} failed: {error}")
        if self.store.exists(job_id):
            self.store.update(job_id, state=STATE_FAILED, error=str(error))

    @staticmethod
    def _items(checkpoint: Dict[str, Any]) -> List[ExtractedItem]:
        return [ExtractedItem.from_dict(data) for data in checkpoint.get('items', [])]

    def start(self, job_id: str, table: RawTable, source: Optional[Dict[str, Any]] = None) -> Progress:
        """
        Analyze and extract a table and persist the job as extracted

        Args:
            job_id: Job identifier (checkpoint file name)
            table: RawTable of the input document
            source: Input/catalog description kept for resume

        Raises:
            StructureUnresolvedError: no header row and no positional inference possible
        """
        logger.info(f"Starting job {job_id} ({len(table)} rows)")
        try:
            extraction = self.extractor.extract(table)
        except StructureUnresolvedError as e:
            self.store.save(job_id, {
                'state': STATE_FAILED, 'error': str(e), 'cursor': 0, 'total': 0,
                'chunk_size': self.chunk_size, 'source': source or {}, 'items': [], 'results': [],
            })
            logger.error(f"Job {job_id} failed: {e}")
            raise

        report = self.validator.validate_extraction(extraction.items)
        checkpoint = {
            'state': STATE_EXTRACTED,
            'created_at': datetime.now().isoformat(timespec='seconds'),
            'cursor': 0,
            'total': len(extraction.items),
            'chunk_size': self.chunk_size,
            'source': source or {},
            'structure': extraction.structure.to_dict(),
            'diagnostics': extraction.diagnostics.to_dict(),
            'quality': report.to_dict(),
            'items': [item.to_dict() for item in extraction.items],
            'results': [],
            'summary': None,
            'error': None,
        }
        self.store.save(job_id, checkpoint)
        progress = self._progress(job_id, checkpoint)
        logger.info(f"✓ Extracted {progress.total} items for job {job_id}")
        return progress

    def run_chunk(self, job_id: str) -> Progress:
        """
        Match the next chunk of items and persist the advanced cursor

        Returns:
            Progress after the chunk; a no-op for jobs that are past matching
        """
        checkpoint = self.store.load(job_id)
        state = checkpoint['state']
        if state not in (STATE_EXTRACTED, STATE_MATCHING):
            logger.debug(f"Job {job_id} is {state}, no chunk to run")
            return self._progress(job_id, checkpoint)

        cursor = int(checkpoint.get('cursor', 0))
        chunk_size = int(checkpoint.get('chunk_size') or self.chunk_size)
        items = self._items(checkpoint)
        chunk = items[cursor:cursor + chunk_size]

        try:
            results = self.resolver.resolve_all(chunk, self.max_workers)
        except Exception as e:
            self._fail(job_id, e)
            raise

        # Re-read so a cancel issued while this chunk ran is kept
        latest = self.store.load(job_id)
        latest['results'] = latest.get('results', []) + [result.to_dict() for result in results]
        latest['cursor'] = cursor + len(chunk)
        if latest['state'] != STATE_CANCELLED:
            latest['state'] = STATE_MATCHED if latest['cursor'] >= len(items) else STATE_MATCHING
        self.store.save(job_id, latest)

        progress = self._progress(job_id, latest)
        logger.info(f"Job {job_id}: processed {progress.processed} of {progress.total}")
        if self.on_chunk_complete:
            self.on_chunk_complete(progress)
        return progress

    def finalize(self, job_id: str) -> Dict[str, Any]:
        """
        Price, optimize and categorize a fully matched job

        Returns:
            Summary dict (also stored in the checkpoint)

        Raises:
            ValueError: the job has not finished matching
            CatalogLookupError: an entry referenced by the checkpoint is gone
        """
        checkpoint = self.store.load(job_id)
        state = checkpoint['state']
        if state == STATE_COMPLETED:
            return checkpoint['summary']
        if state != STATE_MATCHED:
            raise ValueError(f"Job {job_id} is {state}; matching has not finished")

        try:
            items = self._items(checkpoint)
            results = [MatchResult.from_dict(data, item, self.catalog)
                       for data, item in zip(checkpoint['results'], items)]
            report = self.validator.validate_extraction(items)
            report = self.validator.validate_matching(report, results)
            priced = [self.calculator.price(result) for result in results]
            summary = self.categorizer.summarize(priced, report.to_dict())
        except Exception as e:
            self._fail(job_id, e)
            raise

        summary_dict = summary.to_dict()
        summary_dict['job_id'] = job_id
        summary_dict['diagnostics'] = checkpoint.get('diagnostics')
        checkpoint.update(state=STATE_COMPLETED, summary=summary_dict, quality=report.to_dict())
        self.store.save(job_id, checkpoint)
        logger.info(f"✓ Job {job_id} completed: ${summary_dict['total_savings']:.2f} savings "
                    f"({summary_dict['savings_percentage']:.1f}%)")
        return summary_dict

    def run(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Run remaining chunks and finalize

        Returns:
            Summary dict, or None when the job was cancelled or failed
        """
        progress = self.status(job_id)
        while progress.state in (STATE_EXTRACTED, STATE_MATCHING):
            progress = self.run_chunk(job_id)

        if progress.state in (STATE_CANCELLED, STATE_FAILED):
            logger.warning(f"Job {job_id} is {progress.state}; no further chunks scheduled")
            return None
        return self.finalize(job_id)

    def cancel(self, job_id: str) -> str:
        return cancel_job(self.store, job_id)

    def status(self, job_id: str) -> Progress:
        return self._progress(job_id, self.store.load(job_id))
