#!/usr/bin/env python3
"""
Quality Validator - Grade extraction and matching for a run

Grades are poor / acceptable / good / excellent. A poor grade or a failed
minimum data check marks the run as low quality; the run still completes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from .models import ExtractedItem

logger = logging.getLogger(__name__)

POOR = 'poor'
ACCEPTABLE = 'acceptable'
GOOD = 'good'
EXCELLENT = 'excellent'


@dataclass
class QualityReport:
    extraction_grade: str
    extraction_stats: Dict[str, float]
    minimum_data_ok: bool
    match_grade: str = ''
    match_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def low_quality(self) -> bool:
        return POOR in (self.extraction_grade, self.match_grade) or not self.minimum_data_ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            'extraction_grade': self.extraction_grade,
            'extraction_stats': self.extraction_stats,
            'minimum_data_ok': self.minimum_data_ok,
            'match_grade': self.match_grade,
            'match_stats': self.match_stats,
            'low_quality': self.low_quality,
        }


def _ratio(count: int, total: int) -> float:
    return count / total if total else 0.0


class QualityValidator:
    """Grade extracted items and match results against 60_quality.yaml"""

    def __init__(self, rule_loader):
        rules = rule_loader.get_quality_rules()
        self.extraction_rules = rules.get('extraction', {})
        self.minimum_data_rules = rules.get('minimum_data', {})
        self.matching_rules = rules.get('matching', {})

    def grade_extraction(self, items: Sequence[ExtractedItem]) -> Tuple[str, Dict[str, float]]:
        """
        Grade extraction completeness

        Returns:
            Tuple of (grade, stats)
        """
        total = len(items)
        stats = {
            'items': total,
            'name_ratio': _ratio(sum(1 for item in items if item.display_name), total),
            'identifier_ratio': _ratio(sum(1 for item in items if item.identifiers), total),
            'price_ratio': _ratio(sum(1 for item in items if item.unit_price > 0), total),
            'average_confidence': _ratio(sum(item.extraction_confidence for item in items), total),
        }
        rules = self.extraction_rules
        if total == 0 or stats['name_ratio'] < rules.get('min_name_ratio', 0.80):
            grade = POOR
        elif (stats['identifier_ratio'] < rules.get('min_identifier_ratio', 0.30)
              or stats['price_ratio'] < rules.get('min_price_ratio', 0.50)):
            grade = ACCEPTABLE
        elif stats['average_confidence'] < rules.get('min_average_confidence', 0.60):
            grade = GOOD
        else:
            grade = EXCELLENT
        return grade, stats

    def check_minimum_data(self, items: Sequence[ExtractedItem]) -> Tuple[bool, float]:
        """
        Enough items carry an identifier and a positive quantity

        Returns:
            Tuple of (passes, complete_ratio)
        """
        complete = sum(1 for item in items if item.identifiers and item.quantity > 0)
        ratio = _ratio(complete, len(items))
        return ratio >= self.minimum_data_rules.get('min_complete_ratio', 0.50), ratio

    def confidence_band(self, score: float) -> str:
        bands = self.matching_rules.get('bands', {})
        if score >= bands.get('high', 0.90):
            return 'high'
        if score >= bands.get('medium', 0.70):
            return 'medium'
        return 'low'

    def grade_matching(self, results: Sequence) -> Tuple[str, Dict[str, Any]]:
        """
        Grade match rate and confidence

        Args:
            results: MatchResults of the run

        Returns:
            Tuple of (grade, stats) with per-method and per-band counts
        """
        total = len(results)
        matched = [result for result in results if result.is_match]
        methods: Dict[str, int] = {}
        bands = {'high': 0, 'medium': 0, 'low': 0}
        for result in matched:
            methods[result.method] = methods.get(result.method, 0) + 1
            bands[self.confidence_band(result.score)] += 1

        match_rate = _ratio(len(matched), total)
        high_ratio = _ratio(bands['high'], len(matched))
        stats = {
            'items': total,
            'matched': len(matched),
            'match_rate': match_rate,
            'high_confidence_ratio': high_ratio,
            'methods': dict(sorted(methods.items())),
            'bands': bands,
        }

        rules = self.matching_rules
        if match_rate < rules.get('poor_below', 0.50):
            grade = POOR
        elif match_rate < rules.get('acceptable_below', 0.75):
            grade = ACCEPTABLE
        elif high_ratio < rules.get('min_high_confidence_ratio', 0.60):
            grade = GOOD
        else:
            grade = EXCELLENT
        return grade, stats

    def validate_extraction(self, items: List[ExtractedItem]) -> QualityReport:
        grade, stats = self.grade_extraction(items)
        minimum_ok, complete_ratio = self.check_minimum_data(items)
        stats['complete_ratio'] = complete_ratio
        report = QualityReport(extraction_grade=grade, extraction_stats=stats, minimum_data_ok=minimum_ok)
        logger.info(f"Extraction quality: {grade} ({stats['items']} items, "
                    f"{stats['identifier_ratio']:.0%} with identifiers, {stats['price_ratio']:.0%} with prices)")
        if not minimum_ok:
            logger.warning(f"Minimum data requirement not met: only {complete_ratio:.0%} of items have "
                           f"an identifier and a quantity")
        return report

    def validate_matching(self, report: QualityReport, results: Sequence) -> QualityReport:
        """Add the match grade to an extraction report"""
        grade, stats = self.grade_matching(results)
        report.match_grade = grade
        report.match_stats = stats
        logger.info(f"Match quality: {grade} ({stats['matched']}/{stats['items']} matched)")
        if report.low_quality:
            logger.warning(f"Low quality run: extraction {report.extraction_grade}, matching {grade}, "
                           f"minimum data {'ok' if report.minimum_data_ok else 'failed'}")
        return report
