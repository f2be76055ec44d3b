"""
Step 1: Extract Line Items
Reads CSV and Excel documents into raw tables, infers the header row and column
roles, and extracts confidence-scored line items. Rule-driven through rules/*.yaml.
"""

from .rule_loader import RuleLoader
from .models import ColumnRole, RawTable, ExtractedItem, ExtractionResult, StructureResult
from .structure_analyzer import StructureAnalyzer, StructureUnresolvedError
from .row_extractor import RowExtractor
from .input_readers import load_table, read_raw_tables, select_best_sheet
from .quality_validator import QualityReport, QualityValidator

__all__ = [
    'RuleLoader',
    'ColumnRole',
    'RawTable',
    'ExtractedItem',
    'ExtractionResult',
    'StructureResult',
    'StructureAnalyzer',
    'StructureUnresolvedError',
    'RowExtractor',
    'load_table',
    'read_raw_tables',
    'select_best_sheet',
    'QualityReport',
    'QualityValidator',
]
