#!/usr/bin/env python3
"""
Row Extractor - Turn table rows into confidence-scored ExtractedItem records
Reads the cells the Structure Analyzer assigned, and also scans every other
cell for identifier-looking values (OEM numbers, wholesaler codes, alternate SKUs)
"""

import logging
import re
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .models import (
    ColumnRole,
    ExtractedItem,
    ExtractionDiagnostics,
    ExtractionResult,
    Identifier,
    RawTable,
    StructureResult,
)
from .structure_analyzer import StructureAnalyzer
from .utils.cell_parsing import (
    cell_at,
    has_digit,
    has_letter,
    looks_numeric,
    non_empty_cells,
    parse_decimal,
    parse_number,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_VALUES = {'n/a', 'na', 'none', 'null', '-', '--', 'tbd'}


class RowExtractor:
    """Extract line items from the data rows of a RawTable"""

    def __init__(self, rule_loader, analyzer: Optional[StructureAnalyzer] = None):
        """
        Initialize row extractor

        Args:
            rule_loader: RuleLoader instance
            analyzer: StructureAnalyzer used for row-local inference (created if omitted)
        """
        self.rule_loader = rule_loader
        self.analyzer = analyzer or StructureAnalyzer(rule_loader)
        rules = rule_loader.get_extraction_rules()

        scan = rules.get('identifier_scan', {})
        self.scan_min_length = scan.get('min_length', 3)
        self.scan_max_length = scan.get('max_length', 30)
        self.vendor_prefixes = [p.upper() for p in scan.get('vendor_prefixes', [])]

        fallback = rules.get('description_fallback', {})
        self.fallback_min_length = fallback.get('min_length', 15)
        self.fallback_max_length = fallback.get('max_length', 200)

        repeat = rules.get('header_repeat', {})
        self.repeat_max_cell_length = repeat.get('max_keyword_cell_length', 30)
        self.repeat_keywords = [k.lower() for k in repeat.get('keywords', [])]

        metadata = rules.get('metadata_rows', {}).get('pattern')
        self.metadata_pattern = re.compile(metadata, re.IGNORECASE) if metadata else None

        self.default_quantity = rules.get('default_quantity', 1)
        self.weights = rules.get('confidence_weights', {})
        self.price_cap = Decimal(str(rule_loader.get_price_sanity_cap()))

    def is_header_repeat(self, row: Sequence[str]) -> bool:
        """A row where more than half the non-empty cells are header keywords"""
        cells = non_empty_cells(row)
        if not cells:
            return False
        keyword_cells = 0
        for cell in cells:
            lowered = cell.lower()
            if len(cell) < self.repeat_max_cell_length and any(k in lowered for k in self.repeat_keywords):
                keyword_cells += 1
        return keyword_cells * 2 > len(cells)

    def is_metadata_row(self, display_name: str) -> bool:
        """Totals, page numbers and report fields that sit between or below the line items"""
        if self.metadata_pattern is None or not display_name:
            return False
        return bool(self.metadata_pattern.match(display_name.strip()))

    def looks_like_identifier(self, cell: str) -> bool:
        """Alphanumeric token with letters and digits, or a known vendor-code prefix"""
        if not (self.scan_min_length <= len(cell) <= self.scan_max_length):
            return False
        if any(ch.isspace() for ch in cell) or looks_numeric(cell) or not has_letter(cell):
            return False
        if has_digit(cell):
            return True
        upper = cell.upper()
        return any(upper.startswith(prefix) for prefix in self.vendor_prefixes)

    def _longest_text_cell(self, row: Sequence[str], skip: set) -> str:
        best = ''
        for index, cell in enumerate(row):
            text = cell.strip()
            if index in skip or looks_numeric(text) or ' ' not in text:
                continue
            if not (self.fallback_min_length <= len(text) <= self.fallback_max_length):
                continue
            if self.analyzer.count_keyword_cells([text]) and len(text) < self.repeat_max_cell_length:
                continue
            if len(text) > len(best):
                best = text
        return best

    def _parse_quantity(self, cell: str) -> int:
        value = parse_number(cell)
        if value is None:
            return self.default_quantity
        return max(int(round(value)), 0)

    def _parse_price(self, cell: str, row_index: int) -> Decimal:
        price = parse_decimal(cell)
        if price is None or price < 0:
            return Decimal('0')
        if price > self.price_cap:
            logger.debug(f"Row {row_index}: price {price} above sanity cap, treating as unknown")
            return Decimal('0')
        return price

    def confidence(self, description: str, identifiers: Sequence[Identifier],
                   unit_price: Decimal, quantity: int) -> float:
        score = 0.0
        if description:
            score += self.weights.get('description', 0.25)
        if identifiers:
            score += self.weights.get('identifier', 0.35)
        if unit_price > 0:
            score += self.weights.get('price', 0.25)
        if quantity > 0:
            score += self.weights.get('quantity', 0.15)
        return round(min(score, 1.0), 4)

    def extract_row(self, row: Sequence[str], row_index: int, structure: StructureResult,
                    columns: Optional[Dict[ColumnRole, int]] = None) -> Optional[ExtractedItem]:
        """
        Extract one row

        Args:
            row: Row cells
            row_index: Index of the row in the RawTable
            structure: Table structure
            columns: Row-local role -> column mapping (positional mode); defaults to structure roles

        Returns:
            ExtractedItem, or None when the row has neither description nor identifiers
        """
        if columns is None:
            columns = {role: structure.column_for(role) for role in ColumnRole if role != ColumnRole.UNKNOWN}
            identifier_columns = [(col.index, col.kind) for col in structure.identifier_columns]
        else:
            identifier_columns = []
            if columns.get(ColumnRole.IDENTIFIER) is not None:
                identifier_columns.append((columns[ColumnRole.IDENTIFIER], 'positional'))

        description_col = columns.get(ColumnRole.DESCRIPTION)
        quantity_col = columns.get(ColumnRole.QUANTITY)
        price_col = columns.get(ColumnRole.UNIT_PRICE)
        uom_col = columns.get(ColumnRole.UNIT_OF_MEASURE)

        assigned = {c for c in (description_col, quantity_col, price_col, uom_col) if c is not None}
        assigned.update(index for index, _ in identifier_columns)
        excluded = set(structure.excluded_columns)

        identifiers: List[Identifier] = []
        seen = set()

        def add(index: int, value: str, kind: str):
            key = value.upper()
            if key in seen:
                return
            seen.add(key)
            identifiers.append(Identifier(index, value, kind))

        for index, kind in identifier_columns:
            value = cell_at(row, index)
            if value and value.lower() not in PLACEHOLDER_VALUES and (has_letter(value) or has_digit(value)):
                add(index, value, kind)

        for index, cell in enumerate(row):
            if index in assigned or index in excluded:
                continue
            value = cell.strip()
            if self.looks_like_identifier(value):
                add(index, value, 'scanned')

        description = cell_at(row, description_col)
        if description_col is None:
            description = self._longest_text_cell(row, assigned | excluded)

        if not description and not identifiers:
            return None

        quantity = self._parse_quantity(cell_at(row, quantity_col)) if quantity_col is not None else self.default_quantity
        unit_price = self._parse_price(cell_at(row, price_col), row_index) if price_col is not None else Decimal('0')
        uom = cell_at(row, uom_col) or None

        return ExtractedItem(
            source_row_index=row_index,
            description=description,
            identifiers=tuple(identifiers),
            quantity=quantity,
            unit_price=unit_price,
            extraction_confidence=self.confidence(description, identifiers, unit_price, quantity),
            uom=uom,
        )

    def extract(self, table: RawTable, structure: Optional[StructureResult] = None) -> ExtractionResult:
        """
        Extract all items from a table

        Args:
            table: RawTable
            structure: Pre-computed structure (analyzed here when omitted)

        Returns:
            ExtractionResult with items in row order and row diagnostics
        """
        if structure is None:
            structure = self.analyzer.analyze(table)

        diagnostics = ExtractionDiagnostics()
        items: List[ExtractedItem] = []

        for row_index in range(structure.data_start_index, len(table.rows)):
            row = table.rows[row_index]
            diagnostics.data_rows += 1

            if self.is_header_repeat(row):
                diagnostics.rejected_header_repeat += 1
                logger.debug(f"Row {row_index}: header-like repeat, skipped")
                continue

            columns = None
            if structure.synthetic_headers:
                columns = self.analyzer.infer_positional_roles(row)
                diagnostics.positional_rows += 1

            item = self.extract_row(row, row_index, structure, columns)
            if item is None:
                diagnostics.rejected_empty += 1
                continue
            if self.is_metadata_row(item.display_name):
                diagnostics.rejected_metadata += 1
                logger.debug(f"Row {row_index}: metadata row '{item.display_name}', skipped")
                continue
            items.append(item)

        diagnostics.extracted = len(items)
        logger.info(f"✓ Extracted {len(items)} items from {diagnostics.data_rows} data rows "
                    f"({diagnostics.rejected_empty} empty, {diagnostics.rejected_header_repeat} header repeats, "
                    f"{diagnostics.rejected_metadata} metadata)")
        return ExtractionResult(items=items, structure=structure, diagnostics=diagnostics)
