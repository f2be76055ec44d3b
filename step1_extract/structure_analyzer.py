#!/usr/bin/env python3
"""
Structure Analyzer - Locate the header row of a messy table and classify each column

Header rows are found among titles, report metadata and blank rows by counting
cells that carry role keywords. Column roles come from an ordered rule list in
10_structure.yaml (first matching rule wins per column), then get checked
against a sample of the data underneath. When no header row exists, roles are
inferred from the first data-bearing row and the result is flagged as
synthetic so the Row Extractor works row by row instead.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from .models import ColumnRole, IdentifierColumn, RawTable, StructureResult
from .utils.cell_parsing import (
    cell_at,
    has_digit,
    has_letter,
    looks_integer,
    looks_numeric,
    non_empty_cells,
    normalize_header_cell,
    parse_number,
)

logger = logging.getLogger(__name__)

# Roles that only one column may hold
SINGLE_COLUMN_ROLES = (
    ColumnRole.DESCRIPTION,
    ColumnRole.QUANTITY,
    ColumnRole.UNIT_PRICE,
    ColumnRole.UNIT_OF_MEASURE,
)


class StructureUnresolvedError(Exception):
    """No header row was found and no column roles could be inferred from the data"""


@dataclass(frozen=True)
class ColumnRule:
    name: str
    role: ColumnRole
    include: Tuple[Pattern, ...]
    exclude: Tuple[Pattern, ...] = ()
    kind: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict) -> 'ColumnRule':
        return cls(
            name=config.get('name', config['role']),
            role=ColumnRole(config['role']),
            include=tuple(re.compile(p, re.IGNORECASE) for p in config.get('include', [])),
            exclude=tuple(re.compile(p, re.IGNORECASE) for p in config.get('exclude', [])),
            kind=config.get('kind'),
        )

    def matches(self, header: str) -> bool:
        if not any(p.search(header) for p in self.include):
            return False
        return not any(p.search(header) for p in self.exclude)


@dataclass
class ColumnStats:
    """Content statistics for one column over a sample of data rows"""
    count: int = 0
    numeric_ratio: float = 0.0
    decimal_ratio: float = 0.0
    dollar_ratio: float = 0.0
    average_value: float = 0.0
    text_ratio: float = 0.0
    average_text_length: float = 0.0


class StructureAnalyzer:
    """Find the header row and assign a ColumnRole to every column"""

    def __init__(self, rule_loader):
        """
        Initialize structure analyzer

        Args:
            rule_loader: RuleLoader instance
        """
        self.rule_loader = rule_loader
        rules = rule_loader.get_structure_rules()

        detection = rules.get('header_detection', {})
        self.scan_rows = detection.get('scan_rows', 20)
        self.min_keyword_cells = detection.get('min_keyword_cells', 2)
        self.dense_row_min_cells = detection.get('dense_row_min_cells', 5)
        self.max_keyword_cell_length = detection.get('max_keyword_cell_length', 40)
        self.keyword_pattern = self._word_pattern(detection.get('keywords', []))
        self.metadata_markers = [m.lower() for m in detection.get('metadata_markers', [])]

        self.synthetic_min_cells = rules.get('synthetic_headers', {}).get('min_non_empty_cells', 3)
        self.column_rules = [ColumnRule.from_config(c) for c in rules.get('column_rules', [])]
        self.kind_priority = rules.get('identifier_kind_priority', {})
        self.metadata_column_pattern = self._word_pattern(rules.get('metadata_columns', []), whole_word=True)
        self.revision = rules.get('content_revision', {})
        self.positional = rules.get('positional_inference', {})
        self.price_cap = rule_loader.get_price_sanity_cap()

    @staticmethod
    def _word_pattern(words: Sequence[str], whole_word: bool = False) -> Optional[Pattern]:
        if not words:
            return None
        tail = r'\b' if whole_word else ''
        alternatives = '|'.join(re.escape(w.lower()) for w in words)
        return re.compile(rf'\b(?:{alternatives}){tail}', re.IGNORECASE)

    # -------------------- header detection --------------------

    def is_metadata_row(self, row: Sequence[str]) -> bool:
        """Report boilerplate rows (run date, customer number...) are never headers"""
        joined = ' '.join(non_empty_cells(row)).lower()
        return any(marker in joined for marker in self.metadata_markers)

    def count_keyword_cells(self, row: Sequence[str]) -> int:
        """Number of short cells containing a header keyword"""
        if self.keyword_pattern is None:
            return 0
        count = 0
        for cell in non_empty_cells(row):
            if len(cell) <= self.max_keyword_cell_length and self.keyword_pattern.search(cell):
                count += 1
        return count

    def is_header_candidate(self, row: Sequence[str]) -> bool:
        cells = non_empty_cells(row)
        if not cells or self.is_metadata_row(row):
            return False
        # Header rows are labels, not numbers
        numeric_cells = sum(1 for cell in cells if looks_numeric(cell))
        if numeric_cells * 2 > len(cells):
            return False
        matches = self.count_keyword_cells(row)
        if matches >= self.min_keyword_cells:
            return True
        return matches >= 1 and len(cells) >= self.dense_row_min_cells

    def find_header_row(self, table: RawTable) -> Optional[int]:
        """
        Scan the first rows for the header

        Args:
            table: RawTable to scan

        Returns:
            Row index of the header, or None when no row qualifies
        """
        for index, row in enumerate(table.rows[:self.scan_rows]):
            if self.is_header_candidate(row):
                return index
        return None

    # -------------------- column roles --------------------

    def classify_header(self, header: str) -> Tuple[ColumnRole, Optional[int], Optional[ColumnRule]]:
        """
        Evaluate the ordered column rules against one header cell

        Returns:
            (role, rule position, rule) - position is used to prefer stronger rules
        """
        normalized = normalize_header_cell(header)
        if not normalized:
            return ColumnRole.UNKNOWN, None, None
        for position, rule in enumerate(self.column_rules):
            if rule.matches(normalized):
                return rule.role, position, rule
        return ColumnRole.UNKNOWN, None, None

    def is_metadata_column(self, header: str) -> bool:
        normalized = normalize_header_cell(header)
        return bool(normalized and self.metadata_column_pattern and self.metadata_column_pattern.search(normalized))

    def classify_headers(self, headers: Sequence[str]):
        """
        Assign roles from header text

        Single-slot roles (description, quantity, unit price, UoM) go to the column
        matched by the earliest rule, so 'Unit Price' beats a later plain 'Price'
        and an explicit 'Order Quantity' beats any other quantity-like column.

        Returns:
            (roles list, identifier columns, excluded column indexes)
        """
        roles = [ColumnRole.UNKNOWN] * len(headers)
        identifier_columns: List[IdentifierColumn] = []
        excluded: List[int] = []
        best_for_role: Dict[ColumnRole, Tuple[int, int]] = {}

        for index, header in enumerate(headers):
            role, position, rule = self.classify_header(header)
            if role == ColumnRole.UNKNOWN:
                if self.is_metadata_column(header):
                    excluded.append(index)
                continue
            if role == ColumnRole.IDENTIFIER:
                kind = rule.kind or 'sku'
                roles[index] = role
                identifier_columns.append(IdentifierColumn(index, kind, self.kind_priority.get(kind, 99)))
                continue
            current = best_for_role.get(role)
            if current is None or position < current[1]:
                best_for_role[role] = (index, position)

        for role, (index, _) in best_for_role.items():
            roles[index] = role

        identifier_columns.sort(key=lambda col: (col.priority, col.index))
        return roles, identifier_columns, excluded

    def column_stats(self, rows: Sequence[Sequence[str]], index: int) -> ColumnStats:
        values = [cell_at(row, index) for row in rows]
        values = [v for v in values if v]
        stats = ColumnStats(count=len(values))
        if not values:
            return stats

        numeric = [v for v in values if looks_numeric(v)]
        texts = [v for v in values if not looks_numeric(v) and has_letter(v)]
        stats.numeric_ratio = len(numeric) / len(values)
        stats.dollar_ratio = sum(1 for v in values if '$' in v) / len(values)
        stats.text_ratio = len(texts) / len(values)
        if numeric:
            parsed = [parse_number(v) or 0.0 for v in numeric]
            stats.average_value = sum(parsed) / len(parsed)
            stats.decimal_ratio = sum(1 for v in numeric if '.' in v) / len(numeric)
        if texts:
            stats.average_text_length = sum(len(v) for v in texts) / len(texts)
        return stats

    def _revise_with_content(self, roles: List[ColumnRole], headers: Sequence[str],
                             sample: Sequence[Sequence[str]], excluded: Sequence[int]) -> List[ColumnRole]:
        """Drop header guesses the data contradicts, fill empty roles from unlabeled columns"""
        if not sample:
            return roles

        min_numeric = self.revision.get('min_numeric_ratio', 0.7)
        price_rules = self.revision.get('price', {})
        qty_rules = self.revision.get('quantity', {})
        desc_rules = self.revision.get('description', {})
        roles = list(roles)
        stats = {index: self.column_stats(sample, index) for index in range(len(roles))}

        for index, role in enumerate(roles):
            column = stats[index]
            if not column.count:
                continue
            if role == ColumnRole.QUANTITY and column.numeric_ratio < 0.5:
                logger.debug(f"Column {index} '{headers[index]}' is mostly text, dropping quantity role")
                roles[index] = ColumnRole.UNKNOWN
            elif role == ColumnRole.UNIT_PRICE and column.average_value > self.price_cap:
                logger.debug(f"Column {index} '{headers[index]}' averages {column.average_value:.2f}, dropping price role")
                roles[index] = ColumnRole.UNKNOWN

        def unlabeled(index: int) -> bool:
            return (roles[index] == ColumnRole.UNKNOWN and index not in excluded
                    and not normalize_header_cell(headers[index]))

        if ColumnRole.UNIT_PRICE not in roles:
            for index in range(len(roles)):
                column = stats[index]
                if (unlabeled(index) and column.numeric_ratio > min_numeric
                        and price_rules.get('min_average', 1.0) <= column.average_value <= price_rules.get('max_average', 1000.0)
                        and (column.decimal_ratio > price_rules.get('min_decimal_ratio', 0.5)
                             or column.dollar_ratio > price_rules.get('min_dollar_ratio', 0.3))):
                    roles[index] = ColumnRole.UNIT_PRICE
                    logger.debug(f"Column {index} looks like unit price from content")
                    break

        if ColumnRole.QUANTITY not in roles:
            for index in range(len(roles)):
                column = stats[index]
                if (unlabeled(index) and column.numeric_ratio > min_numeric
                        and column.decimal_ratio < qty_rules.get('max_decimal_ratio', 0.3)
                        and qty_rules.get('min_average', 1.0) <= column.average_value <= qty_rules.get('max_average', 1000.0)):
                    roles[index] = ColumnRole.QUANTITY
                    logger.debug(f"Column {index} looks like quantity from content")
                    break

        if ColumnRole.DESCRIPTION not in roles:
            for index in range(len(roles)):
                column = stats[index]
                if (unlabeled(index) and column.text_ratio > desc_rules.get('min_text_ratio', 0.7)
                        and column.average_text_length > desc_rules.get('min_average_length', 20)):
                    roles[index] = ColumnRole.DESCRIPTION
                    logger.debug(f"Column {index} looks like description from content")
                    break

        return roles

    # -------------------- positional inference --------------------

    def looks_like_positional_identifier(self, cell: str) -> bool:
        min_len = self.positional.get('identifier_min_length', 3)
        max_len = self.positional.get('identifier_max_length', 20)
        if not (min_len <= len(cell) <= max_len) or any(ch.isspace() for ch in cell):
            return False
        if looks_numeric(cell) or not has_letter(cell):
            return False
        prefixes = self.positional.get('identifier_prefixes', [])
        return has_digit(cell) or any(cell.upper().startswith(p.upper()) for p in prefixes)

    def infer_positional_roles(self, row: Sequence[str]) -> Dict[ColumnRole, int]:
        """
        Infer column roles from the cells of a single row

        Args:
            row: Row of raw cells

        Returns:
            Mapping of role -> column index for the roles that could be inferred
        """
        found: Dict[ColumnRole, int] = {}

        for index, cell in enumerate(row):
            if self.looks_like_positional_identifier(cell.strip()):
                found[ColumnRole.IDENTIFIER] = index
                break

        best_length = self.positional.get('description_min_length', 8) - 1
        for index, cell in enumerate(row):
            text = cell.strip()
            if index == found.get(ColumnRole.IDENTIFIER) or looks_numeric(text) or not has_letter(text):
                continue
            if ' ' in text and len(text) > best_length:
                found[ColumnRole.DESCRIPTION] = index
                best_length = len(text)

        taken = set(found.values())
        for index, cell in enumerate(row):
            text = cell.strip()
            if index in taken or not looks_integer(text):
                continue
            value = parse_number(text)
            if (value is not None and 0 < value < self.positional.get('quantity_max', 10000)
                    and len(text) <= self.positional.get('quantity_max_chars', 6)):
                found[ColumnRole.QUANTITY] = index
                break

        taken = set(found.values())
        min_plain = self.positional.get('price_min_plain_value', 10)
        for index, cell in enumerate(row):
            text = cell.strip()
            if index in taken or not looks_numeric(text):
                continue
            value = parse_number(text)
            if value is None or value <= 0 or value > self.price_cap:
                continue
            if '$' in text or '.' in text or value > min_plain:
                found[ColumnRole.UNIT_PRICE] = index
                break

        return found

    # -------------------- entry point --------------------

    def analyze(self, table: RawTable) -> StructureResult:
        """
        Analyze a raw table

        Args:
            table: RawTable with no assumed header

        Returns:
            StructureResult with header row, column roles and identifier columns

        Raises:
            StructureUnresolvedError: no header row and nothing inferable from the data
        """
        width = table.width
        header_index = self.find_header_row(table)

        if header_index is not None:
            headers = list(table.rows[header_index]) + [''] * (width - len(table.rows[header_index]))
            roles, identifier_columns, excluded = self.classify_headers(headers)
            sample_size = self.revision.get('sample_rows', 10)
            sample = [row for row in table.rows[header_index + 1:] if non_empty_cells(row)][:sample_size]
            roles = self._revise_with_content(roles, headers, sample, excluded)
            identifier_columns = [col for col in identifier_columns if roles[col.index] == ColumnRole.IDENTIFIER]

            logger.info(f"Header row {header_index} in '{table.name or 'table'}': "
                        f"{sum(1 for r in roles if r != ColumnRole.UNKNOWN)} of {width} columns classified")
            return StructureResult(
                header_row_index=header_index,
                roles=tuple(roles),
                synthetic_headers=False,
                headers=tuple(headers),
                identifier_columns=tuple(identifier_columns),
                data_start_index=header_index + 1,
                excluded_columns=tuple(excluded),
            )

        return self._synthetic_structure(table, width)

    def _synthetic_structure(self, table: RawTable, width: int) -> StructureResult:
        for index, row in enumerate(table.rows):
            if len(non_empty_cells(row)) < self.synthetic_min_cells or self.is_metadata_row(row):
                continue
            found = self.infer_positional_roles(row)
            if ColumnRole.IDENTIFIER not in found and ColumnRole.DESCRIPTION not in found:
                break

            roles = [ColumnRole.UNKNOWN] * width
            for role, column in found.items():
                roles[column] = role
            identifier_columns = []
            if ColumnRole.IDENTIFIER in found:
                identifier_columns.append(
                    IdentifierColumn(found[ColumnRole.IDENTIFIER], 'positional',
                                     self.kind_priority.get('positional', 98)))

            logger.warning(f"No header row in '{table.name or 'table'}', using positional inference from row {index}")
            return StructureResult(
                header_row_index=-1,
                roles=tuple(roles),
                synthetic_headers=True,
                headers=tuple(f'Column_{i + 1}' for i in range(width)),
                identifier_columns=tuple(identifier_columns),
                data_start_index=index,
            )

        raise StructureUnresolvedError(
            f"No header row found in first {self.scan_rows} rows of '{table.name or 'table'}' "
            f"and no data row allows positional inference")
