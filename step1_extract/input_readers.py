#!/usr/bin/env python3
"""
Input Readers - Load CSV and Excel documents into RawTable objects
Cells are read as raw strings with no header assumption; structure is
left to the StructureAnalyzer
"""

import csv
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .models import ColumnRole, RawTable
from .structure_analyzer import StructureAnalyzer, StructureUnresolvedError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('.csv', '.xlsx')


def _frame_to_table(df: pd.DataFrame, name: str) -> RawTable:
    df = df.fillna('')
    rows = []
    for values in df.itertuples(index=False, name=None):
        cells = ['' if v is None else str(v).strip() for v in values]
        if any(cells):
            rows.append(cells)
    return RawTable.from_rows(rows, name=name)


def read_raw_tables(file_path: Path) -> List[RawTable]:
    """
    Read a document into one RawTable per sheet

    Args:
        file_path: CSV or Excel file

    Returns:
        List of RawTable (a CSV yields exactly one)
    """
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported file format: {file_path.suffix} (supported: {', '.join(SUPPORTED_FORMATS)})")

    if suffix == '.csv':
        # Rows may be ragged (title lines, report footers)
        with open(file_path, 'r', encoding='utf-8-sig', newline='') as f:
            rows = [row for row in csv.reader(f) if any(cell.strip() for cell in row)]
        tables = [RawTable.from_rows(rows, name=file_path.stem)]
    else:
        sheets = pd.read_excel(file_path, sheet_name=None, header=None, dtype=str, engine='openpyxl')
        tables = [_frame_to_table(df, str(sheet_name)) for sheet_name, df in sheets.items()]

    logger.info(f"Read {len(tables)} table(s) from {file_path.name}")
    return tables


def score_table(table: RawTable, analyzer: StructureAnalyzer) -> int:
    """Sheet score: row count (capped at 50), +30 for a header row, +10 per classified role"""
    score = min(len(table.rows), 50)
    header_index = analyzer.find_header_row(table)
    if header_index is not None:
        score += 30
        roles, _, _ = analyzer.classify_headers(table.rows[header_index])
        score += 10 * len({role for role in roles if role != ColumnRole.UNKNOWN})
    return score


def select_best_sheet(tables: List[RawTable], analyzer: StructureAnalyzer) -> Optional[RawTable]:
    """
    Pick the sheet most likely to hold line items

    Args:
        tables: Candidate tables in workbook order
        analyzer: StructureAnalyzer used for header scoring

    Returns:
        Best table, or None when the list is empty (ties keep workbook order)
    """
    best, best_score = None, -1
    for table in tables:
        score = score_table(table, analyzer)
        logger.debug(f"Sheet '{table.name}' scored {score}")
        if score > best_score:
            best, best_score = table, score
    return best


def load_table(file_path: Path, analyzer: StructureAnalyzer) -> RawTable:
    """
    Read a document and return its best sheet

    Raises:
        StructureUnresolvedError: the document holds no rows at all
    """
    table = select_best_sheet(read_raw_tables(file_path), analyzer)
    if table is None or not table.rows:
        raise StructureUnresolvedError(f"No rows found in {file_path}")
    return table
