#!/usr/bin/env python3
"""
Cell Parsing - Small helpers shared by the structure analyzer and row extractor
"""

import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional

_NON_NUMERIC = re.compile(r'[^0-9.\-]')
_PLAIN_NUMBER = re.compile(r'^\s*\$?\s*\(?-?[\d,]*\.?\d+\)?\s*$')
_INTEGER = re.compile(r'^\s*\d{1,3}(,\d{3})+\s*$|^\s*\d+\s*$')


def normalize_header_cell(s: object) -> str:
    """Lowercase header text with BOM/NBSP removed and whitespace collapsed"""
    if s is None:
        return ""
    t = str(s)
    t = t.replace("\ufeff", "")  # BOM
    t = t.replace("\u00A0", " ")  # NBSP
    t = t.strip().strip('"').strip("'")
    return " ".join(t.split()).lower()


def parse_number(x) -> Optional[float]:
    """Parse $1,234.56 or (12.34) -> -12.34. Return float or None."""
    if x is None:
        return None
    if isinstance(x, (int, float)):
        return float(x)
    s = str(x).strip()
    if not s:
        return None
    negative = s.startswith("(") and s.endswith(")")
    s = _NON_NUMERIC.sub("", s)
    if not s or s in ("-", ".") or s.count(".") > 1:
        return None
    try:
        value = float(s)
    except ValueError:
        return None
    return -value if negative else value


def parse_decimal(x) -> Optional[Decimal]:
    """Same as parse_number but exact, for money"""
    value = parse_number(x)
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def looks_numeric(cell: str) -> bool:
    """True for cells that are a number and nothing else ($, commas and parentheses allowed)"""
    return bool(cell) and bool(_PLAIN_NUMBER.match(cell))


def looks_integer(cell: str) -> bool:
    """True for plain integers such as '12' or '1,549'"""
    return bool(cell) and bool(_INTEGER.match(cell))


def has_letter(cell: str) -> bool:
    return any(ch.isalpha() for ch in cell)


def has_digit(cell: str) -> bool:
    return any(ch.isdigit() for ch in cell)


def non_empty_cells(row) -> List[str]:
    return [cell for cell in row if cell and cell.strip()]


def cell_at(row, index: Optional[int]) -> str:
    """Cell text at index, '' for a missing column"""
    if index is None or index < 0 or index >= len(row):
        return ''
    return row[index].strip()
