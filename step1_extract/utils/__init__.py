"""
Step 1 Utilities Module

Contains small helper modules for cell parsing.
"""

from .cell_parsing import (
    normalize_header_cell,
    parse_number,
    parse_decimal,
    looks_numeric,
    looks_integer,
    has_letter,
    has_digit,
    non_empty_cells,
    cell_at,
)

__all__ = [
    'normalize_header_cell',
    'parse_number',
    'parse_decimal',
    'looks_numeric',
    'looks_integer',
    'has_letter',
    'has_digit',
    'non_empty_cells',
    'cell_at',
]
