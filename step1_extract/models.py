"""
Data model for extraction: raw tables, column roles and extracted line items
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class ColumnRole(str, Enum):
    IDENTIFIER = 'identifier'
    DESCRIPTION = 'description'
    QUANTITY = 'quantity'
    UNIT_PRICE = 'unit_price'
    UNIT_OF_MEASURE = 'unit_of_measure'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class RawTable:
    """Ordered rows of raw string cells, no assumed header"""
    rows: Tuple[Tuple[str, ...], ...]
    name: str = ''

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Any]], name: str = '') -> 'RawTable':
        cleaned = []
        for row in rows:
            cleaned.append(tuple('' if cell is None else str(cell).strip() for cell in row))
        return cls(rows=tuple(cleaned), name=name)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def width(self) -> int:
        return max((len(row) for row in self.rows), default=0)


@dataclass(frozen=True)
class Identifier:
    """One identifier value and the column it came from"""
    source_column: int
    value: str
    kind: str = 'scanned'  # oem | wholesaler | vendor | sku | scanned | positional

    def to_dict(self) -> Dict[str, Any]:
        return {'source_column': self.source_column, 'value': self.value, 'kind': self.kind}


@dataclass(frozen=True)
class IdentifierColumn:
    index: int
    kind: str
    priority: int


@dataclass(frozen=True)
class StructureResult:
    header_row_index: int
    roles: Tuple[ColumnRole, ...]
    synthetic_headers: bool = False
    headers: Tuple[str, ...] = ()
    identifier_columns: Tuple[IdentifierColumn, ...] = ()
    data_start_index: int = 0
    excluded_columns: Tuple[int, ...] = ()  # metadata columns (customer, address, date...)

    def column_for(self, role: ColumnRole) -> Optional[int]:
        """First column assigned to a role, or None"""
        for index, assigned in enumerate(self.roles):
            if assigned == role:
                return index
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'header_row_index': self.header_row_index,
            'roles': [role.value for role in self.roles],
            'synthetic_headers': self.synthetic_headers,
            'headers': list(self.headers),
            'identifier_columns': [
                {'index': col.index, 'kind': col.kind, 'priority': col.priority}
                for col in self.identifier_columns
            ],
            'data_start_index': self.data_start_index,
            'excluded_columns': list(self.excluded_columns),
        }


@dataclass(frozen=True)
class ExtractedItem:
    source_row_index: int
    description: str
    identifiers: Tuple[Identifier, ...]
    quantity: int
    unit_price: Decimal  # 0 means unknown, needs fallback
    extraction_confidence: float
    uom: Optional[str] = None

    @property
    def identifier_values(self) -> List[str]:
        return [identifier.value for identifier in self.identifiers]

    @property
    def primary_identifier(self) -> Optional[str]:
        return self.identifiers[0].value if self.identifiers else None

    @property
    def display_name(self) -> str:
        """Description, falling back to the best identifier"""
        return self.description or self.primary_identifier or ''

    @property
    def input_key(self) -> str:
        """Key for unique-item reporting, computed from what the item arrived with"""
        return (self.primary_identifier or self.description).upper()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_row_index': self.source_row_index,
            'description': self.description,
            'identifiers': [identifier.to_dict() for identifier in self.identifiers],
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'extraction_confidence': self.extraction_confidence,
            'uom': self.uom,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractedItem':
        return cls(
            source_row_index=int(data['source_row_index']),
            description=data.get('description') or '',
            identifiers=tuple(
                Identifier(int(i['source_column']), i['value'], i.get('kind', 'scanned'))
                for i in data.get('identifiers', [])
            ),
            quantity=int(data.get('quantity', 0)),
            unit_price=Decimal(str(data.get('unit_price', '0'))),
            extraction_confidence=float(data.get('extraction_confidence', 0.0)),
            uom=data.get('uom'),
        )


@dataclass
class ExtractionDiagnostics:
    data_rows: int = 0
    rejected_empty: int = 0
    rejected_header_repeat: int = 0
    rejected_metadata: int = 0
    extracted: int = 0
    positional_rows: int = 0

    @property
    def rejected(self) -> int:
        return self.rejected_empty + self.rejected_header_repeat + self.rejected_metadata

    def to_dict(self) -> Dict[str, int]:
        return {
            'data_rows': self.data_rows,
            'rejected_empty': self.rejected_empty,
            'rejected_header_repeat': self.rejected_header_repeat,
            'rejected_metadata': self.rejected_metadata,
            'extracted': self.extracted,
            'positional_rows': self.positional_rows,
        }


@dataclass
class ExtractionResult:
    items: List[ExtractedItem]
    structure: StructureResult
    diagnostics: ExtractionDiagnostics = field(default_factory=ExtractionDiagnostics)
