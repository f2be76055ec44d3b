"""
Match records produced by the Catalog Resolver
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from step1_extract.models import ExtractedItem

from .catalog import CatalogEntry, CatalogLookup, CatalogLookupError


@dataclass(frozen=True)
class MatchAttempt:
    """One tier trying one query value; kept for diagnostics and tie-break auditing"""
    tier_name: str
    query_value: str
    score: float
    candidate_entry_id: Optional[str] = None
    namespace: Optional[str] = None
    note: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier_name': self.tier_name,
            'query_value': self.query_value,
            'score': self.score,
            'candidate_entry_id': self.candidate_entry_id,
            'namespace': self.namespace,
            'note': self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchAttempt':
        return cls(
            tier_name=data['tier_name'],
            query_value=data.get('query_value', ''),
            score=float(data.get('score', 0.0)),
            candidate_entry_id=data.get('candidate_entry_id'),
            namespace=data.get('namespace'),
            note=data.get('note', ''),
        )


@dataclass(frozen=True)
class MatchResult:
    item: ExtractedItem
    matched_entry: Optional[CatalogEntry]
    score: float
    method: Optional[str]
    attempts: Tuple[MatchAttempt, ...] = ()
    matched_namespace: Optional[str] = None

    @property
    def is_match(self) -> bool:
        return self.matched_entry is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_row_index': self.item.source_row_index,
            'matched_entry_id': self.matched_entry.entry_id if self.matched_entry else None,
            'score': self.score,
            'method': self.method,
            'matched_namespace': self.matched_namespace,
            'attempts': [attempt.to_dict() for attempt in self.attempts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], item: ExtractedItem, catalog: CatalogLookup) -> 'MatchResult':
        """
        Rebuild a persisted result against the catalog

        Raises:
            CatalogLookupError: the matched entry is no longer in the catalog
        """
        entry = None
        entry_id = data.get('matched_entry_id')
        if entry_id is not None:
            entry = catalog.get(entry_id)
            if entry is None:
                raise CatalogLookupError(f"Catalog entry {entry_id} referenced by checkpoint is missing")
        return cls(
            item=item,
            matched_entry=entry,
            score=float(data.get('score', 0.0)),
            method=data.get('method'),
            attempts=tuple(MatchAttempt.from_dict(a) for a in data.get('attempts', [])),
            matched_namespace=data.get('matched_namespace'),
        )
