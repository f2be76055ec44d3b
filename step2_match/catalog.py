#!/usr/bin/env python3
"""
Product Catalog - Read-only catalog entries and the lookup interface used by the matching tiers

ProductCatalog keeps in-memory indexes for every identifier namespace
(exact, separator-normalized and prefix-stripped), a term index over
name/brand/model/description text, and product families for the optimizer.
"""

from __future__ import annotations

import json
import re
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACES = ('primary_sku', 'oem_number', 'wholesaler_sku', 'staples_sku', 'depot_sku', 'alt_oem_number')
DEFAULT_STRIP_CHARACTERS = ' -_./'
DEFAULT_STRIP_PREFIXES = ('MHEW', 'MLEX', 'MBRT', 'MCAN', 'MEPS', 'MXER', 'M')

COLOR_SYNONYMS = {
    'blk': 'black',
    'bk': 'black',
    'tri-color': 'color',
    'tricolor': 'color',
    'tri color': 'color',
    'cmy': 'color',
    'colour': 'color',
    'c/m/y': 'color',
}

COLOR_PATTERNS = (
    ('color', re.compile(r'\btri[\s-]?colou?r\b|\bC\s*/\s*M\s*/\s*Y\b|\bCMY\b', re.IGNORECASE)),
    ('black', re.compile(r'\bblack\b|\bblk\b|\bbk\b', re.IGNORECASE)),
    ('cyan', re.compile(r'\bcyan\b', re.IGNORECASE)),
    ('magenta', re.compile(r'\bmagenta\b', re.IGNORECASE)),
    ('yellow', re.compile(r'\byellow\b', re.IGNORECASE)),
    ('color', re.compile(r'\bcolou?r\b', re.IGNORECASE)),
)


class CatalogLookupError(Exception):
    """Catalog could not be read or an expected entry is missing"""


def normalize_color(value: Optional[str]) -> Optional[str]:
    if not value or not str(value).strip():
        return None
    lowered = str(value).strip().lower()
    return COLOR_SYNONYMS.get(lowered, lowered)


def detect_color(text: Optional[str]) -> Optional[str]:
    """Color designation from a product name (black/blk/bk, cyan, magenta, yellow, tri-color, C/M/Y)"""
    if not text:
        return None
    for color, pattern in COLOR_PATTERNS:
        if pattern.search(text):
            return color
    return None


def normalize_identifier(value: str, strip_characters: str = DEFAULT_STRIP_CHARACTERS) -> str:
    """Uppercase and drop separators"""
    return ''.join(ch for ch in value.upper() if ch not in strip_characters)


def strip_known_prefix(normalized: str, prefixes: Sequence[str] = DEFAULT_STRIP_PREFIXES) -> Optional[str]:
    """Remove the longest known vendor prefix, or None when no prefix applies"""
    for prefix in sorted(prefixes, key=len, reverse=True):
        if normalized.startswith(prefix) and len(normalized) - len(prefix) >= 3:
            return normalized[len(prefix):]
    return None


def tokenize(text: str, max_terms: int = 8, min_length: int = 2) -> List[str]:
    """Uppercase terms, punctuation split, short terms dropped, first max_terms kept"""
    if not text:
        return []
    cleaned = re.sub(r'[^A-Z0-9\s]', ' ', text.upper())
    terms = []
    for term in cleaned.split():
        if len(term) >= min_length and term not in terms:
            terms.append(term)
    return terms[:max_terms] if max_terms else terms


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        if isinstance(value, float) and value != value:  # NaN
            return None
        result = Decimal(str(value).replace('$', '').replace(',', '').strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result > 0 else None


def _to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == '':
        return default
    try:
        if isinstance(value, float) and value != value:
            return default
        return int(float(str(value).replace(',', '')))
    except ValueError:
        return default


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value != value:
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Any, default: bool = True) -> bool:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ('0', 'false', 'no', 'n', 'f')


@dataclass(frozen=True)
class CatalogEntry:
    entry_id: str
    product_name: str
    primary_sku: Optional[str] = None
    alternate_skus: Tuple[Tuple[str, str], ...] = ()  # (namespace, value)
    description: Optional[str] = None
    long_description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    page_yield: Optional[int] = None
    yield_class: Optional[str] = None
    family: Optional[str] = None
    compatibility_group: Optional[str] = None
    pack_quantity: int = 1
    uom: str = 'EA'
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    active: bool = True

    def identifiers(self, primary_namespace: str = 'primary_sku') -> List[Tuple[str, str]]:
        """All (namespace, value) pairs, primary first"""
        pairs = []
        if self.primary_sku:
            pairs.append((primary_namespace, self.primary_sku))
        pairs.extend(self.alternate_skus)
        return pairs

    @property
    def family_key(self) -> Optional[str]:
        key = self.compatibility_group or self.family
        return key.strip().lower() if key else None

    @property
    def effective_color(self) -> Optional[str]:
        return normalize_color(self.color) or detect_color(self.product_name)

    @property
    def catalog_price(self) -> Optional[Decimal]:
        """Our per-pack price, falling back to list price"""
        return self.price or self.list_price

    @property
    def search_text(self) -> str:
        return ' '.join(p for p in (self.product_name, self.brand, self.model,
                                    self.description, self.long_description) if p)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], namespaces: Sequence[str] = DEFAULT_NAMESPACES) -> 'CatalogEntry':
        entry_id = _to_text(data.get('entry_id', data.get('id')))
        name = _to_text(data.get('product_name', data.get('name')))
        if not entry_id or not name:
            raise CatalogLookupError(f"Catalog row missing id or product name: {data}")

        primary_namespace = namespaces[0] if namespaces else 'primary_sku'
        alternates = []
        for namespace in namespaces[1:]:
            value = _to_text(data.get(namespace))
            if value:
                alternates.append((namespace, value))

        return cls(
            entry_id=entry_id,
            product_name=name,
            primary_sku=_to_text(data.get(primary_namespace, data.get('sku'))),
            alternate_skus=tuple(alternates),
            description=_to_text(data.get('description')),
            long_description=_to_text(data.get('long_description')),
            brand=_to_text(data.get('brand')),
            model=_to_text(data.get('model')),
            category=_to_text(data.get('category')),
            color=_to_text(data.get('color')),
            page_yield=_to_int(data.get('page_yield')),
            yield_class=_to_text(data.get('yield_class')),
            family=_to_text(data.get('family')),
            compatibility_group=_to_text(data.get('compatibility_group')),
            pack_quantity=max(_to_int(data.get('pack_quantity'), 1) or 1, 1),
            uom=(_to_text(data.get('uom')) or 'EA').upper(),
            price=_to_decimal(data.get('price')),
            list_price=_to_decimal(data.get('list_price')),
            cost=_to_decimal(data.get('cost')),
            active=_to_bool(data.get('active')),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'entry_id': self.entry_id,
            'product_name': self.product_name,
            'primary_sku': self.primary_sku,
            'brand': self.brand,
            'category': self.category,
            'color': self.effective_color,
            'page_yield': self.page_yield,
            'yield_class': self.yield_class,
            'pack_quantity': self.pack_quantity,
            'uom': self.uom,
            'price': float(self.price) if self.price is not None else None,
            'list_price': float(self.list_price) if self.list_price is not None else None,
        }
        data.update({namespace: value for namespace, value in self.alternate_skus})
        return data


class CatalogLookup:
    """
    Lookup interface consumed by the matching tiers and the optimizer

    Every search returns zero or more candidates; implementations must be
    deterministic for an unchanged catalog.
    """

    primary_namespace = 'primary_sku'

    def get(self, entry_id: str) -> Optional[CatalogEntry]:
        raise NotImplementedError

    def find_by_identifier(self, value: str) -> List[Tuple[CatalogEntry, str]]:
        """Exact case-insensitive hits as (entry, namespace)"""
        raise NotImplementedError

    def find_by_normalized_identifier(self, normalized: str, stripped: bool = False) -> List[Tuple[CatalogEntry, str]]:
        """Hits on separator-normalized identifiers; stripped=True searches prefix-stripped forms"""
        raise NotImplementedError

    def search_names(self, text: str) -> List[CatalogEntry]:
        """Entries whose name contains the text, or whose whole name the text contains"""
        raise NotImplementedError

    def search_descriptions(self, value: str, limit: int = 3) -> List[CatalogEntry]:
        """Entries whose name, description or long description contains the value"""
        raise NotImplementedError

    def full_text_search(self, query: str, limit: int = 25) -> List[Tuple[CatalogEntry, float]]:
        """Term-overlap ranked (entry, overlap) over name, brand, model and descriptions"""
        raise NotImplementedError

    def semantic_search(self, text: str, limit: int = 5) -> List[Tuple[CatalogEntry, float]]:
        """Nearest neighbors as (entry, cosine similarity)"""
        raise NotImplementedError

    def family_members(self, entry: CatalogEntry) -> List[CatalogEntry]:
        raise NotImplementedError


class ProductCatalog(CatalogLookup):
    """In-memory catalog with indexes for every lookup the resolver needs"""

    def __init__(self, entries: Iterable[CatalogEntry], namespaces: Sequence[str] = DEFAULT_NAMESPACES,
                 strip_characters: str = DEFAULT_STRIP_CHARACTERS,
                 strip_prefixes: Sequence[str] = DEFAULT_STRIP_PREFIXES,
                 full_text_max_terms: int = 8, full_text_min_term_length: int = 2,
                 min_term_coverage: float = 0.75, semantic_index=None):
        """
        Initialize catalog indexes

        Args:
            entries: Catalog entries (inactive ones are kept for get() but not indexed)
            namespaces: Identifier namespaces in lookup order, primary first
            strip_characters: Separators removed for normalized identifier lookup
            strip_prefixes: Vendor prefixes removed for prefix-stripped lookup
            full_text_max_terms: Query terms kept by the full-text tokenizer
            full_text_min_term_length: Shortest term kept by the tokenizer
            min_term_coverage: Share of query terms a full-text candidate must contain
            semantic_index: Optional SemanticIndex for nearest-neighbor search
        """
        self.namespaces = tuple(namespaces)
        self.primary_namespace = self.namespaces[0] if self.namespaces else 'primary_sku'
        self.strip_characters = strip_characters
        self.strip_prefixes = tuple(strip_prefixes)
        self.full_text_max_terms = full_text_max_terms
        self.full_text_min_term_length = full_text_min_term_length
        self.min_term_coverage = min_term_coverage
        self.semantic_index = semantic_index

        self._by_id: Dict[str, CatalogEntry] = {}
        self._exact: Dict[str, List[Tuple[CatalogEntry, str]]] = {}
        self._normalized: Dict[str, List[Tuple[CatalogEntry, str]]] = {}
        self._stripped: Dict[str, List[Tuple[CatalogEntry, str]]] = {}
        self._terms: Dict[str, set] = {}
        self._entry_terms: Dict[str, set] = {}
        self._name_terms: Dict[str, set] = {}
        self._families: Dict[str, List[CatalogEntry]] = {}

        for entry in entries:
            self._add(entry)
        self._sort_indexes()

        if self.semantic_index is not None:
            self.semantic_index.attach(self.entries)

        logger.info(f"Loaded catalog with {len(self._by_id)} entries")

    def _add(self, entry: CatalogEntry):
        if entry.entry_id in self._by_id:
            logger.warning(f"Duplicate catalog entry id {entry.entry_id}, keeping the first")
            return
        self._by_id[entry.entry_id] = entry
        if not entry.active:
            return

        for namespace, value in entry.identifiers(self.primary_namespace):
            self._exact.setdefault(value.strip().upper(), []).append((entry, namespace))
            normalized = normalize_identifier(value, self.strip_characters)
            if not normalized:
                continue
            self._normalized.setdefault(normalized, []).append((entry, namespace))
            stripped = strip_known_prefix(normalized, self.strip_prefixes)
            if stripped:
                self._stripped.setdefault(stripped, []).append((entry, namespace))

        terms = set(tokenize(entry.search_text, max_terms=0, min_length=self.full_text_min_term_length))
        self._entry_terms[entry.entry_id] = terms
        name_text = ' '.join(p for p in (entry.product_name, entry.brand, entry.model) if p)
        self._name_terms[entry.entry_id] = set(tokenize(name_text, max_terms=0, min_length=self.full_text_min_term_length))
        for term in terms:
            self._terms.setdefault(term, set()).add(entry.entry_id)

        if entry.family_key:
            self._families.setdefault(entry.family_key, []).append(entry)

    def _sort_indexes(self):
        order = {namespace: position for position, namespace in enumerate(self.namespaces)}

        def key(hit):
            entry, namespace = hit
            return order.get(namespace, len(order)), entry.entry_id

        for index in (self._exact, self._normalized, self._stripped):
            for hits in index.values():
                hits.sort(key=key)
        for members in self._families.values():
            members.sort(key=lambda e: e.entry_id)

    @property
    def entries(self) -> List[CatalogEntry]:
        return [entry for entry in self._by_id.values() if entry.active]

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, entry_id: str) -> Optional[CatalogEntry]:
        return self._by_id.get(entry_id)

    def find_by_identifier(self, value: str) -> List[Tuple[CatalogEntry, str]]:
        if not value:
            return []
        return list(self._exact.get(value.strip().upper(), []))

    def find_by_normalized_identifier(self, normalized: str, stripped: bool = False) -> List[Tuple[CatalogEntry, str]]:
        if not normalized:
            return []
        index = self._stripped if stripped else self._normalized
        return list(index.get(normalized, []))

    def search_names(self, text: str) -> List[CatalogEntry]:
        query = (text or '').strip().lower()
        if not query:
            return []
        hits = []
        for entry in self.entries:
            name = entry.product_name.lower()
            if query in name or name in query:
                hits.append(entry)
        hits.sort(key=lambda e: e.entry_id)
        return hits

    def search_descriptions(self, value: str, limit: int = 3) -> List[CatalogEntry]:
        needle = (value or '').strip().upper()
        if not needle:
            return []
        hits = []
        for entry in sorted(self.entries, key=lambda e: e.entry_id):
            fields = (entry.product_name, entry.description, entry.long_description)
            if any(needle in field.upper() for field in fields if field):
                hits.append(entry)
                if len(hits) >= limit:
                    break
        return hits

    def full_text_search(self, query: str, limit: int = 25) -> List[Tuple[CatalogEntry, float]]:
        terms = tokenize(query, self.full_text_max_terms, self.full_text_min_term_length)
        if not terms:
            return []

        candidate_ids = set()
        for term in terms:
            candidate_ids.update(self._terms.get(term, ()))

        ranked = []
        for entry_id in candidate_ids:
            coverage = len(self._entry_terms[entry_id].intersection(terms)) / len(terms)
            if coverage < self.min_term_coverage:
                continue
            overlap = len(self._name_terms[entry_id].intersection(terms)) / len(terms)
            ranked.append((-overlap, -coverage, entry_id, overlap))

        ranked.sort()
        return [(self._by_id[entry_id], overlap) for _, _, entry_id, overlap in ranked[:limit]]

    def semantic_search(self, text: str, limit: int = 5) -> List[Tuple[CatalogEntry, float]]:
        if self.semantic_index is None or not text:
            return []
        return [(self._by_id[entry_id], similarity)
                for entry_id, similarity in self.semantic_index.search(text, limit)]

    def family_members(self, entry: CatalogEntry) -> List[CatalogEntry]:
        if not entry.family_key:
            return []
        return list(self._families.get(entry.family_key, []))

    # -------------------- loaders --------------------

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]], **kwargs) -> 'ProductCatalog':
        namespaces = kwargs.get('namespaces', DEFAULT_NAMESPACES)
        entries = [CatalogEntry.from_dict(record, namespaces) for record in records]
        return cls(entries, **kwargs)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, **kwargs) -> 'ProductCatalog':
        df = df.astype(object).where(pd.notna(df), None)
        return cls.from_records(df.to_dict('records'), **kwargs)

    @classmethod
    def from_json(cls, path: Path, **kwargs) -> 'ProductCatalog':
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogLookupError(f"Could not read catalog {path}: {e}") from e
        records = data.get('products', []) if isinstance(data, dict) else data
        return cls.from_records(records, **kwargs)

    @classmethod
    def from_file(cls, path: Path, **kwargs) -> 'ProductCatalog':
        """
        Load a catalog file (.json, .csv or .xlsx)

        Raises:
            CatalogLookupError: file missing or unreadable
        """
        path = Path(path)
        if not path.exists():
            raise CatalogLookupError(f"Catalog file not found: {path}")
        suffix = path.suffix.lower()
        if suffix == '.json':
            return cls.from_json(path, **kwargs)
        try:
            if suffix == '.csv':
                df = pd.read_csv(path, dtype=str, keep_default_na=False)
            elif suffix == '.xlsx':
                df = pd.read_excel(path, dtype=str, engine='openpyxl')
            else:
                raise CatalogLookupError(f"Unsupported catalog format: {path.suffix}")
        except (OSError, ValueError) as e:
            raise CatalogLookupError(f"Could not read catalog {path}: {e}") from e
        return cls.from_frame(df, **kwargs)


def catalog_options(rule_loader) -> Dict[str, Any]:
    """ProductCatalog keyword arguments from 30_matching.yaml"""
    rules = rule_loader.get_matching_rules()
    fuzzy = rules.get('fuzzy_identifier', {})
    full_text = rules.get('full_text', {})
    return {
        'namespaces': tuple(rules.get('identifier_namespaces', DEFAULT_NAMESPACES)),
        'strip_characters': fuzzy.get('strip_characters', DEFAULT_STRIP_CHARACTERS),
        'strip_prefixes': tuple(fuzzy.get('strip_prefixes', DEFAULT_STRIP_PREFIXES)),
        'full_text_max_terms': full_text.get('max_terms', 8),
        'full_text_min_term_length': full_text.get('min_term_length', 2),
        'min_term_coverage': full_text.get('min_term_coverage', 0.75),
    }
