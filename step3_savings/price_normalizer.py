#!/usr/bin/env python3
"""
Price Normalizer - Per-each prices, quantities in each and cost per page

Both the user's line and the catalog entry go through the same conversion so
a box of 12 and a single unit compare directly. Missing user prices fall back
to catalog list price, then catalog price x markup, then catalog cost x markup,
and the result records which one was used.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from step1_extract.models import ExtractedItem
from step2_match.catalog import CatalogEntry

logger = logging.getLogger(__name__)

EACH = 'EA'


class PriceSource(str, Enum):
    USER_DOCUMENT = 'user_document'
    CATALOG_PRICE = 'catalog_price'
    CATALOG_LIST_PRICE = 'catalog_list_price'
    ESTIMATED_FROM_CATALOG_PRICE = 'estimated_from_catalog_price'
    ESTIMATED_FROM_CATALOG_COST = 'estimated_from_catalog_cost'
    UNAVAILABLE = 'unavailable'


@dataclass(frozen=True)
class NormalizedPrice:
    unit_price: Decimal
    pack_quantity: int
    uom: str
    quantity: int
    price_per_each: Decimal
    quantity_in_each: int
    total: Decimal
    price_source: PriceSource

    @property
    def available(self) -> bool:
        return self.price_source != PriceSource.UNAVAILABLE and self.unit_price > 0

    def to_dict(self) -> Dict:
        return {
            'unit_price': float(self.unit_price),
            'pack_quantity': self.pack_quantity,
            'uom': self.uom,
            'quantity': self.quantity,
            'price_per_each': round(float(self.price_per_each), 4),
            'quantity_in_each': self.quantity_in_each,
            'total': round(float(self.total), 2),
            'price_source': self.price_source.value,
        }


class PriceNormalizer:
    """Convert (unit price, pack quantity, UoM) to canonical per-each values"""

    def __init__(self, rule_loader):
        """
        Initialize price normalizer

        Args:
            rule_loader: RuleLoader instance (40_pricing.yaml)
        """
        rules = rule_loader.get_pricing_rules()
        self.markup_factor = Decimal(str(rules.get('markup_factor', 1.30)))
        self.default_uom = rules.get('default_uom', EACH)
        self._uom_lookup = {}
        for canonical, aliases in rules.get('uom_aliases', {}).items():
            self._uom_lookup[canonical.upper()] = canonical.upper()
            for alias in aliases:
                self._uom_lookup[str(alias).upper()] = canonical.upper()

    def canonical_uom(self, raw: Optional[str]) -> str:
        """EA/BX/CS/PK/CT from free-text UoM; unknown or blank is each"""
        if not raw:
            return self.default_uom
        key = str(raw).strip().upper().rstrip('.')
        return self._uom_lookup.get(key, self.default_uom)

    @staticmethod
    def price_per_each(unit_price: Decimal, pack_quantity: int) -> Decimal:
        return unit_price / max(pack_quantity, 1)

    def normalize(self, unit_price: Decimal, pack_quantity: int, uom: Optional[str], quantity: int,
                  price_source: PriceSource) -> NormalizedPrice:
        """
        Normalize one price

        Args:
            unit_price: Price per selling unit
            pack_quantity: Units in one selling unit (always divides the price)
            uom: Selling unit of measure (raw or canonical)
            quantity: Quantity in selling units; counted in each when the UoM is each
            price_source: Where unit_price came from

        Returns:
            NormalizedPrice with price_per_each and quantity_in_each
        """
        canonical = self.canonical_uom(uom)
        pack = max(int(pack_quantity or 1), 1)
        each_price = self.price_per_each(unit_price, pack)
        quantity_in_each = quantity if canonical == EACH else quantity * pack
        return NormalizedPrice(
            unit_price=unit_price,
            pack_quantity=pack,
            uom=canonical,
            quantity=quantity,
            price_per_each=each_price,
            quantity_in_each=quantity_in_each,
            total=each_price * quantity_in_each,
            price_source=price_source,
        )

    def catalog_price_per_each(self, entry: CatalogEntry) -> Optional[Decimal]:
        """Our per-each catalog price (price, else list price), or None"""
        price = entry.catalog_price
        if price is None:
            return None
        return self.normalize(price, entry.pack_quantity, entry.uom, 1, PriceSource.CATALOG_PRICE).price_per_each

    def cost_per_page(self, price_per_each: Optional[Decimal], page_yield: Optional[int]) -> Optional[Decimal]:
        if price_per_each is None or price_per_each <= 0 or not page_yield or page_yield <= 0:
            return None
        return price_per_each / Decimal(page_yield)

    def entry_cost_per_page(self, entry: CatalogEntry) -> Optional[Decimal]:
        return self.cost_per_page(self.catalog_price_per_each(entry), entry.page_yield)

    def normalize_item(self, item: ExtractedItem, entry: Optional[CatalogEntry] = None) -> NormalizedPrice:
        """
        Normalize the user's line, applying the price fallback chain when it has no price

        Args:
            item: Extracted line item
            entry: Matched catalog entry (pack size and fallback prices), if any

        Returns:
            NormalizedPrice tagged with its price_source
        """
        if item.unit_price > 0:
            uom = item.uom or (entry.uom if entry else None)
            pack = entry.pack_quantity if entry else 1
            return self.normalize(item.unit_price, pack, uom, item.quantity, PriceSource.USER_DOCUMENT)

        if entry is not None:
            if entry.list_price:
                price, source = entry.list_price, PriceSource.CATALOG_LIST_PRICE
            elif entry.price:
                price, source = entry.price * self.markup_factor, PriceSource.ESTIMATED_FROM_CATALOG_PRICE
            elif entry.cost:
                price, source = entry.cost * self.markup_factor, PriceSource.ESTIMATED_FROM_CATALOG_COST
            else:
                price, source = None, PriceSource.UNAVAILABLE
            if price is not None:
                logger.debug(f"Row {item.source_row_index}: no document price, using {source.value} {price}")
                return self.normalize(price, entry.pack_quantity, entry.uom, item.quantity, source)

        return self.normalize(Decimal('0'), 1, item.uom or (entry.uom if entry else None),
                              item.quantity, PriceSource.UNAVAILABLE)
