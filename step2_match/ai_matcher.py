#!/usr/bin/env python3
"""
AI Match Arbiter - Ask a local LLM to pick the best catalog entry from a shortlist
Optional last tier of the cascade; off unless SAVINGS_AI_FALLBACK=1
"""

import logging
from typing import List, Optional, Tuple

from step1_extract.models import ExtractedItem

from .catalog import CatalogEntry
from .ollama_client import OllamaClient

logger = logging.getLogger(__name__)


class AIMatchArbiter:
    """Choose a shortlist entry (or none) through an Ollama JSON-mode prompt"""

    def __init__(self, client: OllamaClient, default_confidence: float = 0.80):
        """
        Initialize arbiter

        Args:
            client: OllamaClient used for generation
            default_confidence: Confidence assumed when the model omits one
        """
        self.client = client
        self.default_confidence = default_confidence

    def _create_prompt(self, item: ExtractedItem, candidates: List[CatalogEntry]) -> str:
        lines = [
            "You match purchase line items to a product catalog.",
            "Pick the catalog entry that is the same product as the line item, or none if no entry is.",
            "",
            f"Line item description: {item.description or '(none)'}",
            f"Line item identifiers: {', '.join(item.identifier_values) or '(none)'}",
            "",
            "Candidates:",
        ]
        for number, entry in enumerate(candidates, 1):
            skus = ', '.join(value for _, value in entry.identifiers())
            lines.append(f"{number}. id={entry.entry_id} | {entry.product_name} | brand={entry.brand or '-'} "
                         f"| model={entry.model or '-'} | color={entry.effective_color or '-'} | skus={skus}")
        lines.extend([
            "",
            'Answer with JSON only: {"entry_id": "<id or null>", "confidence": <0.0-1.0>}',
        ])
        return '\n'.join(lines)

    def choose(self, item: ExtractedItem, candidates: List[CatalogEntry]) -> Optional[Tuple[CatalogEntry, float]]:
        """
        Ask the model for the best candidate

        Returns:
            (entry, confidence) or None when the model picks nothing

        Raises:
            OllamaError: the model could not be reached or replied with garbage
        """
        if not candidates:
            return None
        reply = self.client.generate_json(self._create_prompt(item, candidates))
        chosen_id = reply.get('entry_id')
        if chosen_id in (None, '', 'null', 'none'):
            logger.debug(f"AI arbiter chose no candidate for row {item.source_row_index}")
            return None

        by_id = {entry.entry_id: entry for entry in candidates}
        entry = by_id.get(str(chosen_id))
        if entry is None:
            logger.debug(f"AI arbiter chose unknown id {chosen_id} for row {item.source_row_index}")
            return None

        try:
            confidence = float(reply.get('confidence', self.default_confidence))
        except (TypeError, ValueError):
            confidence = self.default_confidence
        return entry, max(0.0, min(confidence, 1.0))
