#!/usr/bin/env python3
"""
Semantic Index - Embedding nearest-neighbor search over catalog name/description text
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class SemanticIndexError(Exception):
    """The entry embeddings could not be built"""


class SemanticIndex:
    """Cosine-similarity search over L2-normalized entry embeddings"""

    def __init__(self, embedder: Callable[[str], Sequence[float]],
                 precomputed: Optional[Dict[str, Sequence[float]]] = None):
        """
        Initialize semantic index

        Args:
            embedder: Callable turning text into a vector (e.g. OllamaClient.embed)
            precomputed: Optional entry_id -> embedding map; missing entries are embedded lazily
        """
        self.embedder = embedder
        self.precomputed = dict(precomputed or {})
        self._entries = []
        self._entry_ids: List[str] = []
        self._matrix: Optional[np.ndarray] = None
        self._build_error: Optional[Exception] = None
        self._build_lock = threading.Lock()
        self.build_count = 0

    def attach(self, entries):
        """Register catalog entries; embeddings are built on the first search"""
        with self._build_lock:
            self._entries = sorted(entries, key=lambda e: e.entry_id)
            self._entry_ids = []
            self._matrix = None
            self._build_error = None

    @staticmethod
    def _normalize(vectors: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
        norms[norms == 0] = 1.0
        return vectors / norms

    def _build(self) -> Tuple[List[str], np.ndarray]:
        vectors = []
        entry_ids = []
        for entry in self._entries:
            vector = self.precomputed.get(entry.entry_id)
            if vector is None:
                text = ' '.join(p for p in (entry.product_name, entry.description) if p)
                vector = self.embedder(text)
            vectors.append(np.asarray(vector, dtype=float))
            entry_ids.append(entry.entry_id)

        matrix = self._normalize(np.vstack(vectors)) if vectors else np.zeros((0, 0))
        return entry_ids, matrix

    def _ensure_built(self) -> Tuple[List[str], np.ndarray]:
        # One build per attach; a failed build is remembered instead of retried for every item
        with self._build_lock:
            if self._build_error is not None:
                raise SemanticIndexError(f"Semantic index unavailable: {self._build_error}")
            if self._matrix is None:
                self.build_count += 1
                try:
                    entry_ids, matrix = self._build()
                except Exception as e:
                    self._build_error = e
                    logger.warning(f"Semantic index build failed, semantic search disabled: {e}")
                    raise SemanticIndexError(f"Semantic index unavailable: {e}") from e
                self._entry_ids, self._matrix = entry_ids, matrix
                logger.info(f"Built semantic index over {len(entry_ids)} catalog entries")
            return self._entry_ids, self._matrix

    def search(self, text: str, limit: int = 5) -> List[Tuple[str, float]]:
        """
        Nearest entries to text

        Returns:
            (entry_id, cosine similarity) pairs, best first; ties ordered by entry_id

        Raises:
            SemanticIndexError: the entry embeddings could not be built
        """
        entry_ids, matrix = self._ensure_built()
        if not entry_ids:
            return []

        query = self._normalize(np.asarray(self.embedder(text), dtype=float))
        similarities = matrix @ query
        ranked = sorted(zip(entry_ids, similarities.tolist()), key=lambda pair: (-pair[1], pair[0]))
        return [(entry_id, float(similarity)) for entry_id, similarity in ranked[:limit]]
