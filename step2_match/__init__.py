"""
Step 2: Match
Resolve extracted items to catalog entries through a cascade of matching tiers.
Deterministic identifier and text tiers run first; semantic search and the AI
arbiter are optional and degrade to a miss when Ollama is unavailable.
"""

from .catalog import CatalogEntry, CatalogLookup, CatalogLookupError, ProductCatalog, catalog_options
from .models import MatchAttempt, MatchResult
from .match_tiers import MatchTier, build_tiers
from .catalog_resolver import CatalogResolver
from .ollama_client import OllamaClient, OllamaError
from .semantic_index import SemanticIndex, SemanticIndexError
from .ai_matcher import AIMatchArbiter

__all__ = [
    'CatalogEntry',
    'CatalogLookup',
    'CatalogLookupError',
    'ProductCatalog',
    'catalog_options',
    'MatchAttempt',
    'MatchResult',
    'MatchTier',
    'build_tiers',
    'CatalogResolver',
    'OllamaClient',
    'OllamaError',
    'SemanticIndex',
    'SemanticIndexError',
    'AIMatchArbiter',
]
