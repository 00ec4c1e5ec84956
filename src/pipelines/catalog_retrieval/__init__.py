"""Catalog Retrieval Pipeline.

This module retrieves a small, ranked set of catalog products for a free-text
query to ground a language-model conversation. Query embeddings and extracted
query attributes are cached with bounded TTL caches so repeated queries do
not call the embedding and extraction providers again.
"""

from .config import RetrievalSettings, ConfigurationLoader
from .exceptions import (
    RetrievalError,
    QueryValidationError,
    EmbeddingProviderError,
    SearchError,
    AttributeExtractionError,
    RerankError,
    ConfigurationError,
)
from .cache import BoundedTTLCache, CacheConfig, CacheEntry, CacheSweeper
from .events import DegradationEvent, EventChannel
from .models import (
    SourceItem,
    TopProduct,
    DegradationInfo,
    RetrievalMetadata,
    RetrievalContext,
    CacheTierStats,
    CacheStats,
)
from .pipeline import RetrievalConfig, RetrievalOptions, RetrievalPipeline

__all__ = [
    "RetrievalSettings",
    "ConfigurationLoader",
    "RetrievalError",
    "QueryValidationError",
    "EmbeddingProviderError",
    "SearchError",
    "AttributeExtractionError",
    "RerankError",
    "ConfigurationError",
    "BoundedTTLCache",
    "CacheConfig",
    "CacheEntry",
    "CacheSweeper",
    "DegradationEvent",
    "EventChannel",
    "SourceItem",
    "TopProduct",
    "DegradationInfo",
    "RetrievalMetadata",
    "RetrievalContext",
    "CacheTierStats",
    "CacheStats",
    "RetrievalConfig",
    "RetrievalOptions",
    "RetrievalPipeline",
]
