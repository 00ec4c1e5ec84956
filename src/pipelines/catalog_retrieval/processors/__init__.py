"""Catalog Retrieval Pipeline Processors.

This module contains the query-side services (embedding acquisition and
attribute extraction) and the context formatter.
"""

from .embedding_service import (
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    QueryEmbedding,
    VoyageEmbeddingProvider,
)
from .attribute_extractor import (
    AttributeExtraction,
    AttributeExtractionService,
    AttributeExtractor,
    ExtractorConfig,
    OpenAIAttributeExtractor,
    QueryAttributes,
    normalize_attributes,
)
from .context_formatter import ContextFormatter, FormatterConfig, FormattedContext

__all__ = [
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EmbeddingService",
    "OpenAIEmbeddingProvider",
    "QueryEmbedding",
    "VoyageEmbeddingProvider",
    "AttributeExtraction",
    "AttributeExtractionService",
    "AttributeExtractor",
    "ExtractorConfig",
    "OpenAIAttributeExtractor",
    "QueryAttributes",
    "normalize_attributes",
    "ContextFormatter",
    "FormatterConfig",
    "FormattedContext",
]
