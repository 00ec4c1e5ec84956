"""Catalog Retrieval Search Components.

This module contains the catalog search contract and its Pinecone and
in-memory implementations.
"""

from .catalog_searcher import BusinessMetrics, Candidate, CatalogSearcher, SearchConfig, SearchRequest
from .memory_searcher import InMemoryCatalogSearcher
from .pinecone_searcher import PineconeCatalogSearcher, build_pinecone_filter

__all__ = [
    "BusinessMetrics",
    "Candidate",
    "CatalogSearcher",
    "SearchConfig",
    "SearchRequest",
    "InMemoryCatalogSearcher",
    "PineconeCatalogSearcher",
    "build_pinecone_filter",
]
