"""
Pydantic response models for the catalog retrieval pipeline.

This module defines the structured response schemas returned by
``RetrievalPipeline.retrieve_context`` and ``get_cache_stats``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .events import DegradationEvent


class SourceItem(BaseModel):
    """A product surfaced to the conversation as a grounding source."""

    id: str = Field(..., description="Product SKU / identifier")
    title: str = Field(default="", description="Product title")
    score: float = Field(..., description="Final ranking score")
    type: str = Field(default="product", description="Source type")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Product attributes")
    in_stock: Optional[bool] = Field(None, description="Stock status if known")


class TopProduct(BaseModel):
    """Compact preview of a top-ranked product."""

    id: str
    title: str = ""
    score: float


class DegradationInfo(BaseModel):
    """A soft failure that occurred while serving the request."""

    stage: str = Field(..., description="Pipeline stage that degraded")
    error_type: str = Field(..., description="Exception class name")
    message: str = Field(..., description="Human-readable error message")
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: DegradationEvent) -> "DegradationInfo":
        return cls(
            stage=event.stage,
            error_type=event.error_type,
            message=event.message,
            occurred_at=event.occurred_at
        )


class RetrievalMetadata(BaseModel):
    """Diagnostic metadata about one retrieval."""

    product_count: int = Field(
        ...,
        ge=0,
        description="Products remaining after availability filtering, before display truncation"
    )
    returned_count: int = Field(..., ge=0, description="Products included in content and sources")
    extracted_attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes extracted from the query (constrained fields only)"
    )
    top_products: List[TopProduct] = Field(default_factory=list, description="Top 3 products preview")
    counts_by_category: Dict[str, int] = Field(default_factory=dict)
    counts_by_type: Dict[str, int] = Field(default_factory=dict)
    reranked: bool = Field(default=False, description="Whether the rerank blend was applied")
    embedding_cache_hit: bool = Field(default=False)
    attribute_cache_hit: bool = Field(default=False)
    degradations: List[DegradationInfo] = Field(default_factory=list)
    latency_ms: float = Field(default=0.0, ge=0.0, description="Total retrieval latency in milliseconds")


class RetrievalContext(BaseModel):
    """Complete grounding context for one query."""

    content: str = Field(..., description="Formatted context string ready for LLM consumption")
    sources: List[SourceItem] = Field(default_factory=list)
    metadata: RetrievalMetadata

    class Config:
        json_schema_extra = {
            "example": {
                "content": (
                    "AVAILABLE PRODUCTS IN CATALOG:\n\n"
                    "1. Trail Runner\n   SKU: SKU-1\n   Lightweight running shoe\n"
                    "   Category: shoes | Color: red | Sizes: 9, 10 | Price: $89.99 | In Stock"
                ),
                "sources": [
                    {
                        "id": "SKU-1",
                        "title": "Trail Runner",
                        "score": 0.97,
                        "type": "product",
                        "attributes": {"category": "shoes", "color": "red", "size": ["9", "10"], "price": 89.99},
                        "in_stock": True
                    }
                ],
                "metadata": {
                    "product_count": 1,
                    "returned_count": 1,
                    "extracted_attributes": {"category": "shoes", "color": "red"},
                    "top_products": [{"id": "SKU-1", "title": "Trail Runner", "score": 0.97}],
                    "counts_by_category": {"shoes": 1},
                    "counts_by_type": {"product": 1},
                    "reranked": False,
                    "embedding_cache_hit": False,
                    "attribute_cache_hit": False,
                    "degradations": [],
                    "latency_ms": 184.2
                }
            }
        }


class CacheTierStats(BaseModel):
    """Statistics for one cache tier."""

    size: int = Field(..., ge=0)
    max_size: int = Field(..., ge=1)
    hits: int = Field(..., ge=0)
    misses: int = Field(..., ge=0)
    hit_rate: float = Field(..., ge=0.0, le=1.0)


class CacheStats(BaseModel):
    """Statistics for both pipeline caches."""

    embeddings: CacheTierStats
    attributes: CacheTierStats
