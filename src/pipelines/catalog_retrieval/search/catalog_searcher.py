"""
Catalog search contract for the retrieval pipeline.

The catalog/vector-index collaborator receives a query vector, a tenant and
optional agent scope, exact-match hard filters, a candidate pool size and a
result limit, and returns candidates with a base similarity score. That
ordering is provisional: the pipeline always re-ranks it.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

# Flat record keys that describe the product itself rather than its attributes
_RESERVED_KEYS = {
    "id", "sku", "_id", "title", "description", "embedding", "in_stock", "inStock",
    "tenant_id", "tenantId", "agent_id", "agentId", "attributes", "metrics",
    "popularity", "ctr", "sales", "score", "vectorSearchScore",
}


@dataclass(frozen=True)
class SearchConfig:
    """Configuration for catalog vector search."""

    pool_size: int = 200
    limit: int = 50
    timeout_seconds: float = 10.0


@dataclass
class BusinessMetrics:
    """Engagement signals attached to a catalog product."""

    popularity: Optional[float] = None
    ctr: Optional[float] = None
    sales: Optional[float] = None


@dataclass
class Candidate:
    """A catalog product returned by vector search, before rescoring."""

    id: str
    base_score: float
    title: str = ""
    description: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    in_stock: Optional[bool] = None
    metrics: BusinessMetrics = field(default_factory=BusinessMetrics)

    @property
    def price(self) -> Optional[float]:
        price = self.attributes.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
            return None
        return float(price)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], score: float) -> "Candidate":
        """
        Build a candidate from a catalog record.

        Accepts nested ``attributes``/``metrics`` mappings as well as the flat
        metadata layout vector indexes such as Pinecone require.
        """
        attributes = dict(record.get("attributes") or {})
        for key, value in record.items():
            if key not in _RESERVED_KEYS and value is not None:
                attributes.setdefault(key, value)

        metrics_source = record.get("metrics") or record
        in_stock = record.get("in_stock", record.get("inStock"))

        return cls(
            id=str(record.get("sku") or record.get("id") or record.get("_id")),
            base_score=float(score),
            title=str(record.get("title") or ""),
            description=str(record.get("description") or ""),
            attributes=attributes,
            in_stock=None if in_stock is None else bool(in_stock),
            metrics=BusinessMetrics(
                popularity=_optional_float(metrics_source.get("popularity")),
                ctr=_optional_float(metrics_source.get("ctr")),
                sales=_optional_float(metrics_source.get("sales")),
            ),
        )


@dataclass(frozen=True)
class SearchRequest:
    """Everything the catalog collaborator needs for one search."""

    query_vector: Sequence[float]
    tenant_id: str
    agent_id: Optional[str] = None
    hard_filters: Mapping[str, Any] = field(default_factory=dict)
    pool_size: int = 200
    limit: int = 50

    def active_filters(self) -> Dict[str, Any]:
        """Hard filters with ``None`` values dropped."""
        return {key: value for key, value in self.hard_filters.items() if value is not None}


class CatalogSearcher(ABC):
    """Vector index / catalog store collaborator."""

    @abstractmethod
    async def search(self, request: SearchRequest) -> List[Candidate]:
        """
        Return scoped, filtered candidates ordered by base similarity.

        Raises:
            SearchError: If the search fails
        """

    async def aclose(self) -> None:
        """Release searcher resources."""


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
