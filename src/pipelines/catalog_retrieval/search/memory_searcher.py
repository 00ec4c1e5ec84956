"""In-process catalog searcher backed by a list of product records."""

import math
import threading
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .catalog_searcher import CatalogSearcher, Candidate, SearchRequest
from ..exceptions import SearchError
from ..logging import RetrievalLoggerMixin


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


def _field(record: Mapping[str, Any], key: str) -> Any:
    if key in record:
        return record[key]
    return (record.get("attributes") or {}).get(key)


def matches_filter(record_value: Any, wanted: Any) -> bool:
    """Exact match; list-valued records match if they contain the wanted value."""
    if isinstance(wanted, (list, tuple, set)):
        return any(matches_filter(record_value, item) for item in wanted)
    if isinstance(record_value, (list, tuple, set)):
        return wanted in record_value
    return record_value == wanted


class InMemoryCatalogSearcher(CatalogSearcher, RetrievalLoggerMixin):
    """
    Brute-force cosine search over product records held in memory.

    Records carry an ``embedding`` plus the same fields a Pinecone vector's
    metadata would (``tenant_id``, optional ``agent_id``, title, attributes,
    metrics, ``in_stock``). Useful for demos, tests and small catalogs.
    """

    def __init__(self, products: Iterable[Mapping[str, Any]] = ()):
        self._products: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self.add_products(products)

    def __len__(self) -> int:
        return len(self._products)

    def add_products(self, products: Iterable[Mapping[str, Any]]) -> int:
        """Add product records. Each needs an id/sku, a tenant_id and an embedding."""
        added = []
        for product in products:
            if not product.get("embedding"):
                raise ValueError(f"Product {product.get('sku') or product.get('id')} has no embedding")
            if not product.get("tenant_id"):
                raise ValueError(f"Product {product.get('sku') or product.get('id')} has no tenant_id")
            added.append(dict(product))
        with self._lock:
            self._products.extend(added)
        return len(added)

    def _in_scope(self, record: Mapping[str, Any], request: SearchRequest) -> bool:
        if record.get("tenant_id") != request.tenant_id:
            return False
        if request.agent_id and record.get("agent_id") not in (None, request.agent_id):
            return False
        return all(
            matches_filter(_field(record, key), value)
            for key, value in request.active_filters().items()
        )

    async def search(self, request: SearchRequest) -> List[Candidate]:
        with self._lock:
            products = list(self._products)

        scored = []
        for record in products:
            if not self._in_scope(record, request):
                continue
            embedding = record["embedding"]
            if len(embedding) != len(request.query_vector):
                raise SearchError(
                    f"Embedding dimension mismatch: query has {len(request.query_vector)}, "
                    f"product has {len(embedding)}",
                    search_params={"tenant_id": request.tenant_id, "agent_id": request.agent_id},
                    error_code="DIMENSION_MISMATCH"
                )
            scored.append(Candidate.from_record(record, cosine_similarity(request.query_vector, embedding)))

        scored.sort(key=lambda candidate: (-candidate.base_score, candidate.id))
        pool = scored[:request.pool_size]

        self.logger.debug(
            f"In-memory search scored {len(scored)} products",
            extra={'extra_fields': {'pool_size': request.pool_size, 'limit': request.limit}}
        )
        return pool[:request.limit]
