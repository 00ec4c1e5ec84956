"""
Pinecone catalog searcher.

Products are stored as Pinecone vectors with flat metadata (tenant_id,
agent_id, title, description, category, brand, color, material, size,
price, in_stock, popularity, ctr, sales). Tenant and agent scoping and the
caller's hard filters become a Pinecone metadata filter.
"""

import asyncio
from functools import partial
from typing import Any, Dict, List, Optional

from pinecone import Pinecone

from .catalog_searcher import CatalogSearcher, Candidate, SearchRequest
from ..exceptions import ConfigurationError, SearchError
from ..logging import RetrievalLoggerMixin, log_retrieval_operation


def build_pinecone_filter(request: SearchRequest) -> Dict[str, Any]:
    """
    Convert scope and hard filters to Pinecone filter format.

    With an agent id, shared products (no agent_id) and that agent's
    products both match.
    """
    clauses: List[Dict[str, Any]] = [{"tenant_id": {"$eq": request.tenant_id}}]

    if request.agent_id:
        clauses.append({
            "$or": [
                {"agent_id": {"$exists": False}},
                {"agent_id": {"$eq": request.agent_id}},
            ]
        })

    for key, value in request.active_filters().items():
        if isinstance(value, (list, tuple, set)):
            clauses.append({key: {"$in": list(value)}})
        else:
            clauses.append({key: {"$eq": value}})

    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class PineconeCatalogSearcher(CatalogSearcher, RetrievalLoggerMixin):
    """
    Performs catalog vector search against a Pinecone index.

    The Pinecone client is synchronous, so queries run in the default executor
    to keep the event loop free while waiting on the network.
    """

    def __init__(
        self,
        index_name: str,
        api_key: Optional[str] = None,
        namespace: Optional[str] = None,
        index: Any = None
    ):
        """
        Initialize the searcher.

        Args:
            index_name: Pinecone index holding the product vectors
            api_key: Pinecone API key (not needed when ``index`` is given)
            namespace: Optional Pinecone namespace
            index: Pre-built Pinecone ``Index`` handle

        Raises:
            ConfigurationError: If neither an API key nor an index is provided
        """
        if index is None and not api_key:
            raise ConfigurationError(
                "Pinecone API key is required for catalog search. "
                "Please set PINECONE_API_KEY environment variable.",
                missing_keys=["pinecone_api_key"]
            )
        if not index_name:
            raise ConfigurationError("Pinecone index name is required", missing_keys=["pinecone_index_name"])

        self.index_name = index_name
        self.namespace = namespace
        self._api_key = api_key
        self._index = index

    def _get_index(self) -> Any:
        if self._index is None:
            self._index = Pinecone(api_key=self._api_key).Index(self.index_name)
        return self._index

    @log_retrieval_operation("catalog_search")
    async def search(self, request: SearchRequest) -> List[Candidate]:
        filter_dict = build_pinecone_filter(request)
        query_kwargs = {
            "vector": list(request.query_vector),
            "top_k": request.pool_size,
            "filter": filter_dict,
            "include_metadata": True,
        }
        if self.namespace:
            query_kwargs["namespace"] = self.namespace

        try:
            index = self._get_index()
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(None, partial(index.query, **query_kwargs))
        except Exception as e:
            raise SearchError(
                f"Pinecone query failed: {e}",
                search_params={
                    "index_name": self.index_name,
                    "namespace": self.namespace,
                    "top_k": request.pool_size,
                    "filter": filter_dict
                },
                error_code="PINECONE_QUERY_FAILED"
            ) from e

        candidates = [
            Candidate.from_record({"id": match.id, **(match.metadata or {})}, match.score)
            for match in (response.matches or [])
        ]

        self.logger.debug(
            f"Pinecone returned {len(candidates)} matches",
            extra={'extra_fields': {'filter': filter_dict, 'limit': request.limit}}
        )
        return candidates[:request.limit]
