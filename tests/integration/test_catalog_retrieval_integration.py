"""
Integration tests for the catalog retrieval pipeline.

These tests wire the real provider adapters (Voyage over httpx, OpenAI
attribute extraction, Pinecone search) with their transports mocked, and run
complete retrievals from query to formatted context.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.pipelines.catalog_retrieval import RetrievalConfig, RetrievalOptions, RetrievalPipeline
from src.pipelines.catalog_retrieval.exceptions import SearchError
from src.pipelines.catalog_retrieval.processors.attribute_extractor import OpenAIAttributeExtractor
from src.pipelines.catalog_retrieval.processors.embedding_service import VoyageEmbeddingProvider
from src.pipelines.catalog_retrieval.scoring.reranker import RerankerConfig, VoyageReranker
from src.pipelines.catalog_retrieval.search import PineconeCatalogSearcher


def match(sku, score, **metadata):
    return SimpleNamespace(id=sku, score=score, metadata={"tenant_id": "demo-store", "title": sku, **metadata})


class TestCatalogRetrievalIntegration:
    """End-to-end retrievals with mocked transports."""

    @pytest.fixture
    def voyage_requests(self):
        return []

    @pytest.fixture
    def http_client(self, voyage_requests):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            voyage_requests.append((request.url.path, body))
            if request.url.path.endswith("/embeddings"):
                return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})
            # Rerank: prefer the third document, then the second
            return httpx.Response(200, json={"data": [
                {"index": 2, "relevance_score": 0.99},
                {"index": 1, "relevance_score": 0.5},
            ]})

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.fixture
    def openai_client(self):
        client = MagicMock()
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(
            content='{"color": "red", "category": "shoes", "size": "42"}'
        ))])
        client.chat.completions.create = AsyncMock(return_value=completion)
        return client

    @pytest.fixture
    def pinecone_index(self):
        index = MagicMock()
        index.query.return_value = SimpleNamespace(matches=[
            match("SKU-BLUE", 0.80, color="blue", category="shoes", size=["42"], price=79.0, in_stock=True),
            match("SKU-RED-OOS", 0.79, color="red", category="shoes", size=["42"], in_stock=False),
            match("SKU-RED-JACKET", 0.78, color="red", category="jackets", in_stock=True),
            match("SKU-RED", 0.75, color="red", category="shoes", size=["41", "42"], price=89.0, in_stock=True),
        ])
        return index

    def build_pipeline(self, http_client, openai_client, pinecone_index, **config_overrides):
        return RetrievalPipeline(
            RetrievalConfig(tenant_id="demo-store", **config_overrides),
            embedding_provider=VoyageEmbeddingProvider("voyage-key", client=http_client),
            catalog_searcher=PineconeCatalogSearcher(index_name="catalog-products", index=pinecone_index),
            attribute_extractor=OpenAIAttributeExtractor(api_key="openai-key", client=openai_client),
            reranker=VoyageReranker("voyage-key", client=http_client)
        )

    @pytest.mark.asyncio
    async def test_red_running_shoes_end_to_end(self, http_client, openai_client, pinecone_index, voyage_requests):
        pipeline = self.build_pipeline(http_client, openai_client, pinecone_index)

        async with pipeline:
            context = await pipeline.retrieve_context(
                "zapatillas rojas para correr talla 42", RetrievalOptions(agent_id="agent-1")
            )

        assert [source.id for source in context.sources] == ["SKU-RED", "SKU-BLUE", "SKU-RED-JACKET"]
        assert context.content.startswith("PRODUCTOS DISPONIBLES EN EL CATÁLOGO:")
        assert "Sizes: 41, 42 | Price: $89.00 | In Stock" in context.content
        assert context.metadata.extracted_attributes == {"category": "shoes", "color": "red", "size": "42"}
        assert context.metadata.reranked is False
        assert context.metadata.degradations == []

        query_kwargs = pinecone_index.query.call_args.kwargs
        assert query_kwargs["top_k"] == 200
        assert query_kwargs["filter"]["$and"][0] == {"tenant_id": {"$eq": "demo-store"}}
        assert voyage_requests == [("/v1/embeddings", {"input": "zapatillas rojas para correr talla 42", "model": "voyage-multilingual-2"})]

    @pytest.mark.asyncio
    async def test_rerank_blend_end_to_end(self, http_client, openai_client, pinecone_index, voyage_requests):
        pipeline = self.build_pipeline(
            http_client, openai_client, pinecone_index,
            reranker_config=RerankerConfig(enabled=True, top_k=2)
        )

        context = await pipeline.retrieve_context("red shoes size 42")

        assert context.metadata.reranked is True
        assert [source.id for source in context.sources] == ["SKU-BLUE", "SKU-RED"]
        rerank_path, rerank_body = voyage_requests[-1]
        assert rerank_path == "/v1/rerank"
        assert len(rerank_body["documents"]) == 4
        assert rerank_body["top_k"] == 2
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_second_identical_query_served_from_caches(self, http_client, openai_client, pinecone_index, voyage_requests):
        pipeline = self.build_pipeline(http_client, openai_client, pinecone_index)

        await pipeline.retrieve_context("red shoes")
        second = await pipeline.retrieve_context("red shoes")

        assert second.metadata.embedding_cache_hit is True
        assert second.metadata.attribute_cache_hit is True
        assert len(voyage_requests) == 1
        assert openai_client.chat.completions.create.await_count == 1
        assert pinecone_index.query.call_count == 2
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_pinecone_failure_is_hard(self, http_client, openai_client, pinecone_index):
        pinecone_index.query.side_effect = RuntimeError("index unavailable")
        pipeline = self.build_pipeline(http_client, openai_client, pinecone_index)

        with pytest.raises(SearchError) as exc_info:
            await pipeline.retrieve_context("red shoes")

        assert exc_info.value.error_code == "PINECONE_QUERY_FAILED"
        await http_client.aclose()
