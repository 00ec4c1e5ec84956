"""
Embedding Acquisition Service for the catalog retrieval pipeline.

This module normalizes query text and turns it into an embedding vector,
consulting the pipeline's embedding cache before calling the external
embedding provider. Provider failures are hard failures and are never cached.
"""

import asyncio
import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx
import openai
from langchain_openai import OpenAIEmbeddings

from ..cache.ttl_cache import BoundedTTLCache
from ..exceptions import EmbeddingProviderError
from ..logging import RetrievalLoggerMixin, log_retrieval_operation

VOYAGE_API_BASE_URL = "https://api.voyageai.com/v1"


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding acquisition."""

    model: str = "voyage-multilingual-2"
    timeout_seconds: float = 10.0
    normalize_unicode: bool = True


@dataclass
class QueryEmbedding:
    """Embedding of a normalized query and whether it came from the cache."""

    text: str
    vector: List[float]
    cache_hit: bool = False


class EmbeddingProvider(ABC):
    """External embedding provider contract."""

    name: str = "embedding"

    @abstractmethod
    async def embed(self, text: str, model: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingProviderError: On any provider or transport failure
        """

    async def aclose(self) -> None:
        """Release provider resources."""


class VoyageEmbeddingProvider(EmbeddingProvider):
    """Voyage AI embeddings over its REST API."""

    name = "voyage"

    def __init__(
        self,
        api_key: str,
        base_url: str = VOYAGE_API_BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def embed(self, text: str, model: str) -> List[float]:
        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"input": text, "model": model},
            )
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(
                f"Voyage API transport error: {e}",
                provider=self.name,
                model=model
            ) from e

        if response.is_error:
            raise EmbeddingProviderError(
                f"Voyage API error: {response.reason_phrase or response.text}",
                provider=self.name,
                model=model,
                status_code=response.status_code
            )

        try:
            embedding = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingProviderError(
                f"Malformed Voyage embedding response: {e}",
                provider=self.name,
                model=model,
                status_code=response.status_code
            ) from e

        return [float(x) for x in embedding]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings through LangChain's ``OpenAIEmbeddings``."""

    name = "openai"

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._models: Dict[str, OpenAIEmbeddings] = {}

    def _model(self, model: str) -> OpenAIEmbeddings:
        if model not in self._models:
            self._models[model] = OpenAIEmbeddings(model=model, api_key=self.api_key)
        return self._models[model]

    async def embed(self, text: str, model: str) -> List[float]:
        try:
            return await self._model(model).aembed_query(text)
        except openai.APIStatusError as e:
            raise EmbeddingProviderError(
                f"OpenAI embeddings error: {e.message}",
                provider=self.name,
                model=model,
                status_code=e.status_code
            ) from e
        except openai.OpenAIError as e:
            raise EmbeddingProviderError(
                f"OpenAI embeddings request failed: {e}",
                provider=self.name,
                model=model
            ) from e


class EmbeddingService(RetrievalLoggerMixin):
    """
    Cache-or-fetch access to query embeddings.

    The cache key is ``(model, normalized_text)``, so the same text embedded
    by two different models never collides.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig,
        cache: BoundedTTLCache[Tuple[str, str], List[float]]
    ):
        self.provider = provider
        self.config = config
        self.cache = cache

    def normalize(self, text: str) -> str:
        """Strip, collapse internal whitespace and apply Unicode NFC."""
        normalized = re.sub(r'\s+', ' ', text.strip())
        if self.config.normalize_unicode:
            normalized = unicodedata.normalize('NFC', normalized)
        return normalized

    def cache_key(self, text: str) -> Tuple[str, str]:
        return (self.config.model, self.normalize(text))

    @log_retrieval_operation("query_embedding")
    async def embed(self, text: str) -> QueryEmbedding:
        """
        Return the embedding for ``text``, calling the provider only on a cache miss.

        Raises:
            EmbeddingProviderError: If the provider fails or exceeds the timeout
        """
        key = self.cache_key(text)
        normalized = key[1]

        if self.cache.enabled:
            cached = self.cache.get(key)
            if cached is not None:
                return QueryEmbedding(text=normalized, vector=cached, cache_hit=True)

        try:
            vector = await asyncio.wait_for(
                self.provider.embed(normalized, self.config.model),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingProviderError(
                f"Embedding request timed out after {self.config.timeout_seconds}s",
                provider=self.provider.name,
                model=self.config.model
            ) from e

        if not vector:
            raise EmbeddingProviderError(
                "Embedding provider returned an empty vector",
                provider=self.provider.name,
                model=self.config.model
            )

        if self.cache.enabled:
            self.cache.put(key, vector)

        return QueryEmbedding(text=normalized, vector=vector, cache_hit=False)
