"""
Optional cross-encoder reranking blend.

A reranker scores (query, product text) pairs more precisely than vector
similarity. Its score is blended with the rescored value, the list is
re-sorted and truncated to ``top_k``. Reranking is best-effort: any failure
or timeout leaves the rescored ranking untouched.

Usage:
    blender = RerankBlender(VoyageReranker(api_key), RerankerConfig(enabled=True))
    outcome = await blender.rerank(query, ranked)
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from .rescorer import RankedResult, ranking_key
from ..events import DegradationEvent, STAGE_RERANK
from ..exceptions import RerankError
from ..logging import RetrievalLoggerMixin, RetrievalMetricsLogger
from ..processors.embedding_service import VOYAGE_API_BASE_URL
from ..search.catalog_searcher import Candidate


@dataclass(frozen=True)
class RerankerConfig:
    """Configuration for the rerank blend."""

    enabled: bool = False
    model: str = "rerank-2"
    top_k: int = 10
    timeout_seconds: float = 10.0
    blend_weight: float = 0.5  # weight of the rerank score in the blend


@dataclass
class RerankOutcome:
    """Ranking after the blend step and whether it was applied."""

    results: List[RankedResult]
    applied: bool = False
    degradation: Optional[DegradationEvent] = None


class BaseReranker(ABC):
    """Abstract base class for rerank providers."""

    @abstractmethod
    async def score(self, query: str, documents: List[str], top_k: int) -> List[float]:
        """
        Score documents against query.

        Returns:
            One relevance score per document, aligned with ``documents``.
            Documents the provider did not score get 0.0.

        Raises:
            RerankError: On provider failure
        """

    async def aclose(self) -> None:
        """Release reranker resources."""


class VoyageReranker(BaseReranker):
    """Voyage AI rerank endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "rerank-2",
        base_url: str = VOYAGE_API_BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def score(self, query: str, documents: List[str], top_k: int) -> List[float]:
        if not documents:
            return []

        try:
            response = await self._client.post(
                f"{self.base_url}/rerank",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"query": query, "documents": documents, "model": self.model, "top_k": top_k},
            )
        except httpx.HTTPError as e:
            raise RerankError(f"Voyage rerank transport error: {e}", model=self.model) from e

        if response.is_error:
            raise RerankError(
                f"Voyage rerank error: {response.reason_phrase or response.text}",
                model=self.model,
                status_code=response.status_code
            )

        scores = [0.0] * len(documents)
        try:
            # Results come back sorted by relevance; "index" points into the request
            for item in response.json()["data"]:
                index = int(item["index"])
                if 0 <= index < len(documents):
                    scores[index] = float(item["relevance_score"])
        except (ValueError, KeyError, TypeError) as e:
            raise RerankError(
                f"Malformed Voyage rerank response: {e}",
                model=self.model,
                status_code=response.status_code
            ) from e
        return scores

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_rerank_document(candidate: Candidate) -> str:
    """Render a candidate as ``"{title}. {description}. k: v, ..."`` for the reranker."""
    attribute_text = ", ".join(
        f"{key}: {', '.join(str(v) for v in value) if isinstance(value, (list, tuple)) else value}"
        for key, value in candidate.attributes.items()
        if value not in (None, "", [], ())
    )
    return f"{candidate.title}. {candidate.description}. {attribute_text}"


class RerankBlender(RetrievalLoggerMixin):
    """Blends reranker scores into the rescored ranking."""

    def __init__(self, reranker: Optional[BaseReranker], config: RerankerConfig):
        if not 0.0 <= config.blend_weight <= 1.0:
            raise ValueError(f"blend_weight must be within [0, 1], got {config.blend_weight}")
        if config.top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {config.top_k}")
        self.reranker = reranker
        self.config = config
        self._metrics = RetrievalMetricsLogger("RerankBlender")

    @property
    def active(self) -> bool:
        return self.config.enabled and self.reranker is not None

    async def rerank(self, query: str, ranked: Sequence[RankedResult]) -> RerankOutcome:
        """
        Blend, re-sort and truncate ``ranked``.

        Returns:
            RerankOutcome; on failure the input ranking unchanged plus the degradation event
        """
        ranked = list(ranked)
        if not self.active or not ranked:
            return RerankOutcome(results=ranked)

        start_time = time.perf_counter()
        documents = [build_rerank_document(result.candidate) for result in ranked]

        try:
            scores = await asyncio.wait_for(
                self.reranker.score(query, documents, self.config.top_k),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError:
            return self._fallback(ranked, RerankError(
                f"Rerank timed out after {self.config.timeout_seconds}s",
                model=self.config.model
            ))
        except RerankError as e:
            return self._fallback(ranked, e)
        except Exception as e:
            return self._fallback(ranked, RerankError(f"Rerank failed: {e}", model=self.config.model))

        weight = self.config.blend_weight
        blended = []
        for position, result in enumerate(ranked):
            rerank_score = float(scores[position]) if position < len(scores) else 0.0
            blended.append(RankedResult(
                candidate=result.candidate,
                rescored_score=result.rescored_score,
                rerank_score=rerank_score,
                final_score=(1 - weight) * result.rescored_score + weight * rerank_score
            ))

        blended.sort(key=ranking_key)
        blended = blended[:self.config.top_k]

        self._metrics.log_rerank(
            input_count=len(ranked),
            output_count=len(blended),
            rerank_time_ms=(time.perf_counter() - start_time) * 1000,
            applied=True
        )
        return RerankOutcome(results=blended, applied=True)

    def _fallback(self, ranked: List[RankedResult], error: RerankError) -> RerankOutcome:
        self.logger.warning(
            f"Rerank failed, keeping rescored order: {error.message}",
            extra={'extra_fields': {'error_type': type(error).__name__, **error.details}}
        )
        return RerankOutcome(
            results=ranked,
            applied=False,
            degradation=DegradationEvent.from_exception(STAGE_RERANK, error)
        )
