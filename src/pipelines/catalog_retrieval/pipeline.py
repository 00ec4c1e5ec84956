"""
Catalog Retrieval Pipeline Orchestrator.

This module implements the RetrievalPipeline class that coordinates the
retrieval components: query embedding and attribute extraction (both
cache-backed), scoped catalog vector search, soft rescoring, the optional
rerank blend, availability filtering and context formatting.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .cache import BoundedTTLCache, CacheConfig, CacheSweeper
from .config import ConfigurationLoader, RetrievalSettings
from .events import DegradationEvent, EventChannel
from .exceptions import ConfigurationError, QueryValidationError, SearchError
from .logging import RetrievalLoggerMixin, RetrievalMetricsLogger, log_retrieval_operation, set_retrieval_log_level
from .models import CacheStats, CacheTierStats, DegradationInfo, RetrievalContext, RetrievalMetadata
from .processors.attribute_extractor import (
    AttributeExtractionService,
    AttributeExtractor,
    ExtractorConfig,
    OpenAIAttributeExtractor,
)
from .processors.context_formatter import ContextFormatter, FormatterConfig
from .processors.embedding_service import (
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    VoyageEmbeddingProvider,
)
from .scoring.reranker import BaseReranker, RerankBlender, RerankerConfig, VoyageReranker
from .scoring.rescorer import RescoringWeights, SoftRescorer
from .search.catalog_searcher import Candidate, CatalogSearcher, SearchConfig, SearchRequest
from .search.pinecone_searcher import PineconeCatalogSearcher


@dataclass(frozen=True)
class RetrievalConfig:
    """Fully resolved configuration for the pipeline. Built once, never re-merged."""

    tenant_id: str
    embedding_config: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    extractor_config: ExtractorConfig = field(default_factory=ExtractorConfig)
    search_config: SearchConfig = field(default_factory=SearchConfig)
    rescoring_weights: RescoringWeights = field(default_factory=RescoringWeights)
    reranker_config: RerankerConfig = field(default_factory=RerankerConfig)
    formatter_config: FormatterConfig = field(default_factory=FormatterConfig)
    embedding_cache_config: CacheConfig = field(default_factory=CacheConfig)
    attribute_cache_config: CacheConfig = field(
        default_factory=lambda: CacheConfig(ttl_seconds=1800.0, max_size=500)
    )
    include_out_of_stock: bool = False
    sweep_interval_seconds: float = 300.0

    def __post_init__(self):
        if not self.tenant_id or not str(self.tenant_id).strip():
            raise ConfigurationError(
                "tenant_id is required to scope catalog searches",
                missing_keys=["tenant_id"]
            )

    @classmethod
    def from_settings(cls, settings: RetrievalSettings) -> 'RetrievalConfig':
        """
        Resolve RetrievalSettings into component configurations.

        Raises:
            ConfigurationError: If tenant_id is missing
        """
        return cls(
            tenant_id=settings.tenant_id,
            embedding_config=EmbeddingConfig(
                model=settings.embedding_model,
                timeout_seconds=settings.embedding_timeout_seconds,
                normalize_unicode=settings.normalize_unicode
            ),
            extractor_config=ExtractorConfig(
                enabled=settings.enable_attribute_extraction,
                llm_model=settings.attribute_extraction_model,
                temperature=settings.attribute_extraction_temperature,
                timeout_seconds=settings.attribute_extraction_timeout_seconds,
                allowed_fields=tuple(settings.attribute_fields)
            ),
            search_config=SearchConfig(
                pool_size=settings.search_pool_size,
                limit=settings.search_limit,
                timeout_seconds=settings.search_timeout_seconds
            ),
            rescoring_weights=RescoringWeights(
                color=settings.rescoring_weight_color,
                size=settings.rescoring_weight_size,
                material=settings.rescoring_weight_material,
                category=settings.rescoring_weight_category,
                brand=settings.rescoring_weight_brand,
                popularity=settings.rescoring_weight_popularity,
                ctr=settings.rescoring_weight_ctr,
                sales=settings.rescoring_weight_sales
            ),
            reranker_config=RerankerConfig(
                enabled=settings.enable_reranking,
                model=settings.rerank_model,
                top_k=settings.rerank_top_k,
                timeout_seconds=settings.rerank_timeout_seconds,
                blend_weight=settings.rerank_blend_weight
            ),
            formatter_config=FormatterConfig(
                context_product_count=settings.context_product_count,
                language=settings.language
            ),
            embedding_cache_config=CacheConfig(
                enabled=settings.embedding_cache_enabled,
                ttl_seconds=settings.embedding_cache_ttl_seconds,
                max_size=settings.embedding_cache_max_size
            ),
            attribute_cache_config=CacheConfig(
                enabled=settings.attribute_cache_enabled,
                ttl_seconds=settings.attribute_cache_ttl_seconds,
                max_size=settings.attribute_cache_max_size
            ),
            include_out_of_stock=settings.include_out_of_stock,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds
        )


@dataclass(frozen=True)
class RetrievalOptions:
    """Per-request options for ``retrieve_context``."""

    agent_id: Optional[str] = None
    filters: Mapping[str, Any] = field(default_factory=dict)
    include_out_of_stock: Optional[bool] = None  # None uses the pipeline setting


class RetrievalPipeline(RetrievalLoggerMixin):
    """
    Orchestrates the catalog retrieval workflow.

    Key features:
    - Embedding and attribute extraction run concurrently and are cached
      independently with bounded TTL caches
    - Tenant/agent scoped vector search with exact-match hard filters
    - Soft rescoring on attribute matches, price proximity and business metrics
    - Optional reranker blend with graceful fallback
    - Soft failures reported on the ``events`` channel and in response metadata
    - Background sweep of expired cache entries between ``start()`` and ``close()``
    """

    def __init__(
        self,
        config: RetrievalConfig,
        embedding_provider: EmbeddingProvider,
        catalog_searcher: CatalogSearcher,
        attribute_extractor: Optional[AttributeExtractor] = None,
        reranker: Optional[BaseReranker] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the RetrievalPipeline.

        Args:
            config: Resolved pipeline configuration
            embedding_provider: Provider used on embedding cache misses
            catalog_searcher: Catalog / vector index collaborator
            attribute_extractor: Provider used on attribute cache misses (optional)
            reranker: Rerank provider, used only when reranking is enabled (optional)
            clock: Monotonic time source for cache expiry
        """
        self.config = config
        self.embedding_provider = embedding_provider
        self.catalog_searcher = catalog_searcher
        self.attribute_extractor = attribute_extractor
        self.reranker = reranker

        self.embedding_cache: BoundedTTLCache = BoundedTTLCache(
            "embeddings", config.embedding_cache_config, clock=clock
        )
        self.attribute_cache: BoundedTTLCache = BoundedTTLCache(
            "attributes", config.attribute_cache_config, clock=clock
        )

        self.embedding_service = EmbeddingService(embedding_provider, config.embedding_config, self.embedding_cache)
        self.attribute_service = AttributeExtractionService(
            attribute_extractor, config.extractor_config, self.attribute_cache
        )
        self.rescorer = SoftRescorer(config.rescoring_weights)
        self.rerank_blender = RerankBlender(reranker, config.reranker_config)
        self.formatter = ContextFormatter(config.formatter_config)
        self.sweeper = CacheSweeper(
            [self.embedding_cache, self.attribute_cache],
            interval_seconds=config.sweep_interval_seconds
        )
        self.events = EventChannel()
        self.metrics_logger = RetrievalMetricsLogger("RetrievalPipeline")

        self.logger.info(
            "RetrievalPipeline created",
            extra={
                'extra_fields': {
                    'tenant_id': config.tenant_id,
                    'embedding_model': config.embedding_config.model,
                    'attribute_extraction_enabled': config.extractor_config.enabled,
                    'reranking_enabled': config.reranker_config.enabled,
                    'embedding_cache_enabled': config.embedding_cache_config.enabled,
                    'attribute_cache_enabled': config.attribute_cache_config.enabled
                }
            }
        )

    @classmethod
    def from_settings(cls, settings: RetrievalSettings) -> 'RetrievalPipeline':
        """
        Create RetrievalPipeline and its providers from RetrievalSettings.

        Raises:
            ConfigurationError: If tenant_id or a required API key is missing
        """
        config = RetrievalConfig.from_settings(settings)
        set_retrieval_log_level(settings.log_level)

        if settings.embedding_provider == "voyage":
            _require(settings.voyage_api_key, "voyage_api_key", "VOYAGE_API_KEY", "Voyage embeddings")
            embedding_provider: EmbeddingProvider = VoyageEmbeddingProvider(settings.voyage_api_key)
        else:
            _require(settings.openai_api_key, "openai_api_key", "OPENAI_API_KEY", "OpenAI embeddings")
            embedding_provider = OpenAIEmbeddingProvider(settings.openai_api_key)

        attribute_extractor = None
        if settings.enable_attribute_extraction:
            _require(settings.openai_api_key, "openai_api_key", "OPENAI_API_KEY", "attribute extraction")
            attribute_extractor = OpenAIAttributeExtractor(
                api_key=settings.openai_api_key,
                model=settings.attribute_extraction_model,
                temperature=settings.attribute_extraction_temperature
            )

        reranker = None
        if settings.enable_reranking:
            _require(settings.voyage_api_key, "voyage_api_key", "VOYAGE_API_KEY", "reranking")
            reranker = VoyageReranker(settings.voyage_api_key, model=settings.rerank_model)

        catalog_searcher = PineconeCatalogSearcher(
            index_name=settings.pinecone_index_name,
            api_key=settings.pinecone_api_key,
            namespace=settings.pinecone_namespace
        )

        return cls(
            config=config,
            embedding_provider=embedding_provider,
            catalog_searcher=catalog_searcher,
            attribute_extractor=attribute_extractor,
            reranker=reranker
        )

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None, **overrides: Any) -> 'RetrievalPipeline':
        """
        Create RetrievalPipeline from a YAML configuration file.

        Args:
            config_path: Path to YAML configuration file
            **overrides: Settings that take precedence over file and environment

        Returns:
            RetrievalPipeline instance
        """
        settings = ConfigurationLoader(config_path).load_config(**overrides)
        return cls.from_settings(settings)

    async def start(self) -> None:
        """Start the background cache sweeper."""
        self.sweeper.start()

    async def close(self) -> None:
        """Stop the sweeper and release provider resources."""
        await self.sweeper.stop()
        for component in (self.embedding_provider, self.attribute_extractor, self.reranker, self.catalog_searcher):
            if component is not None:
                await component.aclose()
        self.logger.info("RetrievalPipeline closed")

    async def __aenter__(self) -> 'RetrievalPipeline':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @log_retrieval_operation("retrieve_context")
    async def retrieve_context(self, query: str, options: Optional[RetrievalOptions] = None) -> RetrievalContext:
        """
        Retrieve grounding context for a query.

        Args:
            query: Free-text user query
            options: Agent scope, hard filters and availability override

        Returns:
            RetrievalContext with formatted content, sources and metadata

        Raises:
            QueryValidationError: If the query is empty
            EmbeddingProviderError: If the query cannot be embedded
            SearchError: If the catalog search fails or times out
        """
        if query is None or not query.strip():
            raise QueryValidationError("Query cannot be empty", query=query)

        options = options or RetrievalOptions()
        start_time = time.perf_counter()
        query_hash = str(hash(query) % 10000)
        degradations: List[DegradationEvent] = []

        # 1. Embedding and attribute extraction, concurrently
        extraction_task = asyncio.ensure_future(self.attribute_service.extract(query))
        try:
            embedding = await self.embedding_service.embed(query)
        except BaseException:
            extraction_task.cancel()
            try:
                await extraction_task
            except asyncio.CancelledError:
                pass
            raise
        extraction = await extraction_task

        if extraction.degradation is not None:
            degradations.append(extraction.degradation)
            self.events.emit(extraction.degradation)
        attributes = extraction.attributes

        # 2. Scoped vector search
        candidates = await self._search(SearchRequest(
            query_vector=embedding.vector,
            tenant_id=self.config.tenant_id,
            agent_id=options.agent_id,
            hard_filters=dict(options.filters or {}),
            pool_size=self.config.search_config.pool_size,
            limit=self.config.search_config.limit
        ))

        # 3. Soft rescoring
        ranked = self.rescorer.rescore(candidates, attributes)

        # 4. Optional rerank blend
        outcome = await self.rerank_blender.rerank(query, ranked)
        if outcome.degradation is not None:
            degradations.append(outcome.degradation)
            self.events.emit(outcome.degradation)

        # 5. Availability filter
        include_out_of_stock = (
            options.include_out_of_stock
            if options.include_out_of_stock is not None
            else self.config.include_out_of_stock
        )
        final = outcome.results
        if not include_out_of_stock:
            final = [result for result in final if result.candidate.in_stock is not False]

        # 6. Format
        formatted = self.formatter.format(final)
        latency_ms = (time.perf_counter() - start_time) * 1000

        metadata = RetrievalMetadata(
            product_count=len(final),
            returned_count=len(formatted.sources),
            extracted_attributes=attributes.to_dict(),
            top_products=formatted.top_products,
            counts_by_category=formatted.counts_by_category,
            counts_by_type=formatted.counts_by_type,
            reranked=outcome.applied,
            embedding_cache_hit=embedding.cache_hit,
            attribute_cache_hit=extraction.cache_hit,
            degradations=[DegradationInfo.from_event(event) for event in degradations],
            latency_ms=latency_ms
        )

        self.metrics_logger.log_pipeline_metrics(
            total_time_ms=latency_ms,
            query_hash=query_hash,
            products_returned=len(formatted.sources),
            embedding_cache_hit=embedding.cache_hit,
            degradations=len(degradations)
        )

        return RetrievalContext(content=formatted.content, sources=formatted.sources, metadata=metadata)

    async def _search(self, request: SearchRequest) -> List[Candidate]:
        search_params = {
            'tenant_id': request.tenant_id,
            'agent_id': request.agent_id,
            'filters': request.active_filters(),
            'pool_size': request.pool_size,
            'limit': request.limit
        }
        start_time = time.perf_counter()
        timeout = self.config.search_config.timeout_seconds

        try:
            candidates = await asyncio.wait_for(self.catalog_searcher.search(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise SearchError(
                f"Catalog search timed out after {timeout}s",
                search_params=search_params,
                error_code="SEARCH_TIMEOUT"
            ) from e
        except SearchError:
            raise
        except Exception as e:
            raise SearchError(
                f"Catalog search failed: {e}",
                search_params=search_params,
                error_code="SEARCH_FAILED"
            ) from e

        self.metrics_logger.log_search_results(
            results_count=len(candidates),
            search_time_ms=(time.perf_counter() - start_time) * 1000,
            pool_size=request.pool_size,
            limit=request.limit,
            filters_applied=request.active_filters()
        )
        return candidates

    def format_context(self, context: RetrievalContext) -> str:
        """Return the LLM-ready context string."""
        return context.content

    def get_cache_stats(self) -> CacheStats:
        """Get size and hit/miss statistics for both caches."""
        return CacheStats(
            embeddings=CacheTierStats(**self.embedding_cache.stats()),
            attributes=CacheTierStats(**self.attribute_cache.stats())
        )

    def clear_cache(self) -> None:
        """Clear both caches and reset their counters."""
        self.embedding_cache.clear()
        self.attribute_cache.clear()
        self.logger.info("Retrieval caches cleared")

    def health_check(self) -> Dict[str, Any]:
        """
        Report component presence and background sweeper state.

        Returns:
            Dictionary containing health status
        """
        health = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {},
            "errors": []
        }

        components_to_check = [
            ("embedding_provider", self.embedding_provider, True),
            ("catalog_searcher", self.catalog_searcher, True),
            ("attribute_extractor", self.attribute_extractor, self.config.extractor_config.enabled),
            ("reranker", self.reranker, self.config.reranker_config.enabled),
        ]

        for component_name, component, enabled in components_to_check:
            if not enabled:
                health["components"][component_name] = "disabled"
            elif component is None:
                health["components"][component_name] = "not_configured"
                health["errors"].append(f"{component_name} not configured")
                health["status"] = "degraded"
            else:
                health["components"][component_name] = "healthy"

        health["components"]["cache_sweeper"] = "running" if self.sweeper.running else "stopped"
        health["cache"] = self.get_cache_stats().model_dump()
        health["recent_degradations"] = len(self.events.recent())
        return health


def _require(value: Optional[str], key: str, env_var: str, purpose: str) -> None:
    if not value:
        raise ConfigurationError(
            f"{env_var} is required for {purpose}. Please set the {env_var} environment variable.",
            missing_keys=[key]
        )
