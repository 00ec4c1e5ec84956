"""Logging utilities for the catalog retrieval pipeline."""

import asyncio
import time
from functools import wraps
from typing import Dict, Any, Optional, Callable
import logging

from src.utils.logging import get_logger, LoggerMixin, setup_pipeline_logging

RETRIEVAL_LOGGER_NAME = "src.pipelines.catalog_retrieval"


class RetrievalLoggerMixin(LoggerMixin):
    """Enhanced logger mixin for catalog retrieval components."""

    @property
    def logger(self) -> logging.Logger:
        """Get logger for this retrieval component."""
        if not hasattr(self, '_logger'):
            component_name = self.__class__.__name__
            self._logger = get_logger(
                f"{RETRIEVAL_LOGGER_NAME}.{component_name.lower()}",
                context={
                    'pipeline': 'catalog_retrieval',
                    'component': component_name
                }
            )
        return self._logger

    def log_operation_start(self, operation: str, **context) -> None:
        """Log the start of an operation with context."""
        self.logger.debug(
            f"Starting {operation}",
            extra={
                'extra_fields': {
                    'operation': operation,
                    'operation_status': 'started',
                    **context
                }
            }
        )

    def log_operation_success(self, operation: str, duration_ms: float, **context) -> None:
        """Log successful completion of an operation."""
        self.logger.info(
            f"Completed {operation} in {duration_ms:.2f}ms",
            extra={
                'extra_fields': {
                    'operation': operation,
                    'operation_status': 'completed',
                    'duration_ms': duration_ms,
                    **context
                }
            }
        )

    def log_operation_error(self, operation: str, error: Exception, duration_ms: float, **context) -> None:
        """Log operation failure with error details."""
        self.logger.error(
            f"Failed {operation} after {duration_ms:.2f}ms: {str(error)}",
            extra={
                'extra_fields': {
                    'operation': operation,
                    'operation_status': 'failed',
                    'duration_ms': duration_ms,
                    'error_type': type(error).__name__,
                    'error_message': str(error),
                    **context
                }
            }
        )


def log_retrieval_operation(operation_name: str):
    """Decorator to log retrieval operations with timing and error handling.

    Works for both plain methods and coroutine methods.

    Args:
        operation_name: Name of the operation being logged

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(self, *args, **kwargs):
                start_time = time.perf_counter()
                self.log_operation_start(operation_name)
                try:
                    result = await func(self, *args, **kwargs)
                except Exception as e:
                    self.log_operation_error(operation_name, e, (time.perf_counter() - start_time) * 1000)
                    raise
                self.log_operation_success(operation_name, (time.perf_counter() - start_time) * 1000)
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.perf_counter()
            self.log_operation_start(operation_name)
            try:
                result = func(self, *args, **kwargs)
            except Exception as e:
                self.log_operation_error(operation_name, e, (time.perf_counter() - start_time) * 1000)
                raise
            self.log_operation_success(operation_name, (time.perf_counter() - start_time) * 1000)
            return result

        return wrapper
    return decorator


class RetrievalMetricsLogger:
    """Specialized logger for catalog retrieval metrics."""

    def __init__(self, component_name: str):
        """Initialize metrics logger.

        Args:
            component_name: Name of the component generating metrics
        """
        self.component_name = component_name
        self.logger = get_logger(
            f"{RETRIEVAL_LOGGER_NAME}.metrics",
            context={
                'pipeline': 'catalog_retrieval',
                'metrics_logger': True
            }
        )

    def log_cache_operation(
        self,
        cache_name: str,
        operation: str,  # "hit", "miss", "set", "evict", "expire", "sweep", "clear"
        cache_size: Optional[int] = None,
        hit_rate: Optional[float] = None,
        removed: Optional[int] = None
    ) -> None:
        """Log cache operations."""
        self.logger.debug(
            f"Cache {cache_name} {operation}",
            extra={
                'extra_fields': {
                    'metric_type': 'cache_operation',
                    'component': self.component_name,
                    'cache_name': cache_name,
                    'cache_operation': operation,
                    'cache_size': cache_size,
                    'hit_rate': hit_rate,
                    'removed': removed
                }
            }
        )

    def log_search_results(
        self,
        results_count: int,
        search_time_ms: float,
        pool_size: int,
        limit: int,
        filters_applied: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log catalog vector search results."""
        self.logger.info(
            "Catalog search completed",
            extra={
                'extra_fields': {
                    'metric_type': 'search_results',
                    'component': self.component_name,
                    'results_count': results_count,
                    'search_time_ms': search_time_ms,
                    'pool_size': pool_size,
                    'limit': limit,
                    'filters_applied': filters_applied or {}
                }
            }
        )

    def log_rescoring(
        self,
        candidate_count: int,
        attributes_used: Dict[str, Any],
        top_score: Optional[float] = None
    ) -> None:
        """Log soft rescoring results."""
        self.logger.info(
            "Rescoring completed",
            extra={
                'extra_fields': {
                    'metric_type': 'rescoring',
                    'component': self.component_name,
                    'candidate_count': candidate_count,
                    'attributes_used': attributes_used,
                    'top_score': top_score
                }
            }
        )

    def log_rerank(
        self,
        input_count: int,
        output_count: int,
        rerank_time_ms: float,
        applied: bool
    ) -> None:
        """Log reranking blend results."""
        self.logger.info(
            "Rerank applied" if applied else "Rerank skipped",
            extra={
                'extra_fields': {
                    'metric_type': 'rerank',
                    'component': self.component_name,
                    'input_count': input_count,
                    'output_count': output_count,
                    'rerank_time_ms': rerank_time_ms,
                    'applied': applied
                }
            }
        )

    def log_pipeline_metrics(
        self,
        total_time_ms: float,
        query_hash: str,
        products_returned: int,
        embedding_cache_hit: bool,
        degradations: int = 0
    ) -> None:
        """Log end-to-end pipeline metrics."""
        self.logger.info(
            "Pipeline completed",
            extra={
                'extra_fields': {
                    'metric_type': 'pipeline_metrics',
                    'component': 'RetrievalPipeline',
                    'query_hash': query_hash,
                    'total_time_ms': total_time_ms,
                    'products_returned': products_returned,
                    'embedding_cache_hit': embedding_cache_hit,
                    'degradations': degradations
                }
            }
        )


def setup_retrieval_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    tenant_id: Optional[str] = None
) -> logging.Logger:
    """Set up logging for the catalog retrieval pipeline.

    Args:
        log_level: Logging level for the retrieval pipeline
        log_file: Optional JSON log file (e.g. logs/catalog_retrieval.log)
        tenant_id: Tenant attached to every record when given

    Returns:
        Logger instance for the retrieval pipeline
    """
    return setup_pipeline_logging(
        pipeline_name="catalog_retrieval",
        log_level=log_level,
        log_file=log_file,
        use_json=True,
        context={'tenant_id': tenant_id} if tenant_id else None
    )


def set_retrieval_log_level(log_level: str) -> None:
    """Set the level of every catalog retrieval logger without touching root handlers."""
    logging.getLogger(RETRIEVAL_LOGGER_NAME).setLevel(getattr(logging, log_level.upper(), logging.INFO))
