"""Unit tests for structured logging helpers."""

import json
import logging

import pytest

from src.pipelines.catalog_retrieval.logging import (
    RetrievalLoggerMixin,
    RetrievalMetricsLogger,
    log_retrieval_operation,
)
from src.utils.logging import ContextFilter, JSONFormatter, get_logger


def make_record(message="hello", **extra):
    record = logging.LogRecord("test.logger", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class Component(RetrievalLoggerMixin):
    @log_retrieval_operation("sync_step")
    def sync_step(self, value):
        return value * 2

    @log_retrieval_operation("async_step")
    async def async_step(self, fail=False):
        if fail:
            raise RuntimeError("boom")
        return "done"


class TestJSONFormatter:
    def test_extra_fields_merged_at_top_level(self):
        record = make_record(extra_fields={'tenant_id': 'store-1', 'cache_name': 'embeddings'})

        entry = json.loads(JSONFormatter().format(record))

        assert entry['message'] == "hello"
        assert entry['level'] == "INFO"
        assert entry['tenant_id'] == "store-1"
        assert entry['cache_name'] == "embeddings"

    def test_plain_extra_attributes_included(self):
        entry = json.loads(JSONFormatter().format(make_record(request_id="r-1")))

        assert entry['request_id'] == "r-1"
        assert 'args' not in entry


class TestContextFilter:
    def test_adds_context_without_overwriting(self):
        record = make_record(extra_fields={'component': 'EmbeddingService'})

        assert ContextFilter({'component': 'pipeline', 'tenant_id': 'store-1'}).filter(record) is True
        assert record.extra_fields == {'component': 'EmbeddingService', 'tenant_id': 'store-1'}

    def test_get_logger_attaches_context_once(self):
        name = "tests.logging.dedupe"
        get_logger(name, {'pipeline': 'catalog_retrieval'})
        logger = get_logger(name, {'pipeline': 'catalog_retrieval'})

        assert sum(isinstance(f, ContextFilter) for f in logger.filters) == 1


class TestRetrievalOperationLogging:
    def test_sync_operation_logged(self, caplog):
        caplog.set_level(logging.DEBUG)

        assert Component().sync_step(2) == 4

        statuses = [getattr(r, 'extra_fields', {}).get('operation_status') for r in caplog.records]
        assert statuses == ['started', 'completed']
        assert caplog.records[-1].extra_fields['component'] == 'Component'

    @pytest.mark.asyncio
    async def test_async_failure_logged_and_reraised(self, caplog):
        caplog.set_level(logging.DEBUG)

        with pytest.raises(RuntimeError):
            await Component().async_step(fail=True)

        failure = caplog.records[-1]
        assert failure.levelno == logging.ERROR
        assert failure.extra_fields['operation'] == 'async_step'
        assert failure.extra_fields['error_type'] == 'RuntimeError'

    def test_metrics_logger_emits_structured_record(self, caplog):
        caplog.set_level(logging.INFO)

        RetrievalMetricsLogger("RerankBlender").log_rerank(
            input_count=5, output_count=3, rerank_time_ms=12.5, applied=True
        )

        record = caplog.records[-1]
        assert record.getMessage() == "Rerank applied"
        assert record.extra_fields['metric_type'] == 'rerank'
        assert record.extra_fields['output_count'] == 3
        assert record.extra_fields['pipeline'] == 'catalog_retrieval'
