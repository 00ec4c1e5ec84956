"""
Unit tests for attribute extraction.

Tests output normalization (gender, prices, aliases, allowed fields), the
cache-or-fetch service and its degradation to empty attributes.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.pipelines.catalog_retrieval.cache.ttl_cache import BoundedTTLCache, CacheConfig
from src.pipelines.catalog_retrieval.events import STAGE_ATTRIBUTE_EXTRACTION
from src.pipelines.catalog_retrieval.exceptions import AttributeExtractionError
from src.pipelines.catalog_retrieval.processors.attribute_extractor import (
    AttributeExtractionService,
    AttributeExtractor,
    ExtractorConfig,
    OpenAIAttributeExtractor,
    QueryAttributes,
    normalize_attributes,
    normalize_gender,
    parse_price,
)


class StubExtractor(AttributeExtractor):
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result if result is not None else {}
        self.error = error
        self.delay = delay
        self.calls = []

    async def extract(self, text, allowed_fields):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def make_service(extractor, enabled=True, cache_enabled=True, timeout=1.0):
    cache = BoundedTTLCache("attributes", CacheConfig(enabled=cache_enabled, ttl_seconds=1800.0, max_size=500))
    return AttributeExtractionService(extractor, ExtractorConfig(enabled=enabled, timeout_seconds=timeout), cache)


class TestNormalization:
    """Test coercion of loosely typed extractor output."""

    @pytest.mark.parametrize("text,expected", [
        ("female", "F"),
        ("Woman", "F"),
        ("women's", "F"),
        ("mujer", "F"),
        ("Dama", "F"),
        ("femenino", "F"),
        ("f", "F"),
        ("male", "M"),
        ("men", "M"),
        ("Hombre", "M"),
        ("caballero", "M"),
        ("masculino", "M"),
        ("M", "M"),
        ("unisex", "Unisex"),
        ("Unisex adult", "Unisex"),
        ("kids", None),
        ("", None),
    ])
    def test_normalize_gender(self, text, expected):
        assert normalize_gender(text) == expected

    @pytest.mark.parametrize("value,expected", [
        (100, 100.0),
        (49.5, 49.5),
        ("$1,200.50", 1200.50),
        ("under 80 dollars", 80.0),
        ("cheap", None),
        (-5, None),
        (True, None),
        (None, None),
        (float("nan"), None),
    ])
    def test_parse_price(self, value, expected):
        assert parse_price(value) == expected

    def test_normalize_attributes_maps_camel_case_prices(self):
        attributes = normalize_attributes({
            "category": " shoes ",
            "color": "red",
            "gender": "mujer",
            "priceMin": "20",
            "priceMax": "$100",
        })

        assert attributes == QueryAttributes(
            category="shoes", color="red", gender="F", price_min=20.0, price_max=100.0
        )

    def test_unknown_and_empty_fields_dropped(self):
        attributes = normalize_attributes({
            "color": "",
            "mood": "happy",
            "brand": None,
            "material": {"nested": True},
        })

        assert attributes.is_empty()

    def test_list_values_take_first_non_empty(self):
        attributes = normalize_attributes({"size": ["", "42", "43"], "color": []})

        assert attributes.size == "42"
        assert attributes.color is None

    def test_fields_outside_allowed_list_dropped(self):
        attributes = normalize_attributes(
            {"color": "red", "brand": "Acme", "priceMax": 50},
            allowed_fields=("color",)
        )

        assert attributes.to_dict() == {"color": "red"}

    def test_to_dict_omits_unconstrained_fields(self):
        assert QueryAttributes(color="red").to_dict() == {"color": "red"}
        assert QueryAttributes().to_dict() == {}


class TestAttributeExtractionService:
    """Test cache-or-fetch and degradation behavior."""

    @pytest.mark.asyncio
    async def test_extracts_and_caches_by_lowercased_query(self):
        extractor = StubExtractor({"color": "Red", "category": "shoes"})
        service = make_service(extractor)

        first = await service.extract("Red Shoes")
        second = await service.extract("  red shoes ")

        assert first.attributes == QueryAttributes(color="Red", category="shoes")
        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.attributes == first.attributes
        assert extractor.calls == ["Red Shoes"]

    @pytest.mark.asyncio
    async def test_provider_error_degrades_to_empty(self):
        extractor = StubExtractor(error=AttributeExtractionError("bad json", model="gpt-4o-mini"))
        service = make_service(extractor)

        result = await service.extract("red shoes")

        assert result.attributes.is_empty()
        assert result.degradation is not None
        assert result.degradation.stage == STAGE_ATTRIBUTE_EXTRACTION
        assert result.degradation.error_type == "AttributeExtractionError"
        assert result.degradation.message == "bad json"

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        extractor = StubExtractor(error=RuntimeError("provider down"))
        service = make_service(extractor)

        await service.extract("red shoes")
        extractor.error = None
        extractor.result = {"color": "red"}
        result = await service.extract("red shoes")

        assert result.attributes.color == "red"
        assert result.cache_hit is False
        assert len(extractor.calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_empty(self):
        service = make_service(StubExtractor({"color": "red"}, delay=0.5), timeout=0.01)

        result = await service.extract("red shoes")

        assert result.attributes.is_empty()
        assert "timed out" in result.degradation.message

    @pytest.mark.asyncio
    async def test_disabled_extraction_skips_provider(self):
        extractor = StubExtractor({"color": "red"})
        service = make_service(extractor, enabled=False)

        result = await service.extract("red shoes")

        assert result.attributes.is_empty()
        assert result.degradation is None
        assert extractor.calls == []

    @pytest.mark.asyncio
    async def test_missing_extractor_returns_empty(self):
        service = make_service(None)

        result = await service.extract("red shoes")

        assert result.attributes.is_empty()


class TestOpenAIAttributeExtractor:
    """Test the OpenAI JSON-mode extractor with a mocked client."""

    @staticmethod
    def make_client(content):
        client = MagicMock()
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
        client.chat.completions.create = AsyncMock(return_value=completion)
        return client

    @pytest.mark.asyncio
    async def test_parses_json_object(self):
        client = self.make_client('{"color": "red", "priceMax": 100}')
        extractor = OpenAIAttributeExtractor(api_key="test", client=client)

        result = await extractor.extract("red shoes under 100", ["color", "priceMax"])

        assert result == {"color": "red", "priceMax": 100}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.1
        assert "color, priceMax" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_strips_code_fences(self):
        client = self.make_client('```json\n{"brand": "Acme"}\n```')
        extractor = OpenAIAttributeExtractor(api_key="test", client=client)

        assert await extractor.extract("acme", ["brand"]) == {"brand": "Acme"}

    @pytest.mark.asyncio
    async def test_invalid_json_raises_extraction_error(self):
        extractor = OpenAIAttributeExtractor(api_key="test", client=self.make_client("not json"))

        with pytest.raises(AttributeExtractionError) as exc_info:
            await extractor.extract("shoes", ["color"])

        assert exc_info.value.raw_output == "not json"

    @pytest.mark.asyncio
    async def test_non_object_json_raises_extraction_error(self):
        extractor = OpenAIAttributeExtractor(api_key="test", client=self.make_client('["red"]'))

        with pytest.raises(AttributeExtractionError, match="not a JSON object"):
            await extractor.extract("shoes", ["color"])

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client_only(self):
        with patch("src.pipelines.catalog_retrieval.processors.attribute_extractor.AsyncOpenAI") as client_class:
            client_class.return_value.close = AsyncMock()
            owned = OpenAIAttributeExtractor(api_key="test")
            await owned.aclose()

        client_class.assert_called_once_with(api_key="test")
        client_class.return_value.close.assert_awaited_once()

        injected_client = self.make_client("{}")
        injected_client.close = AsyncMock()
        await OpenAIAttributeExtractor(api_key="test", client=injected_client).aclose()

        injected_client.close.assert_not_awaited()
