"""
Attribute Extractor for query understanding.

This module extracts structured product attributes (category, color, brand,
size, gender, price range, ...) from natural language queries using an LLM.
Extraction is best-effort enrichment: any failure degrades to an empty,
unconstrained ``QueryAttributes`` and is reported as a degradation event,
never raised to the caller.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import openai
from openai import AsyncOpenAI

from ..cache.ttl_cache import BoundedTTLCache
from ..events import DegradationEvent, STAGE_ATTRIBUTE_EXTRACTION
from ..exceptions import AttributeExtractionError
from ..logging import RetrievalLoggerMixin, log_retrieval_operation

DEFAULT_ATTRIBUTE_FIELDS: Tuple[str, ...] = (
    "category",
    "color",
    "gender",
    "brand",
    "material",
    "size",
    "season",
    "priceMin",
    "priceMax",
)

# Provider field name -> QueryAttributes field name
_FIELD_ALIASES = {
    "category": "category",
    "color": "color",
    "colour": "color",
    "gender": "gender",
    "brand": "brand",
    "material": "material",
    "size": "size",
    "season": "season",
    "pricemin": "price_min",
    "price_min": "price_min",
    "pricemax": "price_max",
    "price_max": "price_max",
}

_FEMALE_TERMS = ("female", "woman", "women", "mujer", "mujeres", "dama", "damas", "femenino", "femenina", "f")
_MALE_TERMS = ("male", "man", "men", "hombre", "hombres", "caballero", "caballeros", "masculino", "m")
_PRICE_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass(frozen=True)
class QueryAttributes:
    """Sparse attribute constraints extracted from a query. ``None`` means unconstrained."""

    category: Optional[str] = None
    color: Optional[str] = None
    brand: Optional[str] = None
    material: Optional[str] = None
    size: Optional[str] = None
    season: Optional[str] = None
    gender: Optional[str] = None  # "M", "F" or "Unisex"
    price_min: Optional[float] = None
    price_max: Optional[float] = None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        """Only the constrained fields."""
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class ExtractorConfig:
    """Configuration for attribute extraction."""

    enabled: bool = True
    llm_model: str = "gpt-4o-mini"
    temperature: float = 0.1
    timeout_seconds: float = 5.0
    allowed_fields: Tuple[str, ...] = DEFAULT_ATTRIBUTE_FIELDS


@dataclass
class AttributeExtraction:
    """Outcome of one extraction request."""

    attributes: QueryAttributes = field(default_factory=QueryAttributes)
    cache_hit: bool = False
    degradation: Optional[DegradationEvent] = None


def normalize_gender(value: Any) -> Optional[str]:
    """Map free-form, English or Spanish gender text onto ``M``, ``F`` or ``Unisex``."""
    text = str(value).strip().lower()
    if not text:
        return None
    if "unisex" in text:
        return "Unisex"
    tokens = re.findall(r"[a-záéíóúñ]+", text)
    # Feminine terms first: "female" and "woman" contain "male" and "man".
    if any(token in _FEMALE_TERMS for token in tokens):
        return "F"
    if any(token in _MALE_TERMS for token in tokens):
        return "M"
    return None


def parse_price(value: Any) -> Optional[float]:
    """Parse numbers or strings such as ``"$1,200.50"``; negative or unparseable gives ``None``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        match = _PRICE_PATTERN.search(str(value).replace(",", ""))
        if match is None:
            return None
        price = float(match.group())
    if price != price or price < 0:  # NaN or negative
        return None
    return price


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = next((item for item in value if item not in (None, "")), None)
    if value is None or isinstance(value, (dict, bool)):
        return None
    text = str(value).strip()
    return text or None


def normalize_attributes(raw: Mapping[str, Any], allowed_fields: Sequence[str] = DEFAULT_ATTRIBUTE_FIELDS) -> QueryAttributes:
    """
    Coerce loosely typed extractor output into ``QueryAttributes``.

    Fields outside ``allowed_fields`` or unknown to ``QueryAttributes`` are dropped.
    """
    allowed = {_FIELD_ALIASES.get(name.lower()) for name in allowed_fields}
    values: Dict[str, Any] = {}

    for raw_key, raw_value in raw.items():
        target = _FIELD_ALIASES.get(str(raw_key).lower())
        if target is None or target not in allowed or target in values:
            continue

        if target == "gender":
            gender_text = _coerce_text(raw_value)
            coerced = normalize_gender(gender_text) if gender_text else None
        elif target in ("price_min", "price_max"):
            coerced = parse_price(raw_value)
        else:
            coerced = _coerce_text(raw_value)

        if coerced is not None:
            values[target] = coerced

    return QueryAttributes(**values)


class AttributeExtractor(ABC):
    """Structured attribute extraction provider contract."""

    @abstractmethod
    async def extract(self, text: str, allowed_fields: Sequence[str]) -> Mapping[str, Any]:
        """
        Return the raw structured record for ``text``.

        Raises:
            AttributeExtractionError: On provider failure or malformed output
        """

    async def aclose(self) -> None:
        """Release extractor resources."""


class OpenAIAttributeExtractor(AttributeExtractor):
    """LLM-backed extractor using OpenAI chat completions in JSON mode."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        client: Optional[AsyncOpenAI] = None
    ):
        self.model = model
        self.temperature = temperature
        self.client = client or AsyncOpenAI(api_key=api_key)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()

    def build_system_prompt(self, allowed_fields: Sequence[str]) -> str:
        return (
            "Extract product attributes from the user message. Return a JSON object "
            f"with only the attributes you can identify from this list: {', '.join(allowed_fields)}. "
            "If an attribute is not mentioned, omit it from the response."
        )

    async def extract(self, text: str, allowed_fields: Sequence[str]) -> Mapping[str, Any]:
        content = None
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.build_system_prompt(allowed_fields)},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
            content = (completion.choices[0].message.content or "{}").strip()

            # Strip markdown code fences some models still add
            if content.startswith("```"):
                content = content.replace("```json", "").replace("```", "").strip()

            extracted = json.loads(content)
        except openai.OpenAIError as e:
            raise AttributeExtractionError(
                f"Attribute extraction request failed: {e}",
                model=self.model
            ) from e
        except json.JSONDecodeError as e:
            raise AttributeExtractionError(
                f"Failed to parse extraction response: {e}",
                model=self.model,
                raw_output=content
            ) from e
        except (IndexError, AttributeError) as e:
            raise AttributeExtractionError(
                f"Unexpected extraction response shape: {e}",
                model=self.model
            ) from e

        if not isinstance(extracted, dict):
            raise AttributeExtractionError(
                f"Extraction response is not a JSON object: {type(extracted).__name__}",
                model=self.model,
                raw_output=content
            )
        return extracted


class AttributeExtractionService(RetrievalLoggerMixin):
    """
    Cache-or-fetch access to query attributes.

    The cache key is the lower-cased, trimmed query. Failed extractions are
    not cached, so a transient provider outage does not pin empty attributes.
    """

    def __init__(
        self,
        extractor: Optional[AttributeExtractor],
        config: ExtractorConfig,
        cache: BoundedTTLCache[str, QueryAttributes]
    ):
        self.extractor = extractor
        self.config = config
        self.cache = cache

    @staticmethod
    def cache_key(query: str) -> str:
        return query.strip().lower()

    @log_retrieval_operation("attribute_extraction")
    async def extract(self, query: str) -> AttributeExtraction:
        """
        Extract attributes for ``query``. Never raises for provider problems.

        Returns:
            AttributeExtraction with the attributes and, on failure, the degradation event
        """
        if not self.config.enabled or self.extractor is None:
            return AttributeExtraction()

        key = self.cache_key(query)
        if self.cache.enabled:
            cached = self.cache.get(key)
            if cached is not None:
                return AttributeExtraction(attributes=cached, cache_hit=True)

        try:
            raw = await asyncio.wait_for(
                self.extractor.extract(query, self.config.allowed_fields),
                timeout=self.config.timeout_seconds
            )
            attributes = normalize_attributes(raw, self.config.allowed_fields)
        except asyncio.TimeoutError:
            return self._degraded(AttributeExtractionError(
                f"Attribute extraction timed out after {self.config.timeout_seconds}s",
                model=self.config.llm_model
            ))
        except AttributeExtractionError as e:
            return self._degraded(e)
        except Exception as e:
            return self._degraded(AttributeExtractionError(
                f"Attribute extraction failed: {e}",
                model=self.config.llm_model
            ))

        if self.cache.enabled:
            self.cache.put(key, attributes)

        self.logger.debug(
            "Attributes extracted",
            extra={'extra_fields': {'attributes': attributes.to_dict()}}
        )
        return AttributeExtraction(attributes=attributes)

    def _degraded(self, error: AttributeExtractionError) -> AttributeExtraction:
        self.logger.warning(
            f"Attribute extraction failed, continuing without attributes: {error.message}",
            extra={'extra_fields': {'error_type': type(error).__name__, **error.details}}
        )
        return AttributeExtraction(
            degradation=DegradationEvent.from_exception(STAGE_ATTRIBUTE_EXTRACTION, error)
        )
