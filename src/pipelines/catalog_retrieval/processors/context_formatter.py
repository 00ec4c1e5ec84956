"""
Context Formatter for the catalog retrieval pipeline.

This module turns the final product ranking into the grounding text handed
to the language model, plus the structured ``sources`` list and diagnostic
counts. Output is localized (English or Spanish) and limited to the
configured number of products.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Sequence

from ..logging import RetrievalLoggerMixin, log_retrieval_operation
from ..models import SourceItem, TopProduct

if TYPE_CHECKING:
    from ..scoring.rescorer import RankedResult

SUPPORTED_LANGUAGES = ("en", "es")

HEADERS = {
    "en": "AVAILABLE PRODUCTS IN CATALOG:",
    "es": "PRODUCTOS DISPONIBLES EN EL CATÁLOGO:",
}

EMPTY_MESSAGES = {
    "en": "No products found in the catalog.",
    "es": "No se encontraron productos en el catálogo.",
}

TOP_PRODUCTS_PREVIEW = 3


@dataclass(frozen=True)
class FormatterConfig:
    """Configuration for context formatting."""

    context_product_count: int = 8
    language: str = "es"

    def __post_init__(self):
        if self.language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"language must be one of {SUPPORTED_LANGUAGES}, got {self.language!r}")
        if self.context_product_count < 1:
            raise ValueError(f"context_product_count must be at least 1, got {self.context_product_count}")


@dataclass
class FormattedContext:
    """Formatted text and structured views of the displayed products."""

    content: str
    sources: List[SourceItem] = field(default_factory=list)
    top_products: List[TopProduct] = field(default_factory=list)
    counts_by_category: Dict[str, int] = field(default_factory=dict)
    counts_by_type: Dict[str, int] = field(default_factory=dict)


class ContextFormatter(RetrievalLoggerMixin):
    """
    Formats ranked products into a numbered, LLM-readable product list.

    Each block reads::

        1. Trail Runner
           SKU: SKU-1
           Lightweight running shoe
           Category: shoes | Brand: Acme | Color: red | Sizes: 9, 10 | Price: $89.99 | In Stock
    """

    def __init__(self, config: FormatterConfig):
        self.config = config

    @log_retrieval_operation("context_formatting")
    def format(self, results: Sequence["RankedResult"]) -> FormattedContext:
        """
        Format the final ranking.

        Args:
            results: Availability-filtered ranking, best first

        Returns:
            FormattedContext for the first ``context_product_count`` results;
            category/type counts cover the whole ranking
        """
        displayed = list(results[:self.config.context_product_count])

        if displayed:
            blocks = [self._format_block(index, result) for index, result in enumerate(displayed, start=1)]
            content = f"{HEADERS[self.config.language]}\n\n" + "\n\n".join(blocks)
        else:
            content = EMPTY_MESSAGES[self.config.language]

        sources = [
            SourceItem(
                id=result.candidate.id,
                title=result.candidate.title,
                score=result.final_score,
                type="product",
                attributes=dict(result.candidate.attributes),
                in_stock=result.candidate.in_stock
            )
            for result in displayed
        ]

        top_products = [
            TopProduct(id=result.candidate.id, title=result.candidate.title, score=result.final_score)
            for result in results[:TOP_PRODUCTS_PREVIEW]
        ]

        categories = Counter(
            str(result.candidate.attributes.get("category") or "uncategorized") for result in results
        )

        return FormattedContext(
            content=content,
            sources=sources,
            top_products=top_products,
            counts_by_category=dict(categories),
            counts_by_type={"product": len(results)} if results else {}
        )

    def _format_block(self, index: int, result: "RankedResult") -> str:
        candidate = result.candidate
        return (
            f"{index}. {candidate.title}\n"
            f"   SKU: {candidate.id}\n"
            f"   {candidate.description}\n"
            f"   {' | '.join(self._attribute_parts(candidate.attributes, candidate.price, candidate.in_stock))}"
        )

    @staticmethod
    def _attribute_parts(attributes: Dict[str, Any], price: Any, in_stock: Any) -> List[str]:
        parts = []
        for key, label in (("category", "Category"), ("brand", "Brand"), ("color", "Color"), ("material", "Material")):
            if attributes.get(key):
                parts.append(f"{label}: {attributes[key]}")

        sizes = attributes.get("size")
        if isinstance(sizes, (list, tuple)):
            if sizes:
                parts.append(f"Sizes: {', '.join(str(size) for size in sizes)}")
        elif sizes:
            parts.append(f"Sizes: {sizes}")

        if price is not None:
            parts.append(f"Price: ${price:.2f}")
        if in_stock is not None:
            parts.append("In Stock" if in_stock else "Out of Stock")
        return parts
