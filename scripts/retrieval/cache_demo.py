#!/usr/bin/env python3
"""
Catalog Retrieval Cache Demo

Runs the retrieval pipeline against a small in-memory catalog with offline
stand-in providers, then repeats the same queries to show the embedding and
attribute caches absorbing the second round of provider calls.

Usage:
    python scripts/retrieval/cache_demo.py [--language en|es] [--log-level INFO] [--log-file logs/catalog_retrieval.log]
"""

import argparse
import asyncio
import hashlib
import math
import re
from typing import Any, Dict, List, Mapping, Sequence

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from src.pipelines.catalog_retrieval import RetrievalConfig, RetrievalOptions, RetrievalPipeline
from src.pipelines.catalog_retrieval.processors.attribute_extractor import AttributeExtractor
from src.pipelines.catalog_retrieval.processors.context_formatter import FormatterConfig
from src.pipelines.catalog_retrieval.processors.embedding_service import EmbeddingConfig, EmbeddingProvider
from src.pipelines.catalog_retrieval.search import InMemoryCatalogSearcher
from src.pipelines.catalog_retrieval.logging import setup_retrieval_logging
from src.utils.logging import get_logger

load_dotenv()

console = Console()
logger = get_logger(__name__)

DIMENSION = 64
TENANT = "demo-store"

COLORS = {"red": "red", "rojo": "red", "rojas": "red", "rojos": "red", "blue": "blue", "azul": "blue", "black": "black", "negro": "black"}
CATEGORIES = {"shoes": "shoes", "zapatillas": "shoes", "sneakers": "shoes", "jacket": "jackets", "chaqueta": "jackets"}


def keyword_vector(text: str) -> List[float]:
    """Hash each token into a fixed-size bag-of-words vector."""
    vector = [0.0] * DIMENSION
    for token in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % DIMENSION
        vector[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Offline embedding provider that counts its calls."""

    name = "keyword"

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str, model: str) -> List[float]:
        self.calls += 1
        await asyncio.sleep(0.05)  # simulated network latency
        return keyword_vector(text)


class KeywordAttributeExtractor(AttributeExtractor):
    """Offline attribute extractor that recognizes a few colors and categories."""

    def __init__(self):
        self.calls = 0

    async def extract(self, text: str, allowed_fields: Sequence[str]) -> Mapping[str, Any]:
        self.calls += 1
        await asyncio.sleep(0.05)
        tokens = re.findall(r"\w+", text.lower())
        attributes: Dict[str, Any] = {}
        for token in tokens:
            if token in COLORS:
                attributes.setdefault("color", COLORS[token])
            if token in CATEGORIES:
                attributes.setdefault("category", CATEGORIES[token])
        match = re.search(r"(?:under|menos de)\s*\$?(\d+)", text.lower())
        if match:
            attributes["priceMax"] = match.group(1)
        return attributes


def build_catalog() -> List[Dict[str, Any]]:
    products = [
        ("SKU-100", "Trail Runner", "Lightweight running shoes for trails", "shoes", "red", 89.99, True, 0.8),
        ("SKU-101", "City Sneaker", "Everyday running sneakers", "shoes", "blue", 69.0, True, 0.6),
        ("SKU-102", "Marathon Pro", "Racing running shoes", "shoes", "red", 149.0, False, 0.9),
        ("SKU-200", "Rain Jacket", "Waterproof jacket for running in the rain", "jackets", "black", 120.0, True, 0.4),
        ("SKU-201", "Wind Shell", "Packable running jacket", "jackets", "red", 95.0, True, 0.3),
    ]
    return [
        {
            "sku": sku,
            "tenant_id": TENANT,
            "title": title,
            "description": description,
            "category": category,
            "color": color,
            "size": ["40", "41", "42"] if category == "shoes" else ["S", "M", "L"],
            "price": price,
            "in_stock": in_stock,
            "popularity": popularity,
            "ctr": popularity / 10,
            "sales": int(popularity * 500),
            "embedding": keyword_vector(f"{title} {description} {category} {color}"),
        }
        for sku, title, description, category, color, price, in_stock, popularity in products
    ]


def print_cache_stats(pipeline: RetrievalPipeline, title: str) -> None:
    stats = pipeline.get_cache_stats()
    table = Table(title=title)
    table.add_column("Cache", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Hits", justify="right", style="green")
    table.add_column("Misses", justify="right", style="red")
    table.add_column("Hit rate", justify="right")
    for name, tier in (("embeddings", stats.embeddings), ("attributes", stats.attributes)):
        table.add_row(name, f"{tier.size}/{tier.max_size}", str(tier.hits), str(tier.misses), f"{tier.hit_rate:.2f}")
    console.print(table)


async def run_demo(language: str) -> None:
    embedding_provider = KeywordEmbeddingProvider()
    attribute_extractor = KeywordAttributeExtractor()
    config = RetrievalConfig(
        tenant_id=TENANT,
        embedding_config=EmbeddingConfig(model="keyword-64"),
        formatter_config=FormatterConfig(context_product_count=3, language=language)
    )
    queries = ["red running shoes under 100", "running jacket", "zapatillas rojas"]

    async with RetrievalPipeline(
        config,
        embedding_provider=embedding_provider,
        catalog_searcher=InMemoryCatalogSearcher(build_catalog()),
        attribute_extractor=attribute_extractor
    ) as pipeline:
        for round_number in (1, 2):
            console.rule(f"Round {round_number}")
            for query in queries:
                context = await pipeline.retrieve_context(query, RetrievalOptions())
                console.print(f"[bold]Query:[/bold] {query}")
                console.print(f"[dim]attributes={context.metadata.extracted_attributes} "
                              f"embedding_cache_hit={context.metadata.embedding_cache_hit} "
                              f"latency={context.metadata.latency_ms:.1f}ms[/dim]")
                console.print(pipeline.format_context(context))
                console.print()
            print_cache_stats(pipeline, f"Cache statistics after round {round_number}")

    console.print(
        f"Provider calls: embeddings={embedding_provider.calls}, "
        f"attribute extraction={attribute_extractor.calls} for {len(queries) * 2} requests"
    )
    logger.info(
        "Cache demo finished",
        extra={'extra_fields': {
            'embedding_calls': embedding_provider.calls,
            'extraction_calls': attribute_extractor.calls
        }}
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Catalog retrieval cache demo")
    parser.add_argument("--language", choices=["en", "es"], default="en")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to this file")
    args = parser.parse_args()

    setup_retrieval_logging(log_level=args.log_level, log_file=args.log_file, tenant_id=TENANT)
    asyncio.run(run_demo(args.language))


if __name__ == "__main__":
    main()
