#!/usr/bin/env python3
"""Example: grounding a shopping conversation with catalog retrieval.

Requires VOYAGE_API_KEY, OPENAI_API_KEY and PINECONE_API_KEY (see
.env.example) and a Pinecone index whose records carry ``tenant_id``.
For an offline run see scripts/retrieval/cache_demo.py.
"""

import asyncio

from dotenv import load_dotenv

from src.pipelines.catalog_retrieval import (
    ConfigurationError,
    RetrievalError,
    RetrievalOptions,
    RetrievalPipeline,
)


async def example_retrieval():
    print("=" * 80)
    print("Catalog retrieval for a conversational query")
    print("=" * 80)

    try:
        pipeline = RetrievalPipeline.from_config_file("config/retrieval.yaml")
    except ConfigurationError as e:
        print(f"\nConfiguration incomplete: {e}")
        return

    async with pipeline:
        # Seen twice: the second call is answered from both caches
        for query in ["zapatillas rojas para correr talla 42", "zapatillas rojas para correr talla 42"]:
            try:
                context = await pipeline.retrieve_context(
                    query,
                    RetrievalOptions(filters={"category": "shoes"})
                )
            except RetrievalError as e:
                print(f"\nRetrieval failed: {e}")
                return

            print(f"\nQuery: {query}")
            print(f"Extracted attributes: {context.metadata.extracted_attributes}")
            print(f"Embedding cache hit: {context.metadata.embedding_cache_hit}")
            print(f"Products: {context.metadata.returned_count} of {context.metadata.product_count}")
            for degradation in context.metadata.degradations:
                print(f"  degraded at {degradation.stage}: {degradation.message}")
            print("-" * 80)
            print(pipeline.format_context(context))

        print("\nCache stats:")
        print(pipeline.get_cache_stats().model_dump_json(indent=2))


if __name__ == "__main__":
    load_dotenv()
    asyncio.run(example_retrieval())
