"""Catalog Retrieval Scoring Components.

Soft rescoring of vector-search candidates and the optional reranking blend.
"""

from .rescorer import (
    RankedResult,
    RescoringWeights,
    SoftRescorer,
    rescore_candidate,
    soft_rescore,
)
from .reranker import (
    BaseReranker,
    RerankBlender,
    RerankOutcome,
    RerankerConfig,
    VoyageReranker,
)

__all__ = [
    "RankedResult",
    "RescoringWeights",
    "SoftRescorer",
    "rescore_candidate",
    "soft_rescore",
    "BaseReranker",
    "RerankBlender",
    "RerankOutcome",
    "RerankerConfig",
    "VoyageReranker",
]
