"""
Soft rescoring of catalog candidates.

Vector similarity alone does not know that the user asked for *red* shoes in
size 42. The rescorer adds weighted boosts for attribute matches, price
proximity under the user's budget, and capped business signals (popularity,
click-through rate, log-dampened sales). Scoring is a pure function of the
candidate, the query attributes and the weights.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..logging import RetrievalLoggerMixin, RetrievalMetricsLogger
from ..processors.attribute_extractor import QueryAttributes
from ..search.catalog_searcher import Candidate

MATCHED_ATTRIBUTES: Tuple[str, ...] = ("color", "size", "material", "category", "brand")

PRICE_PROXIMITY_WEIGHT = 0.1
POPULARITY_CAP = 0.2
CTR_CAP = 0.15
SALES_CAP = 0.1


@dataclass(frozen=True)
class RescoringWeights:
    """Per-signal boost weights."""

    color: float = 0.15
    size: float = 0.10
    material: float = 0.10
    category: float = 0.12
    brand: float = 0.08
    popularity: float = 0.05
    ctr: float = 0.10
    sales: float = 0.10

    def __post_init__(self):
        negative = {name: value for name, value in asdict(self).items() if value < 0}
        if negative:
            raise ValueError(f"Rescoring weights must be non-negative: {negative}")

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class RankedResult:
    """A candidate with its rescored, rerank and final scores."""

    candidate: Candidate
    rescored_score: float
    rerank_score: Optional[float] = None
    final_score: Optional[float] = None

    def __post_init__(self):
        if self.final_score is None:
            self.final_score = self.rescored_score

    @property
    def id(self) -> str:
        return self.candidate.id


def ranking_key(result: RankedResult) -> Tuple[float, str]:
    """Sort key: final score descending, then candidate id ascending."""
    return (-result.final_score, result.candidate.id)


def attribute_matches(query_value: Any, candidate_value: Any) -> bool:
    """Case-insensitive equality; list-valued candidate attributes match on any element."""
    if query_value in (None, "") or candidate_value in (None, "", []):
        return False

    wanted = str(query_value).strip().casefold()
    if isinstance(candidate_value, (list, tuple, set)):
        return any(str(item).strip().casefold() == wanted for item in candidate_value)
    return str(candidate_value).strip().casefold() == wanted


def _present(metric: Optional[float]) -> bool:
    # NaN would slip past the caps and break ordering
    return metric is not None and math.isfinite(metric)


def rescore_candidate(
    candidate: Candidate,
    attributes: QueryAttributes,
    weights: RescoringWeights
) -> float:
    """
    Compute the rescored value for one candidate.

    Args:
        candidate: Candidate from vector search
        attributes: Extracted query attributes
        weights: Boost weights

    Returns:
        base score plus attribute, price and business-metric boosts
    """
    score = candidate.base_score

    for name in MATCHED_ATTRIBUTES:
        if attribute_matches(getattr(attributes, name), candidate.attributes.get(name)):
            score += getattr(weights, name)

    price = candidate.price
    if attributes.price_max is not None and attributes.price_max > 0 and price is not None:
        if price <= attributes.price_max:
            score += max(0.0, (1 - price / attributes.price_max) * PRICE_PROXIMITY_WEIGHT)

    metrics = candidate.metrics
    if _present(metrics.popularity):
        score += min(metrics.popularity * weights.popularity, POPULARITY_CAP)
    if _present(metrics.ctr):
        score += min(metrics.ctr * weights.ctr, CTR_CAP)
    if _present(metrics.sales):
        normalized_sales = math.log10(max(metrics.sales, 0.0) + 1) / 10
        score += min(normalized_sales * weights.sales, SALES_CAP)

    return score


def soft_rescore(
    candidates: Iterable[Candidate],
    attributes: QueryAttributes,
    weights: RescoringWeights
) -> List[RankedResult]:
    """Rescore every candidate and return them ranked."""
    results = [
        RankedResult(candidate=candidate, rescored_score=rescore_candidate(candidate, attributes, weights))
        for candidate in candidates
    ]
    results.sort(key=ranking_key)
    return results


class SoftRescorer(RetrievalLoggerMixin):
    """Applies ``soft_rescore`` with a fixed weight table and logs the outcome."""

    def __init__(self, weights: Optional[RescoringWeights] = None):
        self.weights = weights or RescoringWeights()
        self._metrics = RetrievalMetricsLogger("SoftRescorer")

    def rescore(self, candidates: Sequence[Candidate], attributes: QueryAttributes) -> List[RankedResult]:
        ranked = soft_rescore(candidates, attributes, self.weights)
        self._metrics.log_rescoring(
            candidate_count=len(ranked),
            attributes_used=attributes.to_dict(),
            top_score=ranked[0].final_score if ranked else None
        )
        return ranked
