"""Category scorer: nearest-centroid style matching over labeled embeddings."""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from mailvec.services.vector_math import cosine_similarity


@dataclass(frozen=True)
class LabeledEmbedding:
    """An embedding from an already classified email."""
    embedding: Sequence[float]
    category_id: int


@dataclass(frozen=True)
class CategoryMatch:
    """Best category for a query embedding."""
    category_id: int
    confidence: float


def find_best_category(
    query: Sequence[float],
    labeled: Iterable[LabeledEmbedding],
) -> Optional[CategoryMatch]:
    """Pick the category whose labeled embeddings are most similar on average.

    Every labeled embedding is compared to ``query``; scores are averaged per
    category and the highest mean wins. Equal means resolve to the lowest
    category id. Returns None when there is nothing labeled yet.
    """
    totals: dict[int, float] = {}
    counts: dict[int, int] = {}

    for item in labeled:
        similarity = cosine_similarity(query, item.embedding)
        totals[item.category_id] = totals.get(item.category_id, 0.0) + similarity
        counts[item.category_id] = counts.get(item.category_id, 0) + 1

    best: Optional[CategoryMatch] = None
    for category_id in sorted(totals):
        mean = totals[category_id] / counts[category_id]
        if best is None or mean > best.confidence:
            best = CategoryMatch(category_id=category_id, confidence=mean)

    return best
