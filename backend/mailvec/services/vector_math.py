"""Vector math for comparing embeddings."""

import math
from typing import Sequence

from mailvec.services.errors import DimensionMismatch


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


def magnitude(vector: Sequence[float]) -> float:
    """Euclidean length of a vector."""
    return math.sqrt(sum(x * x for x in vector))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two equal-length vectors.

    A zero vector on either side is maximally dissimilar to everything,
    so the result is 0.0 rather than NaN.

    Raises:
        DimensionMismatch: if the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    magnitude_a = magnitude(a)
    magnitude_b = magnitude(b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return dot(a, b) / (magnitude_a * magnitude_b)
