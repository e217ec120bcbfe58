"""
Vector similarity primitives used by memory and lore retrieval.

Both functions are total: bad input scores -1 instead of raising.
"""

import math
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

Vector = Sequence[float]


def cosine_similarity(a: Optional[Vector], b: Optional[Vector]) -> float:
    """
    Cosine similarity of two vectors in [-1, 1].

    Returns -1 for missing, empty, mismatched-length or zero vectors.
    """
    if not a or not b or len(a) != len(b):
        return -1.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return -1.0

    score = dot / math.sqrt(norm_a * norm_b)
    if math.isnan(score):
        return -1.0
    # Float error can push identical vectors a hair past 1
    return max(-1.0, min(1.0, score))


def search_top_k(
    query: Optional[Vector],
    items: Sequence[T],
    extractor: Callable[[T], Optional[Vector]],
    k: int = 5,
    threshold: float = 0.5,
) -> List[Tuple[T, float]]:
    """
    Rank ``items`` by similarity to ``query``.

    Items whose extractor yields no vector score -1. Only items scoring at
    least ``threshold`` are kept; ties keep their input order; at most ``k``
    results are returned as ``(item, score)`` pairs.
    """
    if k <= 0:
        return []

    scored = []
    for index, item in enumerate(items):
        vector = extractor(item)
        score = cosine_similarity(query, vector) if vector else -1.0
        if score >= threshold:
            scored.append((score, index, item))

    # sort is stable; the index keeps first-seen ordering for equal scores
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [(item, score) for score, _, item in scored[:k]]
