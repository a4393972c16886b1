"""Cosine-similarity scoring and ranking over a user's memories."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from errors import DimensionMismatchError
from models import Memory, SearchResult

DEFAULT_MIN_SCORE = 0.5  # Below this, results are presumed unrelated


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in [-1, 1].

    A zero vector carries no direction, so any comparison with one scores 0.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = np.linalg.norm(va) * np.linalg.norm(vb)
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


def rank(query: Sequence[float], candidates: Sequence[Memory], limit: int) -> list[SearchResult]:
    """Score every candidate against the query and return the top `limit`.

    Sorted by descending score; equal scores keep their input order.
    """
    if not candidates or limit <= 0:
        return []

    for memory in candidates:
        if len(memory.embedding) != len(query):
            raise DimensionMismatchError(len(query), len(memory.embedding))

    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray([m.embedding for m in candidates], dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.zeros(len(candidates))
    nonzero = norms > 0
    scores[nonzero] = np.clip(dots[nonzero] / norms[nonzero], -1.0, 1.0)

    order = np.argsort(-scores, kind="stable")[:limit]
    return [SearchResult(memory=candidates[i], score=float(scores[i])) for i in order]


def filter_by_threshold(
    results: Sequence[SearchResult], min_score: float = DEFAULT_MIN_SCORE
) -> list[SearchResult]:
    """Keep results scoring at least `min_score`, preserving order."""
    return [r for r in results if r.score >= min_score]
