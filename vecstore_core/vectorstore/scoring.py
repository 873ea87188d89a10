"""
Similarity scoring and top-K ranking.

Scores are raw cosine similarity in [-1.0, 1.0]; they are not remapped to
[0, 1]. Stores holding non-negative embeddings therefore only ever report
scores in [0, 1].

Search is brute force: every filtered candidate is scored, so a query costs
O(candidates x dimensions). Candidates are stacked into one numpy matrix and
scored in a single pass; there is no index to speed this up.
"""

from typing import Iterable, List, Sequence, Tuple

import numpy as np

from vecstore_core.errors import DimensionMismatchError


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of query against every row of matrix.

    Rows (or a query) with zero norm score 0.0. Results are clipped to
    [-1.0, 1.0] so floating point rounding cannot push them outside the range.
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    dots = m @ q
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    scores = np.zeros(len(m), dtype=np.float64)
    nonzero = norms > 0.0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return np.clip(scores, -1.0, 1.0)


def cosine_similarity(query: Sequence[float], candidate: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors of equal length.

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(query) != len(candidate):
        raise DimensionMismatchError(len(query), len(candidate), context="candidate vector")
    return float(cosine_scores(query, np.asarray([candidate]))[0])


def check_dimensions(query: Sequence[float], expected: int) -> None:
    """Validate a query vector once per search, before any candidate is scored."""
    if len(query) != expected:
        raise DimensionMismatchError(expected, len(query), context="query vector")


def rank_scores(
    query: Sequence[float],
    candidates: Iterable[Tuple[str, Sequence[float]]],
    top_k: int,
) -> List[Tuple[str, float]]:
    """
    Score candidates and keep the best top_k.

    Args:
        query: The query vector
        candidates: (id, embedding) pairs
        top_k: Number of results to keep

    Returns:
        (id, score) pairs, highest score first, equal scores by id ascending
    """
    ids = []
    rows = []
    for id, embedding in candidates:
        if len(embedding) != len(query):
            raise DimensionMismatchError(len(query), len(embedding), context="candidate vector")
        ids.append(id)
        rows.append(embedding)
    if not ids:
        return []

    scores = cosine_scores(query, np.vstack(rows))
    negated = -scores
    if top_k < len(ids):
        # Everything scoring at least the k-th best, ties included
        cutoff = np.partition(negated, top_k - 1)[top_k - 1]
        keep = np.flatnonzero(negated <= cutoff)
    else:
        keep = range(len(ids))
    order = sorted(keep, key=lambda i: (negated[i], ids[i]))[:top_k]
    return [(ids[i], float(scores[i])) for i in order]


__all__ = ["cosine_scores", "cosine_similarity", "check_dimensions", "rank_scores"]
