"""Maximal Marginal Relevance selection over search candidates."""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from polisrag.core.models import SearchCandidate


def cosine_matrix(vectors: Sequence[Sequence[float] | None]) -> np.ndarray:
    """Pairwise cosine similarity. Rows without a vector are similar to nothing."""
    n = len(vectors)
    if n == 0:
        return np.zeros((0, 0))
    dim = max((len(v) for v in vectors if v), default=0)
    if dim == 0:
        return np.zeros((n, n))
    mat = np.zeros((n, dim), dtype=float)
    for i, v in enumerate(vectors):
        if v and len(v) == dim:
            mat[i] = v
    norms = np.linalg.norm(mat, axis=1)
    norms[norms == 0] = 1.0
    unit = mat / norms[:, None]
    return unit @ unit.T


def _by_relevance(candidates: Sequence[SearchCandidate]) -> List[SearchCandidate]:
    # sorted() is stable, so equal similarities keep input order
    return sorted(candidates, key=lambda c: c.similarity, reverse=True)


def mmr_select(candidates: Sequence[SearchCandidate], k: int, lambda_: float = 0.7) -> List[SearchCandidate]:
    """Greedy MMR: repeatedly take the candidate maximising
    λ·relevance − (1−λ)·max similarity to anything already selected.

    λ=1 is pure relevance, λ=0 pure diversity. When k covers every candidate
    the input is returned ordered by relevance. Ties go to the earlier input.
    """
    lambda_ = min(1.0, max(0.0, float(lambda_)))
    if k <= 0 or not candidates:
        return []
    if k >= len(candidates):
        return _by_relevance(candidates)

    relevance = np.array([c.similarity for c in candidates], dtype=float)
    sims = cosine_matrix([c.vector for c in candidates])

    selected: list[int] = []
    remaining = list(range(len(candidates)))
    while len(selected) < k and remaining:
        best_idx = remaining[0]
        best_score = -np.inf
        for i in remaining:
            max_sim = float(sims[i, selected].max()) if selected else 0.0
            score = lambda_ * relevance[i] - (1 - lambda_) * max_sim
            if score > best_score:
                best_score = score
                best_idx = i
        selected.append(best_idx)
        remaining.remove(best_idx)

    return [candidates[i] for i in selected]
