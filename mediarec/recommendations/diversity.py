"""Maximal Marginal Relevance re-ranking over content embeddings.

Greedy selection: the next item is the one maximising
``λ · relevance − (1 − λ) · max_similarity_to_selected``, where relevance is
the fused score min-max scaled to [0, 1] and similarity is cosine similarity.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

import numpy as np

from mediarec.recommendations.config import DIVERSITY_LAMBDA
from mediarec.recommendations.models import FusedResult

logger = logging.getLogger(__name__)


def _normalized_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray | None:
    try:
        matrix = np.asarray(vectors, dtype=np.float32)
    except ValueError:
        return None
    if matrix.ndim != 2 or matrix.shape[1] == 0:
        return None
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return matrix / (norms + 1e-9)


def _relevance(results: Sequence[FusedResult]) -> np.ndarray:
    scores = np.asarray([r.rrf_score for r in results], dtype=np.float64)
    low, high = scores.min(), scores.max()
    if high - low <= 0:
        return np.ones_like(scores)
    return (scores - low) / (high - low)


class MMRDiversityReranker:
    def __init__(self, lambda_param: float = DIVERSITY_LAMBDA) -> None:
        if not 0.0 <= lambda_param <= 1.0:
            raise ValueError("lambda_param must be between 0 and 1")
        self._lambda = lambda_param

    @property
    def lambda_param(self) -> float:
        return self._lambda

    def rerank(
        self,
        fused: Sequence[FusedResult],
        embeddings: Mapping[str, Sequence[float]],
        limit: int | None = None,
    ) -> list[FusedResult]:
        """Reorder *fused* to reduce redundancy between neighbouring picks.

        The returned list holds the same ``FusedResult`` objects, so
        contribution breakdowns survive re-ranking. When any candidate lacks
        an embedding, or the embeddings disagree on dimension, the input
        order is returned unchanged.
        """
        if not fused:
            return []
        top_k = len(fused) if limit is None else max(0, min(limit, len(fused)))

        missing = [r.content_id for r in fused if r.content_id not in embeddings]
        if missing:
            logger.info(
                "Diversity re-ranking skipped: %d/%d candidate(s) lack embeddings",
                len(missing),
                len(fused),
            )
            return list(fused)[:top_k]

        cand_norms = _normalized_matrix([embeddings[r.content_id] for r in fused])
        if cand_norms is None:
            logger.warning("Diversity re-ranking skipped: inconsistent embeddings")
            return list(fused)[:top_k]

        relevance = _relevance(fused)
        selected: list[int] = []
        remaining = list(range(len(fused)))

        while len(selected) < top_k and remaining:
            if not selected:
                best_idx = remaining[int(np.argmax(relevance[remaining]))]
            else:
                selected_matrix = cand_norms[selected]
                best_idx = remaining[0]
                best_score = float("-inf")
                for idx in remaining:
                    max_sim = float(np.max(selected_matrix @ cand_norms[idx]))
                    mmr_score = (
                        self._lambda * relevance[idx] - (1 - self._lambda) * max_sim
                    )
                    if mmr_score > best_score:
                        best_score = mmr_score
                        best_idx = idx
            selected.append(best_idx)
            remaining.remove(best_idx)

        logger.debug(
            "MMR selected %d of %d candidate(s) (lambda=%.2f)",
            len(selected),
            len(fused),
            self._lambda,
        )
        return [fused[i] for i in selected]


def diversity_metrics(
    results: Sequence[FusedResult],
    embeddings: Mapping[str, Sequence[float]],
) -> dict[str, float | int]:
    """Average pairwise cosine similarity of *results* and its complement."""
    vectors = [embeddings[r.content_id] for r in results if r.content_id in embeddings]
    norms = _normalized_matrix(vectors) if len(vectors) >= 2 else None
    if norms is None:
        return {"average_similarity": 0.0, "diversity_score": 1.0, "pairs": 0}
    sims = norms @ norms.T
    upper = np.triu_indices(len(vectors), k=1)
    average = float(np.mean(sims[upper]))
    return {
        "average_similarity": average,
        "diversity_score": 1.0 - average,
        "pairs": int(len(upper[0])),
    }
