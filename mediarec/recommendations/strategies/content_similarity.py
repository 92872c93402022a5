from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence

import numpy as np

from mediarec.recommendations.config import CONTENT_BASED, DEFAULT_STRATEGY_WEIGHTS
from mediarec.recommendations.models import (
    MediaType,
    RankedItem,
    RecommendationContext,
    SearchMatch,
)
from mediarec.recommendations.protocols import NearestNeighborIndex

logger = logging.getLogger(__name__)


class ContentSimilarityStrategy:
    """Ranks content by cosine similarity to a user's preference vector.

    Embeddings are kept here and written through to the nearest-neighbour
    index when one is configured. Lookups go to the index first; an index
    failure or an empty answer falls back to an exhaustive scan over the
    embeddings held here, and the caller never sees the failure.
    """

    name = CONTENT_BASED

    def __init__(
        self,
        default_weight: float = DEFAULT_STRATEGY_WEIGHTS[CONTENT_BASED],
        index: NearestNeighborIndex | None = None,
        min_similarity: float | None = None,
    ) -> None:
        self.default_weight = default_weight
        self._index = index
        self._min_similarity = min_similarity
        self._lock = threading.Lock()
        self._embeddings: dict[str, np.ndarray] = {}
        self._media_types: dict[str, MediaType] = {}
        self._preferences: dict[str, np.ndarray] = {}

    def add_content_embedding(
        self,
        content_id: str,
        embedding: Sequence[float],
        media_type: MediaType = MediaType.MOVIE,
    ) -> None:
        vector = np.asarray(embedding, dtype=np.float32)
        with self._lock:
            self._embeddings[content_id] = vector
            self._media_types[content_id] = media_type
        if self._index is None or vector.size == 0:
            return
        try:
            self._index.add(content_id, vector.tolist(), media_type)
        except Exception:
            logger.warning(
                "Could not write embedding for content %s to the index",
                content_id,
                exc_info=True,
            )

    def update_user_preferences(self, user_id: str, vector: Sequence[float]) -> None:
        preference = np.asarray(vector, dtype=np.float32)
        with self._lock:
            self._preferences[user_id] = preference

    async def get_rankings(
        self,
        user_id: str,
        limit: int,
        context: RecommendationContext | None = None,
    ) -> list[RankedItem]:
        if limit <= 0:
            return []
        with self._lock:
            preference = self._preferences.get(user_id)
        if preference is None or preference.size == 0:
            return []

        if self._index is not None:
            try:
                matches = await asyncio.to_thread(
                    self._index.search,
                    preference.tolist(),
                    limit,
                    self._min_similarity,
                )
                if matches:
                    return self._to_ranked(matches[:limit])
                logger.debug(
                    "Index returned no matches for user '%s'; scanning", user_id
                )
            except Exception:
                logger.warning(
                    "Nearest-neighbour index failed for user '%s'; "
                    "falling back to linear scan",
                    user_id,
                    exc_info=True,
                )
        return self._to_ranked(self._linear_scan(preference, limit))

    def _linear_scan(self, preference: np.ndarray, limit: int) -> list[SearchMatch]:
        with self._lock:
            candidates = [
                (content_id, vector)
                for content_id, vector in self._embeddings.items()
                if vector.shape == preference.shape
            ]
        if not candidates:
            return []

        matrix = np.stack([vector for _, vector in candidates])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(preference)
        dots = matrix @ preference
        similarities = np.divide(
            dots, norms, out=np.zeros_like(dots), where=norms > 0
        )

        matches = [
            SearchMatch(content_id=content_id, similarity=float(sim), distance=1.0 - float(sim))
            for (content_id, _), sim in zip(candidates, similarities)
            if self._min_similarity is None or sim >= self._min_similarity
        ]
        matches.sort(key=lambda m: (-m.similarity, m.content_id))
        return matches[:limit]

    def _to_ranked(self, matches: list[SearchMatch]) -> list[RankedItem]:
        with self._lock:
            media_types = dict(self._media_types)
        return [
            RankedItem(
                content_id=match.content_id,
                media_type=media_types.get(match.content_id, MediaType.MOVIE),
                rank=position,
                score=min(1.0, max(0.0, match.similarity)),
                strategy_name=self.name,
            )
            for position, match in enumerate(matches, start=1)
        ]
