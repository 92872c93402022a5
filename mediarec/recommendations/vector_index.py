from __future__ import annotations

import logging
import struct
from collections.abc import Sequence

from mediarec.data.repository import Repository
from mediarec.recommendations.models import MediaType, SearchMatch

logger = logging.getLogger(__name__)


class SqliteVecIndex:
    """Nearest-neighbour lookup over content embeddings stored with sqlite-vec."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    # -- vector serialisation ------------------------------------------------

    @staticmethod
    def _serialize_vector(vec: Sequence[float]) -> bytes:
        """Encode a float sequence as a little-endian float32 BLOB."""
        return struct.pack(f"<{len(vec)}f", *vec)

    # -- maintenance ---------------------------------------------------------

    def add(
        self,
        content_id: str,
        embedding: Sequence[float],
        media_type: MediaType = MediaType.MOVIE,
    ) -> None:
        if not embedding:
            logger.warning("Empty embedding for content %s, skipping", content_id)
            return
        self._repo.upsert_content_embedding(
            content_id,
            media_type.value,
            self._serialize_vector(embedding),
            len(embedding),
        )

    def remove(self, content_id: str) -> bool:
        return self._repo.delete_content_embedding(content_id)

    def __len__(self) -> int:
        return self._repo.count_content_embeddings()

    # -- querying ------------------------------------------------------------

    def search(
        self,
        vector: Sequence[float],
        k: int,
        threshold: float | None = None,
    ) -> list[SearchMatch]:
        if k <= 0 or not vector:
            return []
        rows = self._repo.search_content_by_embedding(
            self._serialize_vector(vector), len(vector), k
        )
        matches: list[SearchMatch] = []
        for row in rows:
            if row["cosine_distance"] is None:
                continue
            distance = float(row["cosine_distance"])
            similarity = 1.0 - distance
            if threshold is not None and similarity < threshold:
                continue
            matches.append(
                SearchMatch(
                    content_id=row["content_id"],
                    similarity=similarity,
                    distance=distance,
                )
            )
        return matches
