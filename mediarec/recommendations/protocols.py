from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from mediarec.recommendations.models import (
    MediaContent,
    MediaType,
    PatternQuery,
    PatternRecord,
    RankedItem,
    RecommendationContext,
    SearchMatch,
    TrendingItem,
)


@runtime_checkable
class RecommendationStrategy(Protocol):
    name: str
    default_weight: float

    async def get_rankings(
        self,
        user_id: str,
        limit: int,
        context: RecommendationContext | None = None,
    ) -> list[RankedItem]: ...


@runtime_checkable
class ContentSource(Protocol):
    def resolve(self, content_id: str) -> MediaContent | None: ...


@runtime_checkable
class QueryCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def clear(self) -> int: ...

    def get_statistics(self) -> dict[str, Any]: ...


@runtime_checkable
class NearestNeighborIndex(Protocol):
    def add(
        self,
        content_id: str,
        embedding: Sequence[float],
        media_type: MediaType = MediaType.MOVIE,
    ) -> None: ...

    def search(
        self,
        vector: Sequence[float],
        k: int,
        threshold: float | None = None,
    ) -> list[SearchMatch]: ...


@runtime_checkable
class ReasoningBank(Protocol):
    def store_pattern(self, record: PatternRecord) -> str: ...

    def find_similar_patterns(self, query: PatternQuery) -> list[PatternRecord]: ...


@runtime_checkable
class TrendingSource(Protocol):
    async def fetch_trending(self) -> list[TrendingItem]: ...


@runtime_checkable
class EmbeddingConsumer(Protocol):
    """A strategy that keeps its own copy of content embeddings."""

    def add_content_embedding(
        self,
        content_id: str,
        embedding: Sequence[float],
        media_type: MediaType = MediaType.MOVIE,
    ) -> None: ...


@runtime_checkable
class ContentConsumer(Protocol):
    """A strategy that reads content metadata such as runtime and genres."""

    def add_content(self, content: MediaContent) -> None: ...
