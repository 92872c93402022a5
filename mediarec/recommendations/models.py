"""Records exchanged between strategies, fusion and the orchestrator.

Everything here is created per request and never persisted, except
``PatternRecord`` which is handed to the reasoning bank.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MediaType(StrEnum):
    MOVIE = "movie"
    TV = "tv"


class DeviceType(StrEnum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    TV = "tv"


class RankedItem(BaseModel):
    """One strategy's judgment of one content item.

    ``score`` is strategy-local and not comparable across strategies; fusion
    only looks at ``rank``.
    """

    model_config = ConfigDict(frozen=True)

    content_id: str
    media_type: MediaType = MediaType.MOVIE
    rank: int = Field(ge=1)
    score: float = 0.0
    strategy_name: str


class StrategyContribution(BaseModel):
    strategy_name: str
    weight: float
    rank: int | None = None
    contribution: float = Field(default=0.0, ge=0.0)


class FusedResult(BaseModel):
    content_id: str
    media_type: MediaType = MediaType.MOVIE
    rrf_score: float = Field(default=0.0, ge=0.0)
    strategy_contributions: dict[str, StrategyContribution] = Field(
        default_factory=dict
    )


class MediaContent(BaseModel):
    """Hydrated content record owned by the surrounding application.

    ``runtime`` is in minutes; for TV it is the episode length.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    media_type: MediaType = MediaType.MOVIE
    title: str = ""
    overview: str = ""
    genres: list[str] = Field(default_factory=list)
    release_date: date | None = None
    runtime: int | None = Field(default=None, ge=0)
    popularity: float = 0.0
    vote_average: float = 0.0


class HybridRecommendation(BaseModel):
    content: MediaContent
    final_score: float
    strategy_contributions: dict[str, StrategyContribution]
    reasoning: str


class RecommendationContext(BaseModel):
    """Situational context; ``day_of_week`` follows Python, Monday is 0."""

    hour_of_day: int | None = Field(default=None, ge=0, le=23)
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    device: DeviceType | None = None
    available_time: int | None = Field(default=None, ge=0)
    mood: str | None = None


class RecommendationOptions(BaseModel):
    diversity: bool = False
    diversity_lambda: float | None = Field(default=None, ge=0.0, le=1.0)
    rrf_k: int | None = Field(default=None, ge=0)
    use_cache: bool = True
    record_pattern: bool = True


class WatchEvent(BaseModel):
    user_id: str
    content_id: str
    media_type: MediaType = MediaType.MOVIE
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    device: DeviceType | None = None


class UserSimilarity(BaseModel):
    user_id: str
    similarity: float
    common_items: int


class TrendingItem(BaseModel):
    content_id: str
    media_type: MediaType = MediaType.MOVIE
    popularity_score: float
    velocity_score: float = 0.0
    trending_rank: int = 0


class SearchMatch(BaseModel):
    """A nearest-neighbour hit; higher ``similarity`` is closer."""

    content_id: str
    similarity: float
    distance: float = 0.0


class PatternRecord(BaseModel):
    """Outcome of one request, stored for adaptive weight learning."""

    id: str | None = None
    user_id: str
    dominant_strategy: str
    strategy_weights: dict[str, float] = Field(default_factory=dict)
    context_key: str | None = None
    item_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PatternQuery(BaseModel):
    user_id: str | None = None
    dominant_strategy: str | None = None
    context_key: str | None = None
    limit: int = Field(default=100, ge=1)


class ExplanationFactor(BaseModel):
    strategy_name: str
    rank: int | None
    contribution: float
    share: float
    phrase: str


class RecommendationExplanation(BaseModel):
    content_id: str
    factors: list[ExplanationFactor]
    summary: str
    confidence: float
