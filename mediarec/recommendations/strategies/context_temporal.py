from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime

from mediarec.recommendations.config import (
    AVAILABLE_TIME_TOLERANCE,
    CONTEXT_AWARE,
    CONTEXT_HISTORY_CAP,
    CONTEXT_SCORE_DECAY,
    DEFAULT_STRATEGY_WEIGHTS,
    MOOD_ALIGNMENT_BOOST,
    MOOD_GENRES,
)
from mediarec.recommendations.models import (
    DeviceType,
    MediaContent,
    MediaType,
    RankedItem,
    RecommendationContext,
    WatchEvent,
)

logger = logging.getLogger(__name__)


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    if hour < 22:
        return "evening"
    return "night"


def context_key(context: RecommendationContext) -> str:
    """Bucket a context, e.g. ``"evening_weekend_tv"``."""
    parts: list[str] = []
    if context.hour_of_day is not None:
        parts.append(time_of_day(context.hour_of_day))
    if context.day_of_week is not None:
        parts.append("weekend" if context.day_of_week >= 5 else "weekday")
    if context.device is not None:
        parts.append(context.device.value)
    return "_".join(parts)


def resolve_context(
    context: RecommendationContext | None,
    now: datetime,
    default_device: DeviceType = DeviceType.DESKTOP,
) -> RecommendationContext:
    """Fill missing time and device fields from *now* and *default_device*."""
    context = context or RecommendationContext()
    return context.model_copy(
        update={
            "hour_of_day": context.hour_of_day
            if context.hour_of_day is not None
            else now.hour,
            "day_of_week": context.day_of_week
            if context.day_of_week is not None
            else now.weekday(),
            "device": context.device or default_device,
        }
    )


def mood_multiplier(mood: str | None, genres: Iterable[str]) -> float:
    if not mood:
        return 1.0
    wanted = MOOD_GENRES.get(mood.strip().lower())
    if not wanted:
        return 1.0
    matches = len({genre.lower() for genre in genres} & wanted)
    return MOOD_ALIGNMENT_BOOST ** (matches / 2) if matches else 1.0


class ContextAwareStrategy:
    """Learns what a user watches per time-of-day × day-type × device bucket.

    Each bucket keeps at most ``max_items`` content ids, most recently
    reinforced first; the oldest falls off the end. At ranking time content
    known to run longer than the viewer's available time is dropped, and
    genres matching the viewer's mood are boosted.
    """

    name = CONTEXT_AWARE

    def __init__(
        self,
        default_weight: float = DEFAULT_STRATEGY_WEIGHTS[CONTEXT_AWARE],
        max_items: int = CONTEXT_HISTORY_CAP,
        score_decay: float = CONTEXT_SCORE_DECAY,
        default_device: DeviceType = DeviceType.DESKTOP,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.default_weight = default_weight
        self._max_items = max_items
        self._score_decay = score_decay
        self._default_device = default_device
        self._now = now
        self._lock = threading.Lock()
        self._preferences: dict[str, dict[str, list[str]]] = {}
        self._media_types: dict[str, MediaType] = {}
        self._runtimes: dict[str, int] = {}
        self._genres: dict[str, tuple[str, ...]] = {}

    def resolve_context(
        self, context: RecommendationContext | None = None
    ) -> RecommendationContext:
        return resolve_context(context, self._now(), self._default_device)

    def add_content(self, content: MediaContent) -> None:
        with self._lock:
            self._media_types[content.id] = content.media_type
            self._genres[content.id] = tuple(content.genres)
            if content.runtime:
                self._runtimes[content.id] = content.runtime
            else:
                self._runtimes.pop(content.id, None)

    def learn_from_watch_event(self, event: WatchEvent) -> str:
        key = context_key(
            RecommendationContext(
                hour_of_day=event.timestamp.hour,
                day_of_week=event.timestamp.weekday(),
                device=event.device or self._default_device,
            )
        )
        with self._lock:
            self._media_types[event.content_id] = event.media_type
            history = self._preferences.setdefault(event.user_id, {}).setdefault(key, [])
            if event.content_id in history:
                history.remove(event.content_id)
            history.insert(0, event.content_id)
            del history[self._max_items :]
        return key

    def context_preferences(
        self, user_id: str, context: RecommendationContext | None = None
    ) -> list[str]:
        key = context_key(self.resolve_context(context))
        with self._lock:
            return list(self._preferences.get(user_id, {}).get(key, ()))

    async def get_rankings(
        self,
        user_id: str,
        limit: int,
        context: RecommendationContext | None = None,
    ) -> list[RankedItem]:
        if limit <= 0:
            return []
        resolved = self.resolve_context(context)
        preferences = self.context_preferences(user_id, resolved)
        max_runtime = (
            resolved.available_time * AVAILABLE_TIME_TOLERANCE
            if resolved.available_time
            else None
        )

        scored: list[tuple[str, float]] = []
        with self._lock:
            media_types = dict(self._media_types)
            for index, content_id in enumerate(preferences):
                runtime = self._runtimes.get(content_id)
                if max_runtime is not None and runtime is not None and runtime > max_runtime:
                    continue
                score = max(0.0, 1.0 - index * self._score_decay)
                score *= mood_multiplier(resolved.mood, self._genres.get(content_id, ()))
                scored.append((content_id, score))
        # Stable: equal scores keep recency order.
        scored.sort(key=lambda pair: -pair[1])

        return [
            RankedItem(
                content_id=content_id,
                media_type=media_types.get(content_id, MediaType.MOVIE),
                rank=position,
                score=score,
                strategy_name=self.name,
            )
            for position, (content_id, score) in enumerate(scored[:limit], start=1)
        ]
