from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from mediarec.errors import InvalidConfigurationError
from mediarec.recommendations.protocols import RecommendationStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyRegistration:
    strategy: RecommendationStrategy
    weight: float

    @property
    def name(self) -> str:
        return self.strategy.name


def _validate_weight(name: str, weight: float) -> float:
    try:
        value = float(weight)
    except (TypeError, ValueError) as exc:
        raise InvalidConfigurationError(
            f"Weight for strategy '{name}' is not a number: {weight!r}"
        ) from exc
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise InvalidConfigurationError(
            f"Weight for strategy '{name}' must be within [0, 1], got {value}"
        )
    return value


class StrategyRegistry:
    """Process-wide name → {strategy, weight} table.

    Writers build a new mapping and swap it in under a lock; readers take the
    current mapping once per request. A request therefore sees either the old
    or the new weight set, never a mix.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Mapping[str, StrategyRegistration] = MappingProxyType({})

    def snapshot(self) -> Mapping[str, StrategyRegistration]:
        return self._entries

    def weights(self) -> dict[str, float]:
        return {name: reg.weight for name, reg in self._entries.items()}

    def names(self) -> list[str]:
        return list(self._entries)

    def get(self, name: str) -> StrategyRegistration | None:
        return self._entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, strategy: RecommendationStrategy, weight: float | None = None) -> None:
        if not isinstance(strategy, RecommendationStrategy):
            raise InvalidConfigurationError(
                f"{type(strategy).__name__} does not implement RecommendationStrategy"
            )
        name = strategy.name
        if not name:
            raise InvalidConfigurationError("Strategy name must not be empty")
        value = _validate_weight(
            name, strategy.default_weight if weight is None else weight
        )
        with self._lock:
            entries = dict(self._entries)
            if name in entries:
                logger.info("Replacing registered strategy '%s'", name)
            entries[name] = StrategyRegistration(strategy=strategy, weight=value)
            self._entries = MappingProxyType(entries)
        logger.info("Registered strategy '%s' (weight=%.3f)", name, value)

    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._entries:
                return False
            entries = dict(self._entries)
            del entries[name]
            self._entries = MappingProxyType(entries)
        logger.info("Removed strategy '%s'", name)
        return True

    def update_weights(self, weights: Mapping[str, float]) -> None:
        """Apply all weight changes or none of them."""
        with self._lock:
            unknown = sorted(name for name in weights if name not in self._entries)
            if unknown:
                raise InvalidConfigurationError(
                    f"Unknown strategy name(s): {', '.join(unknown)}"
                )
            validated = {
                name: _validate_weight(name, weight) for name, weight in weights.items()
            }
            entries = dict(self._entries)
            for name, value in validated.items():
                entries[name] = StrategyRegistration(
                    strategy=entries[name].strategy, weight=value
                )
            self._entries = MappingProxyType(entries)
        logger.info(
            "Updated strategy weights: %s",
            ", ".join(f"{n}={w:.3f}" for n, w in validated.items()) or "(none)",
        )
