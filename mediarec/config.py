"""Configuration management for the recommendation engine."""

from __future__ import annotations

import json
import math
import os
from enum import StrEnum
from pathlib import Path
from typing import Any

from mediarec.recommendations.config import (
    DEFAULT_STRATEGY_WEIGHTS,
    DIVERSITY_LAMBDA,
    FANOUT_DEADLINE,
    MAX_RANKING_LIMIT,
    OVERFETCH_FACTOR,
    RESULT_CACHE_TTL,
    RRF_K,
    STRATEGY_TIMEOUT,
)

_CONFIG_VERSION = 1


def _default_config_path() -> Path:
    """Get default config file path under XDG_CONFIG_HOME."""
    config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_home / "mediarec" / "config.json"


class CacheBackend(StrEnum):
    MEMORY = "memory"
    REDIS = "redis"
    NONE = "none"


class Config:
    """Engine configuration with persistence."""

    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path or _default_config_path()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Load config from disk or return defaults."""
        if not self._path.exists():
            return self._defaults()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return self._defaults()
        if not isinstance(data, dict) or data.get("version") != _CONFIG_VERSION:
            return self._defaults()
        return {**self._defaults(), **data}

    def _defaults(self) -> dict[str, Any]:
        """Return default configuration."""
        return {
            "version": _CONFIG_VERSION,
            "rrf_k": int(os.getenv("MEDIAREC_RRF_K", str(RRF_K))),
            "overfetch_factor": int(
                os.getenv("MEDIAREC_OVERFETCH_FACTOR", str(OVERFETCH_FACTOR))
            ),
            "max_ranking_limit": int(
                os.getenv("MEDIAREC_MAX_RANKING_LIMIT", str(MAX_RANKING_LIMIT))
            ),
            "strategy_timeout": float(
                os.getenv("MEDIAREC_STRATEGY_TIMEOUT", str(STRATEGY_TIMEOUT))
            ),
            "fanout_deadline": float(
                os.getenv("MEDIAREC_FANOUT_DEADLINE", str(FANOUT_DEADLINE))
            ),
            "result_cache_ttl": int(
                os.getenv("MEDIAREC_RESULT_CACHE_TTL", str(RESULT_CACHE_TTL))
            ),
            "diversity_enabled": os.getenv("MEDIAREC_DIVERSITY_ENABLED", "false").lower()
            == "true",
            "diversity_lambda": DIVERSITY_LAMBDA,
            "strategy_weights": dict(DEFAULT_STRATEGY_WEIGHTS),
            "cache_backend": os.getenv(
                "MEDIAREC_CACHE_BACKEND", CacheBackend.MEMORY.value
            ),
            "redis_url": os.getenv("MEDIAREC_REDIS_URL", "redis://localhost:6379/0"),
            "db_path": os.getenv("MEDIAREC_DB_PATH", ""),
            "log_level": os.getenv("MEDIAREC_LOG_LEVEL", "INFO"),
        }

    def save(self) -> None:
        """Persist config to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError:
            pass  # silently fail – not critical

    # -- Getters --

    @property
    def rrf_k(self) -> int:
        return int(self._data.get("rrf_k", RRF_K))

    @property
    def overfetch_factor(self) -> int:
        return int(self._data.get("overfetch_factor", OVERFETCH_FACTOR))

    @property
    def max_ranking_limit(self) -> int:
        return int(self._data.get("max_ranking_limit", MAX_RANKING_LIMIT))

    @property
    def strategy_timeout(self) -> float:
        return float(self._data.get("strategy_timeout", STRATEGY_TIMEOUT))

    @property
    def fanout_deadline(self) -> float:
        return float(self._data.get("fanout_deadline", FANOUT_DEADLINE))

    @property
    def result_cache_ttl(self) -> int:
        return int(self._data.get("result_cache_ttl", RESULT_CACHE_TTL))

    @property
    def diversity_enabled(self) -> bool:
        return bool(self._data.get("diversity_enabled", False))

    @property
    def diversity_lambda(self) -> float:
        return float(self._data.get("diversity_lambda", DIVERSITY_LAMBDA))

    @property
    def strategy_weights(self) -> dict[str, float]:
        raw = self._data.get("strategy_weights")
        if not isinstance(raw, dict):
            return dict(DEFAULT_STRATEGY_WEIGHTS)
        return {str(name): float(weight) for name, weight in raw.items()}

    @property
    def cache_backend(self) -> CacheBackend:
        val = self._data.get("cache_backend", CacheBackend.MEMORY.value)
        try:
            return CacheBackend(val)
        except ValueError:
            return CacheBackend.MEMORY

    @property
    def redis_url(self) -> str:
        return str(self._data.get("redis_url", "redis://localhost:6379/0"))

    @property
    def db_path(self) -> str:
        return str(self._data.get("db_path", ""))

    @property
    def log_level(self) -> str:
        return str(self._data.get("log_level", "INFO")).upper()

    # -- Setters --

    def set_rrf_k(self, value: int) -> None:
        self._data["rrf_k"] = max(0, int(value))

    def set_overfetch_factor(self, value: int) -> None:
        self._data["overfetch_factor"] = max(1, int(value))

    def set_max_ranking_limit(self, value: int) -> None:
        self._data["max_ranking_limit"] = max(1, int(value))

    def set_strategy_timeout(self, value: float) -> None:
        self._data["strategy_timeout"] = max(0.01, float(value))

    def set_fanout_deadline(self, value: float) -> None:
        self._data["fanout_deadline"] = max(0.01, float(value))

    def set_result_cache_ttl(self, value: int) -> None:
        self._data["result_cache_ttl"] = max(0, int(value))

    def set_diversity_enabled(self, value: bool) -> None:
        self._data["diversity_enabled"] = bool(value)

    def set_diversity_lambda(self, value: float) -> None:
        self._data["diversity_lambda"] = min(1.0, max(0.0, float(value)))

    def set_strategy_weight(self, name: str, weight: float) -> None:
        weight = float(weight)
        if not math.isfinite(weight):
            return
        weights = self.strategy_weights
        weights[name.strip()] = min(1.0, max(0.0, weight))
        self._data["strategy_weights"] = weights

    def set_cache_backend(self, value: CacheBackend) -> None:
        self._data["cache_backend"] = value.value

    def set_redis_url(self, value: str) -> None:
        self._data["redis_url"] = value.strip()

    def set_db_path(self, value: str) -> None:
        self._data["db_path"] = value.strip()

    def set_log_level(self, value: str) -> None:
        self._data["log_level"] = value.strip().upper()
