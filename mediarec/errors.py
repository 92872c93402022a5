"""Caller-facing errors.

Runtime data conditions (failing strategies, unresolved content, missing
embeddings, an unreachable cache) are degraded locally and only logged.
Only registry mistakes surface to the caller.
"""

from __future__ import annotations


class InvalidConfigurationError(ValueError):
    """A registry or weight operation referenced something that is not valid."""
