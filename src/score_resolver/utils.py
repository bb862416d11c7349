"""Shared utilities for score resolution.

This module provides common functionality used by:
- variants.py (item name normalization)
- cache.py (persisted score cache)
- worker.py (review page fetching)

Includes text helpers, the ScorePair record, atomic JSON persistence and
async rate limiting for the external review source.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
import unicodedata
from dataclasses import dataclass
from typing import Any

# ------------- Text Helpers -------------


def strip_diacritics(text: str) -> str:
    """Remove diacritics from text (e.g., 'Pokémon' -> 'Pokemon')."""
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join([c for c in nfkd if not unicodedata.combining(c)])


# ------------- Data Classes -------------


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


@dataclass(frozen=True)
class ScorePair:
    """Critic and audience scores for one item.

    Values are kept as the source reports them (e.g. "90" or 8.2). The pair
    only counts as a result when both halves are present.
    """

    critic: str | int | float | None = None
    audience: str | int | float | None = None

    @property
    def is_complete(self) -> bool:
        """True when both the critic and the audience score are present."""
        return _is_present(self.critic) and _is_present(self.audience)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the serialized {critic, audience} shape."""
        return {"critic": self.critic, "audience": self.audience}

    @classmethod
    def from_dict(cls, data: Any) -> ScorePair | None:
        """Build a pair from a serialized mapping, or None if it is not one."""
        if not isinstance(data, dict):
            return None
        return cls(critic=data.get("critic"), audience=data.get("audience"))


# ------------- Persistence -------------


def write_json_atomic(path: str, data: Any, prefix: str = ".tmp_score_cache_") -> None:
    """Write JSON to ``path`` atomically using temp file + os.replace."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", suffix=".json", prefix=prefix, dir=directory)
    try:
        json.dump(data, tmp, indent=2, ensure_ascii=False)
        tmp.flush()
        os.fsync(tmp.fileno())
    finally:
        tmp.close()
    os.replace(tmp.name, path)


# ------------- Async Rate Limiting -------------


class AsyncRateLimiter:
    """Async-compatible rate limiter using sliding window.

    This rate limiter uses an asyncio lock and sleep for non-blocking
    rate limiting in async contexts. It maintains a sliding window of
    timestamps to enforce the rate limit.
    """

    def __init__(self, req_per_min: int) -> None:
        """Initialize the async rate limiter.

        Args:
            req_per_min: Maximum number of requests allowed per minute.
                        Minimum value is 1.
        """
        self.req_per_min = max(req_per_min, 1)
        self.lock: asyncio.Lock | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.timestamps: list[float] = []

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self.lock is None or self._loop is not loop:
            self.lock = asyncio.Lock()
            self._loop = loop
        return self.lock

    async def wait(self) -> None:
        """Async wait until a request can be made within the rate limit.

        This method will sleep asynchronously if the rate limit has been
        exceeded, allowing other coroutines to run while waiting.
        """
        async with self._get_lock():
            now = time.time()
            window = 60.0
            self.timestamps = [t for t in self.timestamps if now - t < window]

            if len(self.timestamps) >= self.req_per_min:
                earliest = min(self.timestamps)
                sleep_for = window - (now - earliest) + 0.01
                if sleep_for > 0:
                    await asyncio.sleep(sleep_for)
                    now = time.time()
                    self.timestamps = [t for t in self.timestamps if now - t < window]

            self.timestamps.append(now)


class AsyncRateLimiterRegistry:
    """Manages per-service async rate limiters.

    This registry creates and manages AsyncRateLimiter instances for
    different review sources, allowing each one to have its own
    rate limit configuration.
    """

    DEFAULT_LIMITS = {
        "metacritic": 30,  # Review pages: 30/min (conservative)
    }

    def __init__(self, limits: dict[str, int] | None = None) -> None:
        """Initialize the registry with optional custom limits.

        Args:
            limits: Optional dict of service name to requests per minute.
                   Overrides DEFAULT_LIMITS for specified services.
        """
        self._limits = {**self.DEFAULT_LIMITS, **(limits or {})}
        self._limiters: dict[str, AsyncRateLimiter] = {}

    def get(self, service: str) -> AsyncRateLimiter:
        """Get or create async rate limiter for service.

        Args:
            service: Name of the review source (e.g., 'metacritic')

        Returns:
            AsyncRateLimiter instance for the service
        """
        if service not in self._limiters:
            limit = self._limits.get(service, 30)  # Default 30/min
            self._limiters[service] = AsyncRateLimiter(limit)
        return self._limiters[service]

    async def wait(self, service: str) -> None:
        """Async wait for rate limit on specified service.

        Args:
            service: Name of the review source
        """
        await self.get(service).wait()
