"""Shared fixtures for score_resolver tests."""

from __future__ import annotations

import asyncio
import logging

import pytest

from score_resolver import (
    BatchResolver,
    Coalescer,
    ExternalWorker,
    MemoryStore,
    ScoreCache,
    ScorePair,
    StorageError,
)

START_TIME = 1_700_000_000.0
TTL = 24 * 60 * 60
URL = "https://www.metacritic.com/game/{key}/"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWorker(ExternalWorker):
    """Deterministic worker that records every call.

    Keys listed in ``scores`` return that value (which may be None);
    other keys return ``default``. Keys in ``failures`` raise, keys in
    ``hang`` never return.
    """

    def __init__(self, scores=None, failures=(), hang=(), delay: float = 0.0, default=None):
        self.scores = dict(scores or {})
        self.failures = set(failures)
        self.hang = set(hang)
        self.delay = delay
        self.default = default or ScorePair(critic="85", audience="8.1")
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, key, url):
        self.calls.append((key, url))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if key in self.hang:
                await asyncio.sleep(3600)
            if key in self.failures:
                raise RuntimeError(f"page for {key} did not load")
            if key in self.scores:
                return self.scores[key]
            return self.default
        finally:
            self.active -= 1

    def called_keys(self) -> list[str]:
        return [key for key, _ in self.calls]


class FailingStore(MemoryStore):
    """Store whose reads and writes always fail."""

    def load(self, key):
        raise StorageError("disk unavailable")

    def store(self, key, value):
        raise StorageError("disk unavailable")

    def remove(self, key):
        raise StorageError("disk unavailable")


class CountingStore(MemoryStore):
    """MemoryStore that counts writes."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def store(self, key, value):
        self.writes += 1
        super().store(key, value)


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def cache(store, clock, logger):
    return ScoreCache(store, ttl_seconds=TTL, clock=clock, logger=logger)


@pytest.fixture
def worker():
    return FakeWorker()


@pytest.fixture
def coalescer():
    return Coalescer()


@pytest.fixture
def resolver(worker, cache, coalescer, logger):
    return BatchResolver(worker, cache, coalescer=coalescer, max_concurrency=4, fetch_timeout=5.0, logger=logger)


@pytest.fixture
def make_resolver(cache, coalescer, logger):
    """Factory fixture for resolvers sharing the default cache and coalescer."""

    def _make(worker, **kwargs):
        kwargs.setdefault("coalescer", coalescer)
        kwargs.setdefault("fetch_timeout", 5.0)
        return BatchResolver(worker, cache, logger=logger, **kwargs)

    return _make
