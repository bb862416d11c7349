"""Tests for utility functions."""

from __future__ import annotations

import asyncio
import json

from score_resolver import ScorePair, strip_diacritics
from score_resolver.utils import AsyncRateLimiter, AsyncRateLimiterRegistry, write_json_atomic


class TestStripDiacritics:
    """Tests for strip_diacritics function."""

    def test_strip_diacritics_accent(self):
        assert strip_diacritics("Pokémon") == "Pokemon"

    def test_strip_diacritics_umlaut(self):
        assert strip_diacritics("Überschall") == "Uberschall"

    def test_strip_diacritics_no_change(self):
        assert strip_diacritics("hello") == "hello"


class TestScorePair:
    """Tests for ScorePair."""

    def test_complete(self):
        assert ScorePair("90", "8.2").is_complete
        assert ScorePair(90, 8.2).is_complete

    def test_incomplete(self):
        assert not ScorePair("90", None).is_complete
        assert not ScorePair(None, "8.2").is_complete
        assert not ScorePair("  ", "8.2").is_complete
        assert not ScorePair().is_complete

    def test_zero_is_a_score(self):
        assert ScorePair(0, 0).is_complete

    def test_to_dict(self):
        assert ScorePair("90", "8.2").to_dict() == {"critic": "90", "audience": "8.2"}

    def test_from_dict(self):
        assert ScorePair.from_dict({"critic": "90", "audience": "8.2", "timestamp": 1}) == ScorePair("90", "8.2")

    def test_from_dict_rejects_non_mapping(self):
        assert ScorePair.from_dict("90/8.2") is None


class TestWriteJsonAtomic:
    """Tests for write_json_atomic."""

    def test_writes_file(self, tmp_path):
        path = tmp_path / "out.json"
        write_json_atomic(str(path), {"a": 1})
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1}

    def test_replaces_existing(self, tmp_path):
        path = tmp_path / "out.json"
        path.write_text('{"old": true}', encoding="utf-8")
        write_json_atomic(str(path), {"new": True})
        assert json.loads(path.read_text(encoding="utf-8")) == {"new": True}
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "out.json"
        write_json_atomic(str(path), [])
        assert path.exists()


class TestAsyncRateLimiter:
    """Tests for the async rate limiters."""

    def test_under_limit_does_not_block(self):
        limiter = AsyncRateLimiter(req_per_min=5)

        async def scenario():
            for _ in range(5):
                await asyncio.wait_for(limiter.wait(), timeout=1.0)

        asyncio.run(scenario())
        assert len(limiter.timestamps) == 5

    def test_minimum_rate(self):
        assert AsyncRateLimiter(req_per_min=0).req_per_min == 1

    def test_usable_from_separate_event_loops(self):
        limiter = AsyncRateLimiter(req_per_min=10)
        asyncio.run(limiter.wait())
        asyncio.run(limiter.wait())
        assert len(limiter.timestamps) == 2

    def test_registry_defaults_and_overrides(self):
        registry = AsyncRateLimiterRegistry({"other": 5})
        assert registry.get("metacritic").req_per_min == 30
        assert registry.get("other").req_per_min == 5
        assert registry.get("unknown").req_per_min == 30

    def test_registry_reuses_limiters(self):
        registry = AsyncRateLimiterRegistry()
        assert registry.get("metacritic") is registry.get("metacritic")
