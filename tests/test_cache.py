"""Tests for the persisted score cache."""

from __future__ import annotations

import json

import pytest
from conftest import START_TIME, TTL, FailingStore

from score_resolver import CacheEntry, JsonFileStore, MemoryStore, ScoreCache, ScorePair, StorageError
from score_resolver.cache import STORAGE_KEY


def entry(critic, audience, timestamp):
    return {"critic": critic, "audience": audience, "timestamp": timestamp}


class TestCacheEntry:
    """Tests for CacheEntry parsing."""

    def test_round_trip_shape(self):
        e = CacheEntry(scores=ScorePair("90", "8.2"), timestamp=START_TIME)
        assert e.to_dict() == {"critic": "90", "audience": "8.2", "timestamp": START_TIME}

    def test_missing_timestamp_is_malformed(self):
        assert CacheEntry.from_dict({"critic": "90", "audience": "8.2"}) is None

    def test_non_numeric_timestamp_is_malformed(self):
        assert CacheEntry.from_dict(entry("90", "8.2", "yesterday")) is None

    def test_non_mapping_is_malformed(self):
        assert CacheEntry.from_dict(["90", "8.2"]) is None


class TestScoreCacheGetPut:
    """Tests for ScoreCache get/put and TTL validity."""

    def test_put_then_get(self, cache):
        cache.put("elden-ring", ScorePair("96", "8.1"))
        got = cache.get("elden-ring")
        assert got is not None
        assert got.scores == ScorePair("96", "8.1")
        assert got.timestamp == START_TIME

    def test_get_missing(self, cache):
        assert cache.get("nothing") is None

    def test_valid_just_before_ttl(self, cache, clock):
        cache.put("foo", ScorePair("80", "7.0"))
        clock.advance(TTL - 1)
        assert cache.get("foo") is not None

    def test_expired_at_ttl(self, cache, clock):
        cache.put("foo", ScorePair("80", "7.0"))
        clock.advance(TTL)
        assert cache.get("foo") is None

    def test_put_overwrites_with_new_timestamp(self, cache, clock):
        cache.put("foo", ScorePair("80", "7.0"))
        clock.advance(100)
        cache.put("foo", ScorePair("82", "7.5"))
        got = cache.get("foo")
        assert got.scores == ScorePair("82", "7.5")
        assert got.timestamp == START_TIME + 100

    def test_persisted_layout(self, cache, store):
        cache.put("foo", ScorePair("80", "7.0"))
        assert store.data[STORAGE_KEY] == {"foo": entry("80", "7.0", START_TIME)}


class TestSweepExpired:
    """Tests for ScoreCache.sweep_expired."""

    def test_sweep_keeps_valid_and_counts_removed(self, cache, store, clock):
        store.store(
            STORAGE_KEY,
            {
                "a": entry("90", "8", START_TIME - 10),
                "b": entry("70", "6", START_TIME - TTL + 1),
                "c": entry("60", "5", START_TIME - TTL - 1),
                "d": entry("50", "4", START_TIME - 3 * TTL),
                "e": {"critic": "1", "audience": "2"},
            },
        )
        surviving, removed = cache.sweep_expired()
        assert sorted(surviving) == ["a", "b"]
        assert removed == 3
        assert sorted(store.data[STORAGE_KEY]) == ["a", "b"]

    def test_sweep_without_expired_entries_does_not_write(self, cache, store):
        store.store(STORAGE_KEY, {"a": entry("90", "8", START_TIME)})
        writes_before = store.writes
        surviving, removed = cache.sweep_expired()
        assert removed == 0
        assert list(surviving) == ["a"]
        assert store.writes == writes_before

    def test_sweep_empty_store(self, cache, store):
        assert cache.sweep_expired() == ({}, 0)
        assert store.writes == 0


class TestAdminOperations:
    """Tests for clear() and stats()."""

    def test_stats(self, cache, store):
        document = {
            "a": entry("90", "8", START_TIME),
            "b": entry("70", "6", START_TIME - TTL - 5),
        }
        store.store(STORAGE_KEY, document)
        stats = cache.stats()
        assert stats.total_entries == 2
        assert stats.valid_entries == 1
        assert stats.expired_entries == 1
        assert stats.cache_size == len(json.dumps(document))

    def test_stats_dict_shape(self, cache):
        assert cache.stats().to_dict() == {
            "totalEntries": 0,
            "validEntries": 0,
            "expiredEntries": 0,
            "cacheSize": 2,
        }

    def test_clear(self, cache):
        cache.put("foo", ScorePair("80", "7.0"))
        assert cache.clear() is True
        assert cache.get("foo") is None
        assert cache.stats().total_entries == 0


class TestStorageFailures:
    """Storage errors degrade instead of raising."""

    def test_failing_store_reads_as_empty(self, clock):
        cache = ScoreCache(FailingStore(), clock=clock)
        assert cache.get("foo") is None
        assert cache.sweep_expired() == ({}, 0)
        assert cache.stats().total_entries == 0

    def test_failing_store_write_is_absorbed(self, clock):
        cache = ScoreCache(FailingStore(), clock=clock)
        written = cache.put("foo", ScorePair("80", "7.0"))
        assert written.scores == ScorePair("80", "7.0")

    def test_failing_store_clear_reports_failure(self, clock):
        cache = ScoreCache(FailingStore(), clock=clock)
        assert cache.clear() is False

    def test_non_mapping_document_ignored(self, clock):
        store = MemoryStore()
        store.store(STORAGE_KEY, ["not", "a", "mapping"])
        cache = ScoreCache(store, clock=clock)
        assert cache.get("not") is None


class TestJsonFileStore:
    """Tests for the on-disk store."""

    def test_survives_restart(self, tmp_path, clock):
        path = str(tmp_path / "scores.json")
        ScoreCache(JsonFileStore(path), clock=clock).put("foo", ScorePair("80", "7.0"))
        reopened = ScoreCache(JsonFileStore(path), clock=clock)
        assert reopened.get("foo").scores == ScorePair("80", "7.0")

    def test_file_layout(self, tmp_path, clock):
        path = tmp_path / "scores.json"
        ScoreCache(JsonFileStore(str(path)), clock=clock).put("foo", ScorePair("80", "7.0"))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data == {STORAGE_KEY: {"foo": entry("80", "7.0", START_TIME)}}

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileStore(str(tmp_path / "absent.json")).load(STORAGE_KEY) is None

    def test_corrupt_file_degrades(self, tmp_path, clock):
        path = tmp_path / "scores.json"
        path.write_text("{not json", encoding="utf-8")
        cache = ScoreCache(JsonFileStore(str(path)), clock=clock)
        assert cache.get("foo") is None
        assert cache.sweep_expired() == ({}, 0)

    def test_remove_keeps_other_keys(self, tmp_path):
        path = str(tmp_path / "scores.json")
        store = JsonFileStore(path)
        store.store("other", {"x": 1})
        store.store(STORAGE_KEY, {"foo": 1})
        store.remove(STORAGE_KEY)
        assert store.load(STORAGE_KEY) is None
        assert store.load("other") == {"x": 1}

    def test_no_temp_files_left(self, tmp_path, clock):
        ScoreCache(JsonFileStore(str(tmp_path / "scores.json")), clock=clock).put("foo", ScorePair("1", "2"))
        assert [p.name for p in tmp_path.iterdir()] == ["scores.json"]

    def test_invalid_utf8_file_degrades(self, tmp_path, clock):
        path = tmp_path / "scores.json"
        path.write_bytes(b'{"score_resolver_cache": {"foo": "\xff\xfe"}}')
        store = JsonFileStore(str(path))
        with pytest.raises(StorageError):
            store.load(STORAGE_KEY)
        with pytest.raises(StorageError):
            store.store(STORAGE_KEY, {})
        cache = ScoreCache(store, clock=clock)
        assert cache.get("foo") is None
        assert cache.sweep_expired() == ({}, 0)
        assert cache.put("foo", ScorePair("1", "2")).scores == ScorePair("1", "2")
