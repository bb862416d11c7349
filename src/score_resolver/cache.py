"""Persisted score cache with time-boxed validity.

The cache is one JSON document mapping item keys to
``{"critic", "audience", "timestamp"}``, stored under a single well-known
key of a key-value store. Entries are valid for a fixed TTL after they were
written; expired entries are dropped by ``sweep_expired``.

Storage failures never propagate: reads degrade to an empty document and
writes are skipped, both with a warning.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from score_resolver.errors import StorageError
from score_resolver.utils import ScorePair, write_json_atomic

STORAGE_KEY = "score_resolver_cache"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


# ------------- Key-Value Stores -------------


class KeyValueStore(ABC):
    """Whole-document key-value storage.

    Subclasses must implement load(), store() and remove(). Each call is an
    atomic operation on one complete value.
    """

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the value stored under ``key``, or None if there is none.

        Raises:
            StorageError: If the backing store cannot be read
        """
        ...

    @abstractmethod
    def store(self, key: str, value: Any) -> None:
        """Replace the value stored under ``key``.

        Raises:
            StorageError: If the backing store cannot be written
        """
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key`` if present.

        Raises:
            StorageError: If the backing store cannot be written
        """
        ...


class MemoryStore(KeyValueStore):
    """In-process store. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.lock = threading.Lock()

    def load(self, key: str) -> Any | None:
        with self.lock:
            return copy.deepcopy(self.data.get(key))

    def store(self, key: str, value: Any) -> None:
        with self.lock:
            self.data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        with self.lock:
            self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Thread-safe on-disk JSON store.

    The file holds a single JSON object whose top-level keys are the store
    keys. Writes go through a temp file + os.replace so a crash never
    leaves a half-written file behind.
    """

    def __init__(self, path: str) -> None:
        """Initialize the store.

        Args:
            path: Path to the JSON file. Created on first write.
        """
        self.path = path
        self.lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                content = f.read().strip()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not content:
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt store file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Store file {self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            write_json_atomic(self.path, data)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def load(self, key: str) -> Any | None:
        with self.lock:
            return self._read().get(key)

    def store(self, key: str, value: Any) -> None:
        with self.lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self.lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


# ------------- Score Cache -------------


@dataclass
class CacheEntry:
    """Cached scores for one item key.

    Attributes:
        scores: The critic/audience pair
        timestamp: Unix timestamp of the fetch that produced the scores
    """

    scores: ScorePair
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted {critic, audience, timestamp} shape."""
        return {**self.scores.to_dict(), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Any) -> CacheEntry | None:
        """Parse a persisted entry, or return None if it is malformed."""
        scores = ScorePair.from_dict(data)
        if scores is None:
            return None
        timestamp = data.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        return cls(scores=scores, timestamp=float(timestamp))


@dataclass
class CacheStats:
    """Summary of the persisted cache.

    Attributes:
        total_entries: Number of stored entries
        valid_entries: Entries still inside the TTL
        expired_entries: Entries past the TTL or malformed
        cache_size: Length of the serialized document in characters
    """

    total_entries: int
    valid_entries: int
    expired_entries: int
    cache_size: int

    def to_dict(self) -> dict[str, int]:
        return {
            "totalEntries": self.total_entries,
            "validEntries": self.valid_entries,
            "expiredEntries": self.expired_entries,
            "cacheSize": self.cache_size,
        }


class ScoreCache:
    """Durable item key -> score cache with fixed-TTL validity.

    Features:
    - Fixed TTL: an entry is valid iff ``now - timestamp < ttl``
    - Whole-document load/store through a KeyValueStore
    - Expired entries are removed only by sweep_expired()
    - Storage errors degrade to an empty cache instead of raising
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        storage_key: str = STORAGE_KEY,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the score cache.

        Args:
            store: Backing key-value store
            ttl_seconds: Validity period for entries. Default 24 hours.
            storage_key: Store key the cache document lives under
            clock: Returns the current Unix time; injectable for tests
            logger: Optional logger, defaults to the module logger
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.storage_key = storage_key
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        # Serializes read-modify-write cycles on the document
        self._write_lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        """Load the cache document, degrading to {} on any storage failure."""
        try:
            data = self.store.load(self.storage_key)
        except StorageError as e:
            self.logger.warning("Error reading score cache: %s", e)
            return {}
        if data is None:
            return {}
        if not isinstance(data, dict):
            self.logger.warning("Ignoring score cache document of type %s", type(data).__name__)
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> bool:
        """Persist the cache document. Returns False if the write failed."""
        try:
            self.store.store(self.storage_key, data)
        except StorageError as e:
            self.logger.warning("Error writing score cache: %s", e)
            return False
        return True

    def is_valid(self, entry: CacheEntry | None, now: float | None = None) -> bool:
        """Check whether an entry is inside the TTL."""
        if entry is None:
            return False
        if now is None:
            now = self.clock()
        return now - entry.timestamp < self.ttl_seconds

    def get(self, key: str) -> CacheEntry | None:
        """Get the cached entry for a key if it is still valid.

        Args:
            key: Item key

        Returns:
            CacheEntry if a valid entry exists, None otherwise.
        """
        entry = CacheEntry.from_dict(self._load().get(key))
        if not self.is_valid(entry):
            return None
        return entry

    def put(self, key: str, scores: ScorePair) -> CacheEntry:
        """Store freshly fetched scores, stamped with the current time.

        Args:
            key: Item key
            scores: The fetched pair

        Returns:
            The written entry (even if persisting it failed).
        """
        entry = CacheEntry(scores=scores, timestamp=self.clock())
        with self._write_lock:
            data = self._load()
            data[key] = entry.to_dict()
            saved = self._save(data)
        if saved:
            self.logger.debug("Cached scores for %s: %s", key, scores.to_dict())
        return entry

    def sweep_expired(self) -> tuple[dict[str, CacheEntry], int]:
        """Drop expired and malformed entries from the persisted document.

        The sweep works on the document as loaded; it is only written back
        when something was removed.

        Returns:
            Tuple of (surviving entries by key, number of entries removed).
        """
        with self._write_lock:
            data = self._load()
            now = self.clock()
            surviving: dict[str, CacheEntry] = {}
            for key, raw in data.items():
                entry = CacheEntry.from_dict(raw)
                if self.is_valid(entry, now):
                    surviving[key] = entry
            removed = len(data) - len(surviving)
            if removed > 0:
                self._save({key: entry.to_dict() for key, entry in surviving.items()})
                self.logger.debug("Cleaned up %d expired cache entries", removed)
        return surviving, removed

    def clear(self) -> bool:
        """Remove every cached entry.

        Returns:
            True if the store was cleared, False if the store failed.
        """
        try:
            self.store.remove(self.storage_key)
        except StorageError as e:
            self.logger.warning("Error clearing score cache: %s", e)
            return False
        self.logger.info("Score cache cleared")
        return True

    def stats(self) -> CacheStats:
        """Count total, valid and expired entries and measure the document."""
        data = self._load()
        now = self.clock()
        valid = sum(1 for raw in data.values() if self.is_valid(CacheEntry.from_dict(raw), now))
        return CacheStats(
            total_entries=len(data),
            valid_entries=valid,
            expired_entries=len(data) - valid,
            cache_size=len(json.dumps(data)),
        )
