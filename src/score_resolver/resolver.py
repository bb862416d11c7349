"""Batch score resolution.

BatchResolver answers a burst of (name, url) lookups with as few external
fetches as possible:

1. Normalize names to item keys and drop duplicates
2. Sweep expired entries out of the persisted cache
3. Group keys that are variants of the same item
4. Serve groups from the cache when any member (or numeral spelling of a
   member) has a valid entry
5. Fetch every member of the remaining groups, sharing in-flight fetches
   with concurrent batches through the Coalescer
6. Fan results back out to every original request, in input order
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from score_resolver.cache import CacheEntry, JsonFileStore, ScoreCache
from score_resolver.coalescer import Coalescer, PendingFetch
from score_resolver.config import ResolverConfig
from score_resolver.errors import NormalizationError
from score_resolver.utils import ScorePair
from score_resolver.variants import VariantGroup, cache_lookup_keys, group_keys, normalize
from score_resolver.worker import ExternalWorker

URL_KEY_PLACEHOLDER = "{key}"

# Where a resolved item's scores came from
SOURCE_CACHE = "cache"
SOURCE_FETCHED = "fetched"
SOURCE_COALESCED = "coalesced"
SOURCE_FAILED = "failed"
SOURCE_INVALID = "invalid"


@dataclass(frozen=True)
class ScoreRequest:
    """One lookup request from the page scanner.

    Attributes:
        raw_name: Item name as displayed
        url: Review page URL, or a template containing ``{key}``
    """

    raw_name: str
    url: str = ""

    @classmethod
    def coerce(cls, obj: Any) -> ScoreRequest:
        """Accept a ScoreRequest, a (name, url) pair or a mapping.

        Mappings may use ``rawName``/``raw_name``/``name`` for the name and
        ``sourceURLTemplate``/``url`` for the URL.
        """
        if isinstance(obj, ScoreRequest):
            return obj
        if isinstance(obj, Mapping):
            raw_name = obj.get("rawName", obj.get("raw_name", obj.get("name")))
            url = obj.get("sourceURLTemplate", obj.get("url", ""))
            return cls(raw_name=raw_name, url=url or "")
        if isinstance(obj, (tuple, list)) and len(obj) == 2:
            return cls(raw_name=obj[0], url=obj[1] or "")
        return cls(raw_name=obj)


def expand_url(template: str, key: str) -> str:
    """Substitute the item key into a URL template, if it has a placeholder."""
    if URL_KEY_PLACEHOLDER in template:
        return template.replace(URL_KEY_PLACEHOLDER, key)
    return template


def output_name(raw_name: Any) -> Any:
    """Return the raw name usable as a mapping key; unhashable names become their repr."""
    try:
        hash(raw_name)
    except TypeError:
        return repr(raw_name)
    return raw_name


@dataclass
class ResolvedItem:
    """Result for one original request.

    Attributes:
        raw_name: Name as given in the request
        key: Normalized item key, None if the name was invalid
        scores: Resolved pair, None when absent
        source: One of cache, fetched, coalesced, failed, invalid
    """

    raw_name: str
    key: str | None
    scores: ScorePair | None
    source: str


@dataclass
class BatchStats:
    """Counters for one batch, logged when the batch finishes."""

    requested: int = 0
    unique: int = 0
    invalid: int = 0
    groups: int = 0
    cache_hits: int = 0
    fetched: int = 0
    coalesced: int = 0
    failed: int = 0
    swept: int = 0


@dataclass
class BatchResult:
    """Resolved scores for a batch.

    ``items`` holds one entry per original request, in request order and
    including duplicates. ``as_dict()`` gives the name-keyed mapping, where
    repeated names collapse into one entry.
    """

    items: list[ResolvedItem] = field(default_factory=list)
    stats: BatchStats = field(default_factory=BatchStats)

    def scores(self) -> dict[str, ScorePair | None]:
        """Map each raw name to its resolved pair (or None)."""
        return {item.raw_name: item.scores for item in self.items}

    def as_dict(self) -> dict[str, dict[str, Any] | None]:
        """Map each raw name to the serialized {critic, audience} shape."""
        return {item.raw_name: item.scores.to_dict() if item.scores else None for item in self.items}

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


class BatchResolver:
    """Resolve scores for batches of item names.

    The cache, coalescer and worker are injected so several resolvers (or
    tests) can share or isolate them as needed. Share one Coalescer across
    every resolver in a process to get one fetch per key system-wide.
    """

    def __init__(
        self,
        worker: ExternalWorker,
        cache: ScoreCache,
        coalescer: Coalescer | None = None,
        max_concurrency: int = 4,
        fetch_timeout: float | None = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            worker: Performs the external lookups
            cache: Persisted score cache
            coalescer: In-flight registry; a private one is created if omitted
            max_concurrency: Maximum simultaneous worker calls
            fetch_timeout: Seconds before a worker call is abandoned as
                absent; None disables the timeout
            logger: Optional logger
        """
        self.worker = worker
        self.cache = cache
        self.coalescer = coalescer if coalescer is not None else Coalescer()
        self.max_concurrency = max(max_concurrency, 1)
        self.fetch_timeout = fetch_timeout
        self.logger = logger or logging.getLogger(__name__)
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def from_config(
        cls,
        config: ResolverConfig,
        worker: ExternalWorker,
        coalescer: Coalescer | None = None,
        logger: logging.Logger | None = None,
    ) -> BatchResolver:
        """Build a resolver with a file-backed cache from a ResolverConfig."""
        cache = ScoreCache(JsonFileStore(config.cache_path), ttl_seconds=config.ttl_seconds, logger=logger)
        return cls(
            worker=worker,
            cache=cache,
            coalescer=coalescer,
            max_concurrency=config.max_concurrency,
            fetch_timeout=config.fetch_timeout,
            logger=logger,
        )

    def _get_semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    # --- Cache lookup ---

    def _lookup_group(
        self, group: VariantGroup, snapshot: dict[str, CacheEntry]
    ) -> tuple[str, ScorePair] | tuple[None, None]:
        """Find the first valid cached entry among a group's lookup keys."""
        now = self.cache.clock()
        for candidate in cache_lookup_keys(group):
            entry = snapshot.get(candidate)
            if entry is not None and self.cache.is_valid(entry, now):
                return candidate, entry.scores
        return None, None

    # --- Fetching ---

    async def _call_worker(self, key: str, url: str) -> ScorePair | None:
        """Run one worker call, turning every failure into None."""
        async with self._get_semaphore():
            try:
                if self.fetch_timeout is None:
                    scores = await self.worker.fetch(key, url)
                else:
                    scores = await asyncio.wait_for(self.worker.fetch(key, url), timeout=self.fetch_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Fetch for %s timed out after %.1fs", key, self.fetch_timeout)
                return None
            except Exception as e:
                self.logger.warning("Fetch for %s failed: %s", key, e)
                return None
        if scores is None or not scores.is_complete:
            self.logger.debug("No scores found for %s", key)
            return None
        return scores

    async def _fetch_owned(self, key: str, url: str) -> tuple[ScorePair | None, str]:
        """Fetch a key this batch registered, then publish and cache the result."""
        scores: ScorePair | None = None
        try:
            scores = await self._call_worker(key, url)
        finally:
            if scores is not None:
                self.coalescer.complete(key, scores)
            else:
                self.coalescer.fail(key)
        if scores is None:
            return None, SOURCE_FAILED
        # Whole-document file write; keep it off the event loop
        await asyncio.to_thread(self.cache.put, key, scores)
        self.logger.debug("Fetched and cached scores for %s: %s", key, scores.to_dict())
        return scores, SOURCE_FETCHED

    async def _await_coalesced(self, key: str, handle: PendingFetch) -> tuple[ScorePair | None, str]:
        """Wait for a fetch owned by another caller."""
        scores = await handle.wait()
        if scores is None:
            self.logger.debug("Shared fetch for %s produced no scores", key)
            return None, SOURCE_FAILED
        return scores, SOURCE_COALESCED

    async def _fetch_all(
        self, keys: list[str], urls: dict[str, str]
    ) -> dict[str, tuple[ScorePair | None, str]]:
        """Fetch or join in-flight fetches for every key, concurrently."""
        owned: list[tuple[str, PendingFetch]] = []
        jobs = []
        # No awaits in this loop: every key is registered before any task runs.
        for key in keys:
            handle, in_flight = self.coalescer.register(key)
            if in_flight:
                jobs.append(self._await_coalesced(key, handle))
            else:
                owned.append((key, handle))
                jobs.append(self._fetch_owned(key, urls[key]))

        self.logger.debug(
            "Starting %d new fetches (%d already pending)", len(owned), len(keys) - len(owned)
        )
        try:
            outcomes = await asyncio.gather(*jobs)
        finally:
            # Tasks cancelled before they started never reach their own
            # cleanup; release whatever this batch still holds.
            for key, handle in owned:
                if not handle.done():
                    self.coalescer.fail(key)
        return dict(zip(keys, outcomes))

    # --- Entry points ---

    async def resolve(self, requests: Iterable[Any]) -> BatchResult:
        """Resolve scores for a batch of requests.

        Never raises for partial failures: invalid names, storage problems
        and failed fetches all come back as absent scores.

        Args:
            requests: ScoreRequest objects, (name, url) pairs or mappings

        Returns:
            BatchResult with one item per request, in request order
        """
        reqs = [ScoreRequest.coerce(r) for r in requests]
        stats = BatchStats(requested=len(reqs))

        # Normalize and dedupe, remembering the first URL for each key
        keys: list[str | None] = []
        urls: dict[str, str] = {}
        for req in reqs:
            try:
                key = normalize(req.raw_name)
            except NormalizationError as e:
                self.logger.debug("Skipping request: %s", e)
                keys.append(None)
                stats.invalid += 1
                continue
            keys.append(key)
            if key in urls:
                self.logger.debug("Skipping duplicate request for %s", key)
            else:
                urls[key] = expand_url(req.url, key)
        stats.unique = len(urls)

        snapshot, stats.swept = self.cache.sweep_expired()

        groups = group_keys(urls)
        stats.groups = len(groups)

        results: dict[str, tuple[ScorePair | None, str]] = {}
        to_fetch: list[str] = []
        for group in groups:
            hit_key, hit = self._lookup_group(group, snapshot)
            if hit is not None:
                self.logger.debug("Cache hit for group %s via %s", group.base, hit_key)
                for member in group.members:
                    results[member] = (hit, SOURCE_CACHE)
                stats.cache_hits += len(group.members)
            else:
                self.logger.debug("Cache miss for group %s: %s", group.base, ", ".join(group.members))
                to_fetch.extend(group.members)

        if to_fetch:
            results.update(await self._fetch_all(to_fetch, urls))

        for scores, source in results.values():
            if source == SOURCE_FETCHED:
                stats.fetched += 1
            elif source == SOURCE_COALESCED:
                stats.coalesced += 1
            elif source == SOURCE_FAILED:
                stats.failed += 1

        items: list[ResolvedItem] = []
        for req, key in zip(reqs, keys):
            if key is None:
                items.append(
                    ResolvedItem(raw_name=output_name(req.raw_name), key=None, scores=None, source=SOURCE_INVALID)
                )
                continue
            scores, source = results[key]
            items.append(ResolvedItem(raw_name=req.raw_name, key=key, scores=scores, source=source))

        self.logger.info(
            "Batch resolved: requested=%d, unique=%d, groups=%d, cache_hits=%d, fetched=%d, "
            "coalesced=%d, failed=%d, invalid=%d, swept=%d",
            stats.requested,
            stats.unique,
            stats.groups,
            stats.cache_hits,
            stats.fetched,
            stats.coalesced,
            stats.failed,
            stats.invalid,
            stats.swept,
        )
        return BatchResult(items=items, stats=stats)

    async def resolve_one(self, raw_name: str, url: str = "") -> ScorePair | None:
        """Resolve a single item; a batch of one."""
        result = await self.resolve([ScoreRequest(raw_name=raw_name, url=url)])
        return result.items[0].scores
