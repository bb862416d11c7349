"""Score Resolver - Batch lookup of critic and audience scores.

This package provides tools for:
- Normalizing item names and grouping sequel/edition variants
- Caching scores with a fixed time-to-live
- Sharing in-flight lookups between concurrent batches
- Resolving whole batches of names with as few external fetches as possible

Example usage:
    from score_resolver import BatchResolver, Coalescer, HttpScoreWorker, MemoryStore, ScoreCache

    async with HttpScoreWorker() as worker:
        resolver = BatchResolver(worker, ScoreCache(MemoryStore()), coalescer=Coalescer())
        result = await resolver.resolve([("God of War Ragnarök", "https://www.metacritic.com/game/{key}/")])
        print(result.as_dict())
"""

from score_resolver._version import __version__

# Core resolution
from score_resolver.cache import (
    CacheEntry,
    CacheStats,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    ScoreCache,
)
from score_resolver.coalescer import Coalescer, PendingFetch
from score_resolver.config import ResolverConfig, load_config_file
from score_resolver.errors import (
    CoalescerError,
    NormalizationError,
    ScoreResolverError,
    StorageError,
    WorkerError,
)
from score_resolver.resolver import (
    BatchResolver,
    BatchResult,
    BatchStats,
    ResolvedItem,
    ScoreRequest,
    expand_url,
)

# Shared utilities
from score_resolver.utils import (
    AsyncRateLimiter,
    AsyncRateLimiterRegistry,
    ScorePair,
    strip_diacritics,
)
from score_resolver.variants import (
    VariantGroup,
    base_identity,
    cache_lookup_keys,
    group_keys,
    normalize,
    numeral_variants,
)
from score_resolver.worker import ExternalWorker, HttpScoreWorker, parse_score_page

__all__ = [
    # Version
    "__version__",
    # Core classes
    "BatchResolver",
    "BatchResult",
    "BatchStats",
    "ResolvedItem",
    "ScoreRequest",
    "expand_url",
    # Cache
    "CacheEntry",
    "CacheStats",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "ScoreCache",
    # Coalescing
    "Coalescer",
    "PendingFetch",
    # Workers
    "ExternalWorker",
    "HttpScoreWorker",
    "parse_score_page",
    # Configuration
    "ResolverConfig",
    "load_config_file",
    # Errors
    "CoalescerError",
    "NormalizationError",
    "ScoreResolverError",
    "StorageError",
    "WorkerError",
    # Utility classes
    "AsyncRateLimiter",
    "AsyncRateLimiterRegistry",
    "ScorePair",
    "strip_diacritics",
    # Variant grouping
    "VariantGroup",
    "base_identity",
    "cache_lookup_keys",
    "group_keys",
    "normalize",
    "numeral_variants",
]
