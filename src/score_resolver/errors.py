"""Exception types raised by score_resolver."""

from __future__ import annotations


class ScoreResolverError(Exception):
    """Base class for score_resolver errors."""


class NormalizationError(ScoreResolverError, ValueError):
    """A raw item name could not be turned into an item key."""


class CoalescerError(ScoreResolverError, RuntimeError):
    """The in-flight registry was used against its contract.

    Raised for programmer errors such as completing a key twice.
    """


class StorageError(ScoreResolverError):
    """The cache backing store could not be read or written."""


class WorkerError(ScoreResolverError):
    """An external fetch failed in a way the worker could not absorb."""
