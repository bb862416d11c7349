"""In-flight fetch registry.

Concurrent requests for the same item key share one external fetch. The
first caller to ``register`` a key owns the fetch and must end it with
exactly one ``complete`` or ``fail``; everyone else awaits the shared
handle.

Registration is a plain synchronous check-and-insert, so on a single event
loop no other coroutine can run between the check and the insert.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from score_resolver.errors import CoalescerError
from score_resolver.utils import ScorePair


@dataclass
class PendingFetch:
    """Shared handle for one outstanding fetch.

    Attributes:
        key: Item key being fetched
        future: Resolves to the fetched ScorePair, or None on failure
        started: Unix timestamp when the fetch was registered
    """

    key: str
    future: asyncio.Future = field(repr=False)
    started: float = field(default_factory=time.time)

    def done(self) -> bool:
        return self.future.done()

    async def wait(self) -> ScorePair | None:
        """Wait for the owner to publish a result.

        Cancelling a waiter does not cancel the shared fetch.
        """
        return await asyncio.shield(self.future)


class Coalescer:
    """Process-wide registry of in-flight fetches keyed by item key.

    Construct one per process and pass it to every BatchResolver that
    should share fetches.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._pending: dict[str, PendingFetch] = {}
        self.logger = logger or logging.getLogger(__name__)

    def register(self, key: str) -> tuple[PendingFetch, bool]:
        """Atomically look up or create the handle for a key.

        Must be called from a running event loop.

        Args:
            key: Item key about to be fetched

        Returns:
            Tuple of (handle, already_in_flight). When already_in_flight is
            True the caller must await the handle instead of fetching.
        """
        existing = self._pending.get(key)
        if existing is not None:
            self.logger.debug("Waiting for existing request for %s", key)
            return existing, True
        handle = PendingFetch(key=key, future=asyncio.get_running_loop().create_future())
        self._pending[key] = handle
        return handle, False

    def complete(self, key: str, result: ScorePair | None) -> None:
        """Publish a result to every awaiter and release the key."""
        self._release(key, result)

    def fail(self, key: str, exc: BaseException | None = None) -> None:
        """Publish an absent result to every awaiter and release the key."""
        if exc is not None:
            self.logger.debug("Fetch for %s failed: %s", key, exc)
        self._release(key, None)

    def _release(self, key: str, result: ScorePair | None) -> None:
        handle = self._pending.pop(key, None)
        if handle is None:
            raise CoalescerError(f"No in-flight fetch registered for {key!r}")
        if handle.future.done():
            raise CoalescerError(f"In-flight fetch for {key!r} was already resolved")
        handle.future.set_result(result)

    def in_flight(self, key: str) -> bool:
        return key in self._pending

    def keys(self) -> list[str]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)
