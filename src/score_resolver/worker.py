"""External score workers.

A worker performs the slow lookup for one item key against one URL. The
batch resolver only depends on the ExternalWorker interface; HttpScoreWorker
is the reference implementation that downloads a review page and reads the
critic and user scores out of it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from bs4 import BeautifulSoup

from score_resolver.errors import WorkerError
from score_resolver.utils import AsyncRateLimiterRegistry, ScorePair

CRITIC_SCORE_SELECTOR = ".c-productScoreInfo_scoreNumber span"
AUDIENCE_SCORE_SELECTOR = ".c-productScoreInfo_scoreNumber .c-siteReviewScore_background-user span"


class ExternalWorker(ABC):
    """Abstract base class for score lookups.

    Implementations must:
    - be safe to call again for the same key (idempotent lookups)
    - release anything they allocate on every exit path
    - return None rather than a partial pair when scores are missing
    """

    @abstractmethod
    async def fetch(self, key: str, url: str) -> ScorePair | None:
        """Look up the scores for one item.

        Args:
            key: Normalized item key (for logging and routing)
            url: Review page to read

        Returns:
            ScorePair with both scores, or None if the page has none.

        Raises:
            Exception: Any failure; the resolver turns it into an absent result.
        """
        ...


def parse_score_page(html: str) -> ScorePair | None:
    """Extract the critic and user scores from a review page.

    Args:
        html: Page markup

    Returns:
        ScorePair if both scores are on the page, None otherwise.
    """
    soup = BeautifulSoup(html, "html.parser")
    critic_el = soup.select_one(CRITIC_SCORE_SELECTOR)
    audience_el = soup.select_one(AUDIENCE_SCORE_SELECTOR)
    critic = critic_el.get_text(strip=True) if critic_el else None
    audience = audience_el.get_text(strip=True) if audience_el else None
    scores = ScorePair(critic=critic or None, audience=audience or None)
    return scores if scores.is_complete else None


class HttpScoreWorker(ExternalWorker):
    """Worker that reads scores from review pages over HTTP.

    This worker provides:
    - Per-service rate limiting via AsyncRateLimiterRegistry
    - Automatic retry with exponential backoff for transient failures
    - Streamed responses that are always closed, even on errors
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        rate_limiters: AsyncRateLimiterRegistry | None = None,
        timeout: float = 20.0,
        user_agent: str = "score-resolver/1.0 (async)",
        service: str = "metacritic",
        max_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the HTTP worker.

        Args:
            rate_limiters: Per-service rate limiters; a default registry is
                created when omitted
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            service: Rate limiter service name for the review source
            max_attempts: Total attempts per fetch, including the first
            client: Optional pre-built httpx.AsyncClient (not closed by
                close() since the caller owns it)
            logger: Optional logger
        """
        self.rate_limiters = rate_limiters or AsyncRateLimiterRegistry()
        self.timeout = timeout
        self.user_agent = user_agent
        self.service = service
        self.max_attempts = max(max_attempts, 1)
        self._client = client
        self._owns_client = client is None
        self.logger = logger or logging.getLogger(__name__)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client instance."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
            )
        return self._client

    async def _get_page(self, url: str) -> str | None:
        """Download a page, returning None for 404 and raising on other errors."""
        backoff = 1.0
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            await self.rate_limiters.wait(self.service)
            try:
                async with self.client.stream("GET", url, headers={"Accept": "text/html"}) as resp:
                    if resp.status_code == 404:
                        return None
                    if resp.status_code in self.RETRYABLE_STATUS:
                        raise httpx.HTTPStatusError(
                            f"Status {resp.status_code}",
                            request=resp.request,
                            response=resp,
                        )
                    if resp.status_code >= 400:
                        raise WorkerError(f"Review page returned status {resp.status_code}: {url}")
                    await resp.aread()
                    return resp.text
            except httpx.HTTPError as e:
                last_error = e
                if attempt < self.max_attempts - 1:
                    self.logger.debug("Retrying %s after error: %s", url, e)
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 16.0)

        raise WorkerError(f"Network failure after {self.max_attempts} attempts for {url}") from last_error

    async def fetch(self, key: str, url: str) -> ScorePair | None:
        if not url:
            raise WorkerError(f"No review URL for {key}")
        self.logger.debug("Fetching scores for %s from %s", key, url)
        html = await self._get_page(url)
        if html is None:
            self.logger.debug("No review page for %s at %s", key, url)
            return None
        scores = parse_score_page(html)
        if scores is None:
            self.logger.debug("No scores found for %s at %s", key, url)
        else:
            self.logger.debug("Got scores for %s: %s", key, scores.to_dict())
        return scores

    async def close(self) -> None:
        """Close the HTTP client if this worker created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpScoreWorker:
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()
