"""
HTTP fetching of feed documents.
"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from neptune.config import DEFAULT_USER_AGENT

# Some publishers entity-escape the Media RSS namespace declaration
_BROKEN_MEDIA_NS = 'xmlns:media=&quot;http://search.yahoo.com/mrss/&quot;'
_MEDIA_NS = 'xmlns:media="http://search.yahoo.com/mrss/"'


class FeedFetchError(Exception):
    """Custom exception for feed fetch failures"""
    pass


def repair_feed_document(content: str) -> str:
    """Undo known publisher mistakes that break XML parsing."""
    return content.replace(_BROKEN_MEDIA_NS, _MEDIA_NS)


class FeedFetcher:
    """
    Downloads feed documents with retries and exponential backoff.

    A single aiohttp session is shared by every fetch in one aggregation run;
    use the fetcher as an async context manager, or pass a session in.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.25,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._session = session
        self._owns_session = session is None
        self.logger = logging.getLogger(__name__)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/rss+xml, application/xml, application/atom+xml, text/xml, */*",
        }

    async def __aenter__(self) -> "FeedFetcher":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str) -> str:
        """
        Fetch one feed document.

        Raises:
            FeedFetchError: every attempt failed
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                content = await self._fetch_once(url)
                return repair_feed_document(content)
            except (aiohttp.ClientError, asyncio.TimeoutError, FeedFetchError) as exc:
                last_error = exc
                self.logger.debug(f"Fetch attempt {attempt + 1}/{self.max_retries} failed for {url}: {exc}")
                if attempt < self.max_retries - 1:
                    # Exponential backoff
                    await asyncio.sleep(self.backoff_base * (2 ** attempt))

        raise FeedFetchError(str(last_error) if last_error else f"Failed to fetch {url}")

    async def _fetch_once(self, url: str) -> str:
        """Single attempt; retries are handled by fetch()."""
        if self._session is None:
            raise FeedFetchError("FeedFetcher used outside its session context")

        async with self._session.get(url, headers=self.headers, max_redirects=5) as resp:
            if resp.status != 200:
                raise FeedFetchError(f"HTTP {resp.status} for {url}")
            return await resp.text()
