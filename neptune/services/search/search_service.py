"""
Search orchestration across every cached feed.

Feeds are processed in fixed-size batches (feeds within a batch concurrently),
each feed's matches are capped before the global merge so one prolific feed
cannot crowd out the others.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from neptune.models.content import FeedItem, FeedMetadata, ScoredItem, SearchMetadata, SearchResult
from neptune.services.cache_service import CacheServiceError, FeedCacheStore
from neptune.services.search.query_parser import ParsedQuery, parse_query
from neptune.services.search.relevance_scorer import RelevanceScorer, clamp_fuzzy_tolerance
from neptune.utils.date_parsing import date_sort_key, parse_date_bound, parse_feed_date
from neptune.utils.error_monitoring import FeedErrorLog

DEFAULT_BATCH_SIZE = 10
DEFAULT_PER_FEED_LIMIT = 10
DEFAULT_RESULT_LIMIT = 20


class SearchTimeoutError(Exception):
    """Raised when a search does not finish within the caller's deadline"""
    pass


@dataclass
class SearchOptions:
    """Per-call search options"""
    use_word_boundary: bool = True
    fuzzy_tolerance: int = 1
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    feed_urls: Optional[Sequence[str]] = None
    per_feed_limit: int = DEFAULT_PER_FEED_LIMIT

    def __post_init__(self):
        self.fuzzy_tolerance = clamp_fuzzy_tolerance(self.fuzzy_tolerance)
        if self.per_feed_limit is None or self.per_feed_limit < 1:
            self.per_feed_limit = DEFAULT_PER_FEED_LIMIT


@dataclass
class DateWindow:
    """[start, end) window on parsed publication dates; None bounds are open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.start is not None or self.end is not None

    def contains(self, pub_date: str) -> bool:
        if not self.active:
            return True
        published = parse_feed_date(pub_date)
        if published is None:
            return False
        if self.start is not None and published < self.start:
            return False
        if self.end is not None and published >= self.end:
            return False
        return True


class SearchService:
    """
    Ranks cached feed items against a free-text query.

    Reads only; the cache store is a collaborator and never written to.
    """

    def __init__(
        self,
        cache_store: FeedCacheStore,
        error_log: Optional[FeedErrorLog] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        scorer: Optional[RelevanceScorer] = None
    ):
        self.cache_store = cache_store
        self.error_log = error_log or FeedErrorLog()
        self.batch_size = max(1, batch_size)
        self.scorer = scorer or RelevanceScorer()
        self.logger = logging.getLogger(__name__)

    async def search(
        self,
        query: str,
        limit: int = DEFAULT_RESULT_LIMIT,
        options: Optional[SearchOptions] = None,
        feed_metadata: Optional[List[FeedMetadata]] = None
    ) -> SearchResult:
        """
        Search every configured (or allow-listed) feed.

        Args:
            query: Raw query string, see query_parser for the syntax
            limit: Maximum number of results returned
            options: Matching, date and feed filters
            feed_metadata: Feed list to search; loaded from the cache store when omitted

        Returns:
            SearchResult, always complete; broken feeds contribute nothing
        """
        started = time.perf_counter()
        options = options or SearchOptions()
        parsed = parse_query(query)
        window = DateWindow(parse_date_bound(options.date_from), parse_date_bound(options.date_to))

        if feed_metadata is None:
            feed_metadata = await self.cache_store.get_feed_metadata()
        feeds = self._select_feeds(feed_metadata, options.feed_urls)

        per_feed_results: List[List[ScoredItem]] = []
        for i in range(0, len(feeds), self.batch_size):
            batch = feeds[i:i + self.batch_size]
            batch_results = await asyncio.gather(*[
                self._search_feed(feed, parsed, options, window) for feed in batch
            ])
            per_feed_results.extend(batch_results)

        merged = [scored for feed_results in per_feed_results for scored in feed_results]
        merged.sort(key=lambda s: (-s.relevance_score, -date_sort_key(s.item.pub_date)))

        results = merged[:max(0, limit)]
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        metadata = SearchMetadata(
            total_matches=len(merged),
            returned_matches=len(results),
            feeds_searched=len(feeds),
            feeds_with_matches=len({s.item.feed_url for s in results}),
            search_time_ms=elapsed_ms,
            query_parsed=parsed.to_dict(),
        )

        self.logger.info(
            f"🔎 Search '{query}': {metadata.total_matches} matches, "
            f"{metadata.returned_matches} returned from {metadata.feeds_searched} feeds "
            f"({elapsed_ms:.1f}ms)"
        )
        return SearchResult(query=query, results=results, metadata=metadata)

    async def search_with_timeout(
        self,
        query: str,
        limit: int = DEFAULT_RESULT_LIMIT,
        options: Optional[SearchOptions] = None,
        feed_metadata: Optional[List[FeedMetadata]] = None,
        timeout: float = 30.0
    ) -> SearchResult:
        """Like search(), but all-or-nothing under a deadline."""
        try:
            return await asyncio.wait_for(
                self.search(query, limit, options, feed_metadata), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            self.logger.warning(f"Search '{query}' timed out after {timeout}s")
            raise SearchTimeoutError(f"Search timed out after {timeout} seconds") from e

    def _select_feeds(
        self,
        feed_metadata: List[FeedMetadata],
        feed_urls: Optional[Sequence[str]]
    ) -> List[FeedMetadata]:
        if not feed_urls:
            return list(feed_metadata)
        allowed = set(feed_urls)
        return [feed for feed in feed_metadata if feed.url in allowed]

    async def _load_items(self, feed_url: str) -> List[FeedItem]:
        """Cached items for one feed; absence and corruption both mean no items."""
        try:
            items = await self.cache_store.get_cached_items(feed_url)
        except (CacheServiceError, OSError, ValueError) as e:
            self.error_log.record(e, service='search', operation='load_cached_items', feed_url=feed_url)
            return []
        return items or []

    async def _search_feed(
        self,
        feed: FeedMetadata,
        query: ParsedQuery,
        options: SearchOptions,
        window: DateWindow
    ) -> List[ScoredItem]:
        items = await self._load_items(feed.url)
        if not items:
            return []

        scored: List[ScoredItem] = []
        for item in items:
            if not window.contains(item.pub_date):
                continue
            match = self.scorer.score(item, query, options.use_word_boundary, options.fuzzy_tolerance)
            if match.score <= 0:
                continue
            if item.feed_url is None:
                item.feed_url = feed.url
            scored.append(ScoredItem(
                item=item,
                relevance_score=match.score,
                matched_fields=match.matched_fields,
                match_positions=match.match_positions,
            ))

        scored.sort(key=lambda s: -s.relevance_score)
        return scored[:options.per_feed_limit]
