"""
Feed aggregation pipeline.

Fetches every OPML-listed feed, refreshes the on-disk cache the search engine
reads from, and renders the merged feed to output/aggregated.xml and
output/aggregated.html.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from neptune.config import NeptuneConfig
from neptune.models.content import FeedInfo, FeedItem, FeedMetadata
from neptune.pipeline.feed_renderer import FeedRenderer, RenderError
from neptune.services.cache_service import CacheServiceError, FeedCacheStore
from neptune.services.feed_extractor import apply_default_image
from neptune.services.rss import FeedFetcher, FeedFetchError
from neptune.utils.date_parsing import date_sort_key
from neptune.utils.error_monitoring import FeedErrorLog
from neptune.utils.logging_config import PerformanceTracker, log_aggregation_metrics

AGGREGATED_XML = "aggregated.xml"
AGGREGATED_HTML = "aggregated.html"


@dataclass
class FeedOutcome:
    """Result of refreshing one feed"""
    feed: FeedMetadata
    feed_info: Optional[FeedInfo] = None
    fetched: bool = False
    used_fallback: bool = False
    error: Optional[str] = None


@dataclass
class AggregationReport:
    """Summary of one aggregation run"""
    started_at: str
    feeds_total: int = 0
    feeds_with_items: int = 0
    feeds_failed: int = 0
    items_total: int = 0
    unique_items: int = 0
    duration_ms: float = 0.0
    rss_path: Optional[str] = None
    html_path: Optional[str] = None
    failed_feeds: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merge_items(feed_infos: List[FeedInfo]) -> List[FeedItem]:
    """Flatten, keep the first item per link, newest first."""
    seen = set()
    merged: List[FeedItem] = []
    for feed_info in feed_infos:
        for item in feed_info.items:
            if item.link in seen:
                continue
            seen.add(item.link)
            merged.append(item)
    merged.sort(key=lambda item: date_sort_key(item.pub_date), reverse=True)
    return merged


class FeedAggregator:
    """
    Refreshes the feed cache and renders the aggregated outputs.

    Runs never overlap: a rebuild requested while the scheduler is
    aggregating waits for the current run.
    """

    def __init__(
        self,
        config: NeptuneConfig,
        cache_store: FeedCacheStore,
        renderer: Optional[FeedRenderer] = None,
        fetcher: Optional[Any] = None,
        error_log: Optional[FeedErrorLog] = None
    ):
        self.config = config
        self.cache_store = cache_store
        self.renderer = renderer or FeedRenderer(config.template_dir)
        self.fetcher = fetcher
        self.error_log = error_log or FeedErrorLog()
        self.output_dir = Path(config.output_dir)
        self.last_report: Optional[AggregationReport] = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def rss_path(self) -> Path:
        return self.output_dir / AGGREGATED_XML

    @property
    def html_path(self) -> Path:
        return self.output_dir / AGGREGATED_HTML

    @asynccontextmanager
    async def _fetcher_context(self) -> AsyncIterator[Any]:
        if self.fetcher is not None:
            yield self.fetcher
            return
        async with FeedFetcher(
            user_agent=self.config.user_agent,
            timeout=self.config.feed_http_timeout_seconds,
        ) as fetcher:
            yield fetcher

    async def aggregate(self, use_cache: bool = False) -> AggregationReport:
        """
        Run one aggregation pass.

        Args:
            use_cache: Reuse raw documents already on disk instead of fetching

        Returns:
            AggregationReport for the run
        """
        async with self._lock:
            return await self._aggregate(use_cache)

    async def _aggregate(self, use_cache: bool) -> AggregationReport:
        started = time.perf_counter()
        report = AggregationReport(started_at=datetime.now(timezone.utc).isoformat())

        feeds = await self.cache_store.get_feed_metadata()
        report.feeds_total = len(feeds)
        self.logger.info(f"📡 Aggregating {len(feeds)} feeds (use_cache={use_cache})")

        semaphore = asyncio.Semaphore(max(1, self.config.aggregation_concurrency))
        async with self._fetcher_context() as fetcher:
            outcomes = await asyncio.gather(*[
                self._refresh_feed(feed, fetcher, semaphore, use_cache) for feed in feeds
            ])

        index_entries: List[Dict[str, Any]] = []
        feed_infos: List[FeedInfo] = []
        for outcome in outcomes:
            if outcome.error:
                report.feeds_failed += 1
                report.failed_feeds.append(outcome.feed.url)
            if outcome.feed_info is None:
                continue
            item_count = len(outcome.feed_info.items)
            index_entries.append({
                'url': outcome.feed.url,
                'title': outcome.feed_info.title or outcome.feed.title,
                'itemCount': item_count,
            })
            if item_count:
                report.feeds_with_items += 1
                feed_infos.append(outcome.feed_info)

        await asyncio.to_thread(self.cache_store.write_metadata_index, index_entries)

        merged = merge_items(feed_infos)
        report.items_total = sum(len(info.items) for info in feed_infos)
        report.unique_items = len(merged)

        with PerformanceTracker("render aggregated feed", self.logger):
            await self._write_outputs(merged)
        report.rss_path = str(self.rss_path)
        report.html_path = str(self.html_path)

        report.duration_ms = round((time.perf_counter() - started) * 1000, 1)
        log_aggregation_metrics(self.logger, report)
        self.last_report = report
        return report

    async def _refresh_feed(
        self,
        feed: FeedMetadata,
        fetcher: Any,
        semaphore: asyncio.Semaphore,
        use_cache: bool
    ) -> FeedOutcome:
        outcome = FeedOutcome(feed=feed)
        async with semaphore:
            content = await self._obtain_document(feed, fetcher, use_cache, outcome)
        if content is None:
            return outcome

        extractor = self.cache_store.extractor
        feed_info = await asyncio.to_thread(extractor.extract, content, feed.url)
        if feed_info is None:
            error = CacheServiceError(f"Could not parse feed: {feed.url}")
            self.error_log.record(error, service='aggregator', operation='extract', feed_url=feed.url)
            outcome.error = str(error)
            return outcome

        apply_default_image(feed_info.items, feed.default_image_url)
        await asyncio.to_thread(self.cache_store.write_item_cache, feed.url, feed_info)
        outcome.feed_info = feed_info
        self.logger.debug(f"{feed.url}: {len(feed_info.items)} items ({feed_info.format})")
        return outcome

    async def _obtain_document(
        self,
        feed: FeedMetadata,
        fetcher: Any,
        use_cache: bool,
        outcome: FeedOutcome
    ) -> Optional[str]:
        """Raw document from disk or network; cached XML is the fallback on fetch failure."""
        if use_cache:
            cached = await self._read_cached_document(feed)
            if cached is not None:
                return cached

        try:
            content = await fetcher.fetch(feed.url)
        except FeedFetchError as e:
            self.error_log.record(e, service='aggregator', operation='fetch', feed_url=feed.url)
            outcome.error = str(e)
            cached = await self._read_cached_document(feed)
            if cached is not None:
                self.logger.info(f"Using cached data for {feed.url}")
                outcome.used_fallback = True
            return cached

        try:
            await asyncio.to_thread(self.cache_store.write_raw_feed, feed.url, content)
        except OSError as e:
            self.logger.error(f"Error caching raw feed {feed.url}: {e}")
        outcome.fetched = True
        return content

    async def _read_cached_document(self, feed: FeedMetadata) -> Optional[str]:
        try:
            return await asyncio.to_thread(self.cache_store.read_raw_feed, feed.url)
        except CacheServiceError as e:
            self.error_log.record(e, service='aggregator', operation='read_cache', feed_url=feed.url)
            return None

    async def _write_outputs(self, items: List[FeedItem]) -> None:
        rss = self.renderer.render_rss(items)
        html = self.renderer.render_html(items)

        def write() -> None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self.rss_path.write_text(rss, encoding='utf-8')
            self.html_path.write_text(html, encoding='utf-8')

        await asyncio.to_thread(write)

    async def run_scheduler(
        self,
        interval_minutes: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
        run_immediately: bool = True
    ) -> None:
        """Aggregate every interval until stop_event is set."""
        interval = 60 * (interval_minutes or self.config.aggregation_interval_minutes)
        stop_event = stop_event or asyncio.Event()
        self.logger.info(f"⏰ Scheduler started: every {interval // 60} minutes")

        if not run_immediately:
            if await self._wait_or_stop(stop_event, interval):
                return

        while not stop_event.is_set():
            self.logger.info(f"Scheduled aggregation job started at {datetime.now().isoformat()}")
            try:
                await self.aggregate(use_cache=False)
            except (OSError, CacheServiceError, RenderError) as e:
                self.logger.error(f"Scheduled aggregation failed: {e}", exc_info=True)
            if await self._wait_or_stop(stop_event, interval):
                break

        self.logger.info("Scheduler stopped")

    @staticmethod
    async def _wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
        """True when stop_event was set before the timeout elapsed."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
