"""
On-disk feed cache.

Per feed (keyed by the hex-encoded feed URL) the cache directory holds:
- <hex>.xml          raw document as last fetched
- <hex>.items.json   items extracted from that document

plus a global .metadata-index.json describing every cached feed. The
aggregation pipeline writes these files; search and the tool layer only read.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from neptune.models.content import FeedInfo, FeedItem, FeedMetadata
from neptune.services.feed_extractor import FeedExtractor
from neptune.services.opml import FeedListLoader
from neptune.utils.date_parsing import parse_feed_date

CACHE_FORMAT_VERSION = "1.0"
METADATA_INDEX_NAME = ".metadata-index.json"


class CacheServiceError(Exception):
    """Raised when cached content exists but cannot be read or parsed"""
    pass


class LRUCache:
    """Small least-recently-used map; single-key operations only."""

    def __init__(self, max_size: int = 50):
        self.max_size = max_size
        self._data: "OrderedDict[str, Any]" = OrderedDict()

    def get(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def set(self, key: str, value: Any) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self.max_size:
            self._data.popitem(last=False)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass
class CachedParsedFeed:
    """Parsed feed plus the mtime of the file it was parsed from"""
    feed_info: FeedInfo
    mtime: float


def feed_key(feed_url: str) -> str:
    """Hex encoding of the feed URL, used as the cache file stem."""
    return feed_url.encode('utf-8').hex()


def _mtime(path: Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except FileNotFoundError:
        return None


class FeedCacheStore:
    """
    File-backed feed cache with an in-memory parsed-feed LRU.

    The LRU is only ever trusted after comparing the entry's recorded mtime
    with the file on disk.
    """

    def __init__(
        self,
        cache_dir: str,
        feed_list: Optional[FeedListLoader] = None,
        extractor: Optional[FeedExtractor] = None,
        parsed_cache_size: int = 50
    ):
        self.cache_dir = Path(cache_dir)
        self.feed_list = feed_list
        self.extractor = extractor or FeedExtractor()
        self._parsed_cache = LRUCache(parsed_cache_size)
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def raw_path(self, feed_url: str) -> Path:
        return self.cache_dir / f"{feed_key(feed_url)}.xml"

    def items_path(self, feed_url: str) -> Path:
        return self.cache_dir / f"{feed_key(feed_url)}.items.json"

    @property
    def metadata_index_path(self) -> Path:
        return self.cache_dir / METADATA_INDEX_NAME

    def ensure_dirs(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Write side (aggregation only)
    # ------------------------------------------------------------------

    def write_raw_feed(self, feed_url: str, content: str) -> Path:
        self.ensure_dirs()
        path = self.raw_path(feed_url)
        path.write_text(content, encoding='utf-8')
        return path

    def write_item_cache(self, feed_url: str, feed_info: FeedInfo) -> None:
        """Persist extracted items; failures are logged, aggregation continues."""
        cache_data = {
            'version': CACHE_FORMAT_VERSION,
            'feedUrl': feed_url,
            'lastUpdated': datetime.now(timezone.utc).isoformat(),
            'feed': {'title': feed_info.title, 'link': feed_info.link},
            'items': [item.to_dict() for item in feed_info.items],
        }
        try:
            self.ensure_dirs()
            self.items_path(feed_url).write_text(
                json.dumps(cache_data, indent=2, ensure_ascii=False), encoding='utf-8'
            )
        except OSError as e:
            self.logger.error(f"Error writing item cache for {feed_url}: {e}")

    def write_metadata_index(self, feeds: List[Dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        index = {
            'version': CACHE_FORMAT_VERSION,
            'lastUpdated': now,
            'feeds': [
                {
                    'url': feed['url'],
                    'title': feed.get('title', ''),
                    'itemCount': feed.get('itemCount', 0),
                    'lastUpdated': feed.get('lastUpdated') or now,
                    'cachePath': str(self.raw_path(feed['url'])),
                }
                for feed in feeds
            ],
        }
        try:
            self.ensure_dirs()
            self.metadata_index_path.write_text(json.dumps(index, indent=2, ensure_ascii=False), encoding='utf-8')
        except OSError as e:
            self.logger.error(f"Error writing metadata index: {e}")

    # ------------------------------------------------------------------
    # Synchronous read helpers (run in worker threads)
    # ------------------------------------------------------------------

    def read_raw_feed(self, feed_url: str) -> Optional[str]:
        path = self.raw_path(feed_url)
        try:
            return path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheServiceError(f"Cannot read cached feed {feed_url}: {e}") from e

    def read_metadata_index(self) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(self.metadata_index_path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self.logger.error(f"Error reading metadata index: {e}")
            return None

    def read_item_cache(self, feed_url: str) -> Optional[Dict[str, Any]]:
        """
        Item cache contents, or None when missing or older than the raw XML.

        Raises:
            CacheServiceError: the file exists but is not valid item-cache JSON
        """
        path = self.items_path(feed_url)
        try:
            cache_data = json.loads(path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise CacheServiceError(f"Corrupt item cache for {feed_url}: {e}") from e

        if (not isinstance(cache_data, dict)
                or not isinstance(cache_data.get('items'), list)
                or not isinstance(cache_data.get('feed') or {}, dict)):
            raise CacheServiceError(f"Malformed item cache for {feed_url}")

        raw_mtime = _mtime(self.raw_path(feed_url))
        if raw_mtime is not None:
            cached_at = parse_feed_date(cache_data.get('lastUpdated'))
            raw_time = datetime.fromtimestamp(raw_mtime, timezone.utc)
            if cached_at is None or raw_time > cached_at:
                self.logger.debug(f"Item cache stale for {feed_url}")
                return None

        return cache_data

    # ------------------------------------------------------------------
    # Async read API
    # ------------------------------------------------------------------

    async def get_feed_metadata(self) -> List[FeedMetadata]:
        if self.feed_list is None:
            return []
        return await asyncio.to_thread(self.feed_list.load)

    async def has_cached_items(self, feed_url: str) -> bool:
        items_exists, raw_exists = await asyncio.gather(
            asyncio.to_thread(self.items_path(feed_url).exists),
            asyncio.to_thread(self.raw_path(feed_url).exists),
        )
        return items_exists or raw_exists

    async def last_modified(self, feed_url: str) -> Optional[datetime]:
        mtime = await asyncio.to_thread(_mtime, self.raw_path(feed_url))
        if mtime is None:
            return None
        return datetime.fromtimestamp(mtime, timezone.utc)

    async def get_feed_info(self, feed_url: str) -> Optional[FeedInfo]:
        """
        Items for one feed, from the item cache when fresh, otherwise parsed
        from the raw document.

        Returns:
            FeedInfo with feed_url set on every item, or None if nothing is cached

        Raises:
            CacheServiceError: cached content exists but is unreadable
        """
        cache_data = await asyncio.to_thread(self.read_item_cache, feed_url)
        if cache_data is not None:
            feed = cache_data.get('feed') or {}
            items = [
                replace(FeedItem.from_dict(raw), feed_url=feed_url)
                for raw in cache_data['items']
                if isinstance(raw, dict)
            ]
            return FeedInfo(
                title=str(feed.get('title') or ''),
                link=str(feed.get('link') or ''),
                items=items,
            )

        feed_info = await self._get_parsed_raw_feed(feed_url)
        if feed_info is None:
            return None
        return replace(
            feed_info,
            items=[replace(item, feed_url=feed_url) for item in feed_info.items],
        )

    async def get_cached_items(self, feed_url: str) -> Optional[List[FeedItem]]:
        feed_info = await self.get_feed_info(feed_url)
        return feed_info.items if feed_info is not None else None

    async def _get_parsed_raw_feed(self, feed_url: str) -> Optional[FeedInfo]:
        path = self.raw_path(feed_url)
        key = str(path)
        mtime = await asyncio.to_thread(_mtime, path)
        if mtime is None:
            self._parsed_cache.delete(key)
            return None

        cached = self._parsed_cache.get(key)
        if cached is not None:
            if cached.mtime == mtime:
                return cached.feed_info
            self._parsed_cache.delete(key)

        content = await asyncio.to_thread(self.read_raw_feed, feed_url)
        if content is None:
            return None
        feed_info = await asyncio.to_thread(self.extractor.extract, content, feed_url)
        if feed_info is None:
            raise CacheServiceError(f"Could not parse cached feed: {feed_url}")

        self._parsed_cache.set(key, CachedParsedFeed(feed_info=feed_info, mtime=mtime))
        return feed_info

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear_memory_cache(self) -> None:
        self._parsed_cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            'inMemoryCacheSize': len(self._parsed_cache),
            'maxInMemoryCacheSize': self._parsed_cache.max_size,
            'cacheDir': str(self.cache_dir),
        }
