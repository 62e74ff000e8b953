"""
Tool-call operations over the feed cache.

Kept free of any transport: the stdio MCP server and the HTTP app both call
FeedToolService and serialize its dict results as JSON.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from neptune.config import __version__
from neptune.services.cache_service import CacheServiceError, FeedCacheStore
from neptune.services.search.search_service import (
    DEFAULT_PER_FEED_LIMIT,
    DEFAULT_RESULT_LIMIT,
    SearchOptions,
    SearchService,
    SearchTimeoutError,
)
from neptune.utils.error_monitoring import FeedErrorLog

SERVER_NAME = "neptune-feed-cache"
SERVER_VERSION = __version__

DEFAULT_ITEM_LIMIT = 50

_DATE_HELP = (
    "Must be in ISO 8601 format (YYYY-MM-DD). If the user provides natural "
    "language dates (e.g. \"Q3 2025\", \"last month\"), convert them to ISO 8601 "
    "before calling this tool."
)

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "list_cached_feeds",
        "description": "List all feeds that are currently cached, including their titles, URLs, and item counts.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_feed_items",
        "description": "Get all items from a specific cached feed by its URL.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "feedUrl": {
                    "type": "string",
                    "description": "The URL of the feed to retrieve items from",
                },
                "limit": {
                    "type": "number",
                    "description": f"Maximum number of items to return (default: {DEFAULT_ITEM_LIMIT})",
                },
            },
            "required": ["feedUrl"],
        },
    },
    {
        "name": "search_feed_items",
        "description": (
            "Search across all cached feeds for items matching a query string. Supports "
            "multi-term search (AND/OR), field-specific queries (title:term), quoted phrases, "
            "fuzzy matching, date ranges, and feed filtering. Results are relevance-scored "
            "and sorted by relevance then date."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "Search query. Supports multi-term (AND/OR), field-specific "
                        "(title:term, description:term, source:term), quoted phrases "
                        "(\"exact phrase\") and boolean operators. Default is AND logic."
                    ),
                },
                "limit": {
                    "type": "number",
                    "description": f"Maximum number of results to return (default: {DEFAULT_RESULT_LIMIT})",
                },
                "useWordBoundary": {
                    "type": "boolean",
                    "description": "Also try word-boundary matching when substring matching fails (default: true)",
                },
                "fuzzyTolerance": {
                    "type": "number",
                    "description": "Levenshtein distance allowed for fuzzy matches, 0-2 (default: 1)",
                },
                "dateFrom": {
                    "type": "string",
                    "description": f"Only items published on or after this date. {_DATE_HELP}",
                },
                "dateTo": {
                    "type": "string",
                    "description": f"Only items published before this date (exclusive). {_DATE_HELP}",
                },
                "feedUrls": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Restrict the search to these feed URLs. Searches all feeds when omitted.",
                },
                "perFeedLimit": {
                    "type": "number",
                    "description": (
                        f"Maximum results per feed before merging (default: {DEFAULT_PER_FEED_LIMIT}). "
                        "Higher values improve recall but may slow search."
                    ),
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "get_aggregated_feed",
        "description": "Get the aggregated feed from the output directory (all feeds combined).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": f"Maximum number of items to return (default: {DEFAULT_ITEM_LIMIT})",
                },
            },
        },
    },
]


class ToolError(Exception):
    """Tool call failed in a way the client should see as an error result"""
    pass


def _int_arg(arguments: Dict[str, Any], name: str, default: int, minimum: int = 1) -> int:
    value = arguments.get(name)
    if value is None:
        return default
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError) as e:
        raise ToolError(f"Invalid value for {name}: {value!r}") from e


def _bool_arg(arguments: Dict[str, Any], name: str, default: bool) -> bool:
    value = arguments.get(name)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    return bool(value)


class FeedToolService:
    """Implements the four cache tools."""

    def __init__(
        self,
        cache_store: FeedCacheStore,
        search_service: SearchService,
        output_dir: str,
        search_timeout: float = 30.0,
        error_log: Optional[FeedErrorLog] = None
    ):
        self.cache_store = cache_store
        self.search_service = search_service
        self.output_dir = Path(output_dir)
        self.search_timeout = search_timeout
        self.error_log = error_log or search_service.error_log
        self.logger = logging.getLogger(__name__)

    @property
    def tool_names(self) -> List[str]:
        return [tool["name"] for tool in TOOL_DEFINITIONS]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Dispatch one tool call.

        Raises:
            ToolError: unknown tool, bad arguments or missing data
        """
        arguments = arguments or {}
        self.logger.info(f"🔧 Tool call: {name}")

        if name == "list_cached_feeds":
            return await self.list_cached_feeds()
        if name == "get_feed_items":
            return await self.get_feed_items(
                arguments.get("feedUrl"),
                _int_arg(arguments, "limit", DEFAULT_ITEM_LIMIT, minimum=0),
            )
        if name == "search_feed_items":
            return await self.search_feed_items(arguments)
        if name == "get_aggregated_feed":
            return await self.get_aggregated_feed(
                _int_arg(arguments, "limit", DEFAULT_ITEM_LIMIT, minimum=0)
            )

        raise ToolError(f"Unknown tool: {name}")

    async def list_cached_feeds(self) -> List[Dict[str, Any]]:
        """Configured feeds that currently have at least one cached item."""
        feeds = await self.cache_store.get_feed_metadata()
        cached: List[Dict[str, Any]] = []
        for feed in feeds:
            if not await self.cache_store.has_cached_items(feed.url):
                continue
            try:
                feed_info = await self.cache_store.get_feed_info(feed.url)
            except CacheServiceError as e:
                self.error_log.record(e, service='tools', operation='list_cached_feeds', feed_url=feed.url)
                continue
            if feed_info is None or not feed_info.items:
                continue

            last_modified = await self.cache_store.last_modified(feed.url)
            entry = feed.to_dict()
            entry["itemCount"] = len(feed_info.items)
            entry["lastUpdated"] = last_modified.isoformat() if last_modified else None
            cached.append(entry)
        return cached

    async def get_feed_items(self, feed_url: Optional[str], limit: int = DEFAULT_ITEM_LIMIT) -> Dict[str, Any]:
        if not feed_url or not isinstance(feed_url, str):
            raise ToolError("feedUrl is required")

        try:
            feed_info = await self.cache_store.get_feed_info(feed_url)
        except CacheServiceError as e:
            self.error_log.record(e, service='tools', operation='get_feed_items', feed_url=feed_url)
            raise ToolError(f"Could not parse feed: {feed_url}") from e

        if feed_info is None:
            raise ToolError(f"Feed not found in cache: {feed_url}")

        items = feed_info.items[:limit]
        return {
            "feed": {"title": feed_info.title, "link": feed_info.link},
            "items": [item.to_dict() for item in items],
            "totalItems": len(feed_info.items),
            "returnedItems": len(items),
        }

    async def search_feed_items(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        query = arguments.get("query")
        if not isinstance(query, str):
            raise ToolError("query is required")

        feed_urls = arguments.get("feedUrls")
        if feed_urls is not None and not isinstance(feed_urls, list):
            raise ToolError("feedUrls must be an array of strings")

        options = SearchOptions(
            use_word_boundary=_bool_arg(arguments, "useWordBoundary", True),
            fuzzy_tolerance=arguments.get("fuzzyTolerance", 1),
            date_from=arguments.get("dateFrom"),
            date_to=arguments.get("dateTo"),
            feed_urls=[str(url) for url in feed_urls] if feed_urls else None,
            per_feed_limit=_int_arg(arguments, "perFeedLimit", DEFAULT_PER_FEED_LIMIT),
        )
        limit = _int_arg(arguments, "limit", DEFAULT_RESULT_LIMIT, minimum=0)

        try:
            result = await self.search_service.search_with_timeout(
                query, limit, options, timeout=self.search_timeout
            )
        except SearchTimeoutError as e:
            raise ToolError(str(e)) from e
        return result.to_dict()

    async def get_aggregated_feed(self, limit: int = DEFAULT_ITEM_LIMIT) -> Dict[str, Any]:
        path = self.output_dir / "aggregated.xml"
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as e:
            raise ToolError("Aggregated feed not found. The feed aggregator may need to run first.") from e

        feed_info = await asyncio.to_thread(self.cache_store.extractor.extract, content)
        if feed_info is None:
            raise ToolError("Could not parse aggregated feed")

        items = feed_info.items[:limit]
        return {
            "feed": {"title": feed_info.title or "Aggregated Feed", "link": feed_info.link or ""},
            "items": [item.to_dict() for item in items],
            "totalItems": len(feed_info.items),
            "returnedItems": len(items),
        }
