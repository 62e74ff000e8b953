"""
Neptune command line entry point.

    python -m neptune.main --once             aggregate once and exit
    python -m neptune.main --serve            HTTP server plus the aggregation scheduler
    python -m neptune.main --mcp              MCP tool server on stdio
    python -m neptune.main --search "QUERY"   print search results as JSON
    python -m neptune.main --cache-stats      print cache and feed statistics
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

from neptune.config import NeptuneConfig, load_config
from neptune.mcp.tools import FeedToolService
from neptune.pipeline.feed_aggregator import FeedAggregator
from neptune.pipeline.feed_renderer import FeedRenderer
from neptune.services.cache_service import FeedCacheStore
from neptune.services.feed_extractor import FeedExtractor
from neptune.services.opml import FeedListLoader
from neptune.services.search.search_service import SearchOptions, SearchService
from neptune.utils.error_monitoring import FeedErrorLog
from neptune.utils.logging_config import setup_logging


@dataclass
class NeptuneServices:
    """Every long-lived collaborator, built once per process"""
    config: NeptuneConfig
    cache_store: FeedCacheStore
    search_service: SearchService
    aggregator: FeedAggregator
    tool_service: FeedToolService
    error_log: FeedErrorLog


def build_services(config: NeptuneConfig) -> NeptuneServices:
    error_log = FeedErrorLog()
    extractor = FeedExtractor(
        months_back=config.feed_months_back,
        description_max_length=config.description_max_length,
    )
    cache_store = FeedCacheStore(
        config.cache_dir,
        feed_list=FeedListLoader(config.opml_file),
        extractor=extractor,
        parsed_cache_size=config.parsed_feed_cache_size,
    )
    search_service = SearchService(cache_store, error_log=error_log, batch_size=config.search_batch_size)
    aggregator = FeedAggregator(
        config,
        cache_store,
        renderer=FeedRenderer(config.template_dir),
        error_log=error_log,
    )
    tool_service = FeedToolService(
        cache_store,
        search_service,
        config.output_dir,
        search_timeout=config.search_timeout_seconds,
        error_log=error_log,
    )
    return NeptuneServices(config, cache_store, search_service, aggregator, tool_service, error_log)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Neptune feed aggregator and search tools")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--once', action='store_true', help='Run aggregation once and exit')
    mode.add_argument('--serve', action='store_true', help='Serve HTTP and aggregate on a schedule (default)')
    mode.add_argument('--mcp', action='store_true', help='Run the MCP tool server on stdio')
    mode.add_argument('--search', metavar='QUERY', help='Search cached feeds and print JSON')
    mode.add_argument('--cache-stats', action='store_true', help='Show cache statistics')

    parser.add_argument('--use-cache', action='store_true', help='With --once, reuse cached raw feeds instead of fetching')
    parser.add_argument('--limit', type=int, default=20, help='With --search, maximum results (default: 20)')
    parser.add_argument('--fuzzy', type=int, default=1, help='With --search, fuzzy tolerance 0-2 (default: 1)')
    parser.add_argument('--date-from', help='With --search, ISO date lower bound (inclusive)')
    parser.add_argument('--date-to', help='With --search, ISO date upper bound (exclusive)')
    parser.add_argument('--feed', action='append', dest='feed_urls', help='With --search, restrict to this feed URL (repeatable)')
    return parser


async def run_search(services: NeptuneServices, args: argparse.Namespace) -> None:
    options = SearchOptions(
        fuzzy_tolerance=args.fuzzy,
        date_from=args.date_from,
        date_to=args.date_to,
        feed_urls=args.feed_urls,
    )
    result = await services.search_service.search_with_timeout(
        args.search, args.limit, options, timeout=services.config.search_timeout_seconds
    )
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


async def show_cache_stats(services: NeptuneServices) -> None:
    feeds = await services.tool_service.list_cached_feeds()
    configured = await services.cache_store.get_feed_metadata()
    stats = services.cache_store.get_cache_stats()
    stats.update({
        'configuredFeeds': len(configured),
        'cachedFeeds': len(feeds),
        'cachedItems': sum(feed['itemCount'] for feed in feeds),
        'errors': services.error_log.get_error_statistics(),
        'errorPatterns': services.error_log.detect_error_patterns(),
    })
    print("📊 Cache Statistics:")
    for key, value in stats.items():
        print(f"  {key}: {value}")


async def run_http(services: NeptuneServices) -> None:
    # Imported here so --mcp and --search do not pay for aiohttp.web
    from neptune.web.app import create_app, serve

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    app = create_app(
        services.config,
        services.cache_store,
        services.aggregator,
        services.tool_service,
        enable_scheduler=True,
    )
    await serve(app, services.config, stop_event)


async def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    config = load_config()

    # stdout belongs to the protocol in MCP mode and to the JSON output in search mode
    quiet_stdout = args.mcp or bool(args.search)
    setup_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        json_logs=config.log_format == "json",
        stream=sys.stderr if quiet_stdout else None,
    )
    logger = logging.getLogger(__name__)
    services = build_services(config)

    try:
        if args.cache_stats:
            await show_cache_stats(services)
        elif args.search:
            await run_search(services, args)
        elif args.mcp:
            from neptune.mcp.server import run_stdio_server
            await run_stdio_server(services.tool_service)
        elif args.once:
            report = await services.aggregator.aggregate(use_cache=args.use_cache)
            print("✅ Aggregation completed successfully!")
            print(f"Feeds: {report.feeds_with_items}/{report.feeds_total} with items, {report.feeds_failed} failed")
            print(f"Items: {report.unique_items} unique of {report.items_total}")
            print(f"Total time: {report.duration_ms / 1000:.2f}s")
        else:
            logger.info("Starting HTTP server and aggregation scheduler...")
            await run_http(services)
    except KeyboardInterrupt:
        logger.info("⚠️ Shutting down gracefully...")
    except Exception as e:  # noqa: BLE001
        logger.exception(f"❌ Fatal error: {e}")
        sys.exit(1)


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
