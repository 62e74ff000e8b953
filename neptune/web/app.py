"""
HTTP interface: aggregated feed views, rebuild trigger and a search endpoint.
"""

import asyncio
import logging
import ssl
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from aiohttp import web

from neptune.config import NeptuneConfig, __version__
from neptune.mcp.tools import SERVER_NAME, SERVER_VERSION, FeedToolService, ToolError
from neptune.pipeline.feed_aggregator import FeedAggregator
from neptune.pipeline.feed_renderer import FeedRenderer, RenderError
from neptune.services.cache_service import CacheServiceError, FeedCacheStore

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", NeptuneConfig)
CACHE_KEY = web.AppKey("cache_store", FeedCacheStore)
AGGREGATOR_KEY = web.AppKey("aggregator", FeedAggregator)
TOOLS_KEY = web.AppKey("tool_service", FeedToolService)
RENDERER_KEY = web.AppKey("renderer", FeedRenderer)

# Query-string names accepted by /api/search, mapped to tool argument names
_SEARCH_PARAMS = {
    "q": "query",
    "query": "query",
    "limit": "limit",
    "useWordBoundary": "useWordBoundary",
    "fuzzyTolerance": "fuzzyTolerance",
    "dateFrom": "dateFrom",
    "dateTo": "dateTo",
    "perFeedLimit": "perFeedLimit",
}


async def index(request: web.Request) -> web.Response:
    raise web.HTTPMovedPermanently("/view")


async def view(request: web.Request) -> web.Response:
    aggregator = request.app[AGGREGATOR_KEY]
    try:
        html = await asyncio.to_thread(aggregator.html_path.read_text, encoding="utf-8")
    except FileNotFoundError:
        return web.Response(status=500, text="Aggregated RSS feed is not available.")
    return web.Response(text=html, content_type="text/html")


async def feed(request: web.Request) -> web.Response:
    aggregator = request.app[AGGREGATOR_KEY]
    try:
        xml = await asyncio.to_thread(aggregator.rss_path.read_text, encoding="utf-8")
    except FileNotFoundError:
        return web.Response(status=404, text="Feed not found.")
    return web.Response(text=xml, content_type="application/xml")


async def feed_list(request: web.Request) -> web.Response:
    feeds = await request.app[CACHE_KEY].get_feed_metadata()
    try:
        html = request.app[RENDERER_KEY].render_feed_list(feeds)
    except RenderError as e:
        logger.error(f"Error generating feed list: {e}")
        return web.Response(status=500, text="Error generating feed list")
    return web.Response(text=html, content_type="text/html")


async def rebuild(request: web.Request) -> web.Response:
    logger.info("Rebuild triggered: regenerating feeds from source")
    try:
        report = await request.app[AGGREGATOR_KEY].aggregate(use_cache=False)
    except (OSError, CacheServiceError, RenderError) as e:
        logger.error(f"Error during rebuild: {e}", exc_info=True)
        return web.Response(status=500, text="Error during rebuild.")
    return web.Response(
        text=f"Rebuild completed successfully. {report.unique_items} items from {report.feeds_with_items} feeds."
    )


async def version(request: web.Request) -> web.Response:
    return web.json_response({
        "name": SERVER_NAME,
        "version": __version__,
        "description": "Feed aggregator with an on-disk cache and search tools",
    })


async def mcp_info(request: web.Request) -> web.Response:
    return web.json_response({
        "name": SERVER_NAME,
        "version": SERVER_VERSION,
        "transport": "stdio",
        "command": "python -m neptune.main --mcp",
        "tools": request.app[TOOLS_KEY].tool_names,
    })


def search_arguments(query: Any) -> Dict[str, Any]:
    """Translate /api/search query parameters into search_feed_items arguments."""
    arguments: Dict[str, Any] = {}
    for param, name in _SEARCH_PARAMS.items():
        if param in query and name not in arguments:
            arguments[name] = query[param]

    # feedUrls may repeat or be comma separated
    feed_urls = []
    for raw in query.getall("feedUrls", []):
        feed_urls.extend(url.strip() for url in raw.split(",") if url.strip())
    if feed_urls:
        arguments["feedUrls"] = feed_urls
    return arguments


async def api_search(request: web.Request) -> web.Response:
    arguments = search_arguments(request.query)
    try:
        result = await request.app[TOOLS_KEY].search_feed_items(arguments)
    except ToolError as e:
        return web.json_response({"error": str(e)}, status=400)
    return web.json_response(result)


def create_app(
    config: NeptuneConfig,
    cache_store: FeedCacheStore,
    aggregator: FeedAggregator,
    tool_service: FeedToolService,
    enable_scheduler: bool = False
) -> web.Application:
    """Wire the routes; optionally run the aggregation scheduler alongside the server."""
    app = web.Application()
    app[CONFIG_KEY] = config
    app[CACHE_KEY] = cache_store
    app[AGGREGATOR_KEY] = aggregator
    app[TOOLS_KEY] = tool_service
    app[RENDERER_KEY] = aggregator.renderer

    app.router.add_get("/", index)
    app.router.add_get("/view", view)
    app.router.add_get("/feed", feed)
    app.router.add_get("/list", feed_list)
    app.router.add_post("/rebuild", rebuild)
    app.router.add_get("/version", version)
    app.router.add_get("/mcp/info", mcp_info)
    app.router.add_get("/api/search", api_search)

    if enable_scheduler:
        app.cleanup_ctx.append(_scheduler_context)
    return app


async def _scheduler_context(app: web.Application) -> AsyncIterator[None]:
    stop_event = asyncio.Event()
    task = asyncio.create_task(app[AGGREGATOR_KEY].run_scheduler(stop_event=stop_event))
    yield
    stop_event.set()
    await task


def build_ssl_context(cert_dir: str) -> Optional[ssl.SSLContext]:
    """TLS context from cert_dir/cert.pem and key.pem, or None if they are missing."""
    cert_path = Path(cert_dir) / "cert.pem"
    key_path = Path(cert_dir) / "key.pem"
    if not cert_path.exists() or not key_path.exists():
        logger.error(f"❌ SSL certificates not found in {cert_dir}")
        return None
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


async def serve(app: web.Application, config: NeptuneConfig, stop_event: asyncio.Event) -> None:
    """Serve until stop_event is set."""
    ssl_context = None
    if config.use_https:
        ssl_context = build_ssl_context(config.cert_dir)
        if ssl_context is None:
            raise SystemExit("HTTPS requested but certificates are missing; set USE_HTTPS=false to use HTTP")

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, port=config.port, ssl_context=ssl_context)
    await site.start()

    scheme = "https" if ssl_context else "http"
    logger.info(f"🌐 Serving on {scheme}://localhost:{config.port}")
    try:
        await stop_event.wait()
    finally:
        await runner.cleanup()
