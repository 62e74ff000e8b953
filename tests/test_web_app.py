import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer
from multidict import MultiDict

from conftest import make_item, rfc822, rss_document
from neptune.mcp.tools import FeedToolService
from neptune.pipeline.feed_aggregator import FeedAggregator
from neptune.services.rss import FeedFetchError
from neptune.web.app import create_app, search_arguments

FEED_A = "https://a.example.com/feed.xml"
FEED_B = "https://b.example.com/feed.xml"


class StaticFetcher:
    def __init__(self, documents):
        self.documents = documents

    async def fetch(self, url):
        if url not in self.documents:
            raise FeedFetchError(f"HTTP 404 for {url}")
        return self.documents[url]


@pytest.fixture
def documents():
    return {
        FEED_A: rss_document("Feed A", "https://a.example.com", [
            {"title": "Fresh GIS post", "link": "https://a.example.com/1", "pubDate": rfc822(1)},
        ]),
    }


@pytest.fixture
def app(config, cache_store, search_service, documents):
    aggregator = FeedAggregator(config, cache_store, fetcher=StaticFetcher(documents))
    tools = FeedToolService(cache_store, search_service, config.output_dir)
    return create_app(config, cache_store, aggregator, tools)


@pytest_asyncio.fixture
async def client(app):
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


def test_search_arguments_maps_query_parameters():
    query = MultiDict([
        ("q", "gis"),
        ("limit", "5"),
        ("fuzzyTolerance", "2"),
        ("feedUrls", f"{FEED_A},{FEED_B}"),
        ("feedUrls", "https://c.example.com/rss"),
    ])

    assert search_arguments(query) == {
        "query": "gis",
        "limit": "5",
        "fuzzyTolerance": "2",
        "feedUrls": [FEED_A, FEED_B, "https://c.example.com/rss"],
    }


@pytest.mark.asyncio
async def test_root_redirects_to_view(client):
    resp = await client.get("/", allow_redirects=False)

    assert resp.status == 301
    assert resp.headers["Location"] == "/view"


@pytest.mark.asyncio
async def test_views_before_first_aggregation(client):
    view = await client.get("/view")
    assert view.status == 500
    assert await view.text() == "Aggregated RSS feed is not available."

    feed = await client.get("/feed")
    assert feed.status == 404


@pytest.mark.asyncio
async def test_rebuild_then_serve_outputs(client, populate):
    populate({FEED_A: ("Feed A", None), FEED_B: ("Feed B", None)})

    rebuild = await client.post("/rebuild")
    assert rebuild.status == 200
    assert (await rebuild.text()).startswith("Rebuild completed successfully.")

    feed = await client.get("/feed")
    assert feed.status == 200
    assert feed.content_type == "application/xml"
    assert "Fresh GIS post" in await feed.text()

    view = await client.get("/view")
    assert view.content_type == "text/html"
    assert "Fresh GIS post" in await view.text()


@pytest.mark.asyncio
async def test_feed_list_is_sorted_by_title(client, populate):
    populate({FEED_B: ("Zebra Feed", None), FEED_A: ("Alpha Feed", None)})

    resp = await client.get("/list")
    text = await resp.text()

    assert resp.status == 200
    assert text.index("Alpha Feed") < text.index("Zebra Feed")


@pytest.mark.asyncio
async def test_version_and_mcp_info(client):
    version = await (await client.get("/version")).json()
    info = await (await client.get("/mcp/info")).json()

    assert version["name"] == "neptune-feed-cache"
    assert version["version"] == info["version"]
    assert info["transport"] == "stdio"
    assert "search_feed_items" in info["tools"]


@pytest.mark.asyncio
async def test_api_search(client, populate):
    populate({FEED_A: ("Feed A", [make_item("GIS mapping tools", source="Feed A")])})

    resp = await client.get("/api/search", params={"q": '"gis mapping"'})
    data = await resp.json()

    assert resp.status == 200
    assert data["metadata"]["totalMatches"] == 1
    assert data["results"][0]["relevanceScore"] == 20


@pytest.mark.asyncio
async def test_api_search_requires_query(client):
    resp = await client.get("/api/search")

    assert resp.status == 400
    assert (await resp.json())["error"] == "query is required"
