import asyncio
import json

import pytest

from conftest import make_item, rfc822, rss_document, write_opml
from neptune.models.content import FeedInfo, FeedMetadata
from neptune.pipeline.feed_aggregator import FeedAggregator, merge_items
from neptune.services.feed_extractor import FeedExtractor
from neptune.services.rss import FeedFetchError

FEED_A = "https://a.example.com/feed.xml"
FEED_B = "https://b.example.com/feed.xml"
FEED_C = "https://c.example.com/feed.xml"


class FakeFetcher:
    """Serves canned documents; URLs missing from the map fail."""

    def __init__(self, documents):
        self.documents = documents
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        if url not in self.documents:
            raise FeedFetchError(f"HTTP 503 for {url}")
        return self.documents[url]


def document(title, link, *entries):
    return rss_document(title, link, [
        {"title": entry_title, "link": entry_link, "pubDate": rfc822(days)}
        for entry_title, entry_link, days in entries
    ])


@pytest.fixture
def feeds(opml_path):
    metadata = [
        FeedMetadata(url=FEED_A, title="Feed A", default_image_url="https://a.example.com/logo.png"),
        FeedMetadata(url=FEED_B, title="Feed B"),
    ]
    write_opml(opml_path, metadata)
    return metadata


@pytest.fixture
def documents():
    return {
        FEED_A: document(
            "Feed A", "https://a.example.com",
            ("A newest", "https://a.example.com/1", 1),
            ("Shared story", "https://shared.example.com/story", 3),
        ),
        FEED_B: document(
            "Feed B", "https://b.example.com",
            ("B middle", "https://b.example.com/1", 2),
            ("Shared story again", "https://shared.example.com/story", 4),
        ),
    }


def test_merge_items_dedupes_by_link_and_sorts_newest_first():
    first = FeedInfo(title="A", link="", items=[
        make_item("Old", link="https://x/1", pub_date="Mon, 02 Feb 2026 10:00:00 GMT"),
        make_item("Dup", link="https://x/2", pub_date="Tue, 10 Feb 2026 10:00:00 GMT"),
    ])
    second = FeedInfo(title="B", link="", items=[
        make_item("Dup later", link="https://x/2", pub_date="Wed, 25 Feb 2026 10:00:00 GMT"),
        make_item("New", link="https://x/3", pub_date="Wed, 25 Feb 2026 10:00:00 GMT"),
    ])

    merged = merge_items([first, second])

    assert [item.title for item in merged] == ["New", "Dup", "Old"]


@pytest.mark.asyncio
async def test_aggregate_writes_cache_and_outputs(config, cache_store, feeds, documents):
    aggregator = FeedAggregator(config, cache_store, fetcher=FakeFetcher(documents))

    report = await aggregator.aggregate()

    assert report.feeds_total == 2
    assert report.feeds_failed == 0
    assert report.items_total == 4
    assert report.unique_items == 3

    assert cache_store.raw_path(FEED_A).exists()
    items = await cache_store.get_cached_items(FEED_A)
    assert [item.title for item in items] == ["A newest", "Shared story"]
    assert all(item.image_url == "https://a.example.com/logo.png" for item in items)

    index = json.loads(cache_store.metadata_index_path.read_text(encoding="utf-8"))
    assert {entry["url"]: entry["itemCount"] for entry in index["feeds"]} == {FEED_A: 2, FEED_B: 2}

    rss = aggregator.rss_path.read_text(encoding="utf-8")
    aggregated = FeedExtractor().extract(rss)
    assert [item.title for item in aggregated.items] == ["A newest", "B middle", "Shared story"]
    assert "A newest" in aggregator.html_path.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_fetch_failure_falls_back_to_cached_document(config, cache_store, feeds, documents):
    cache_store.write_raw_feed(FEED_B, documents[FEED_B])
    fetcher = FakeFetcher({FEED_A: documents[FEED_A]})
    aggregator = FeedAggregator(config, cache_store, fetcher=fetcher)

    report = await aggregator.aggregate()

    assert report.feeds_failed == 1
    assert report.failed_feeds == [FEED_B]
    assert report.feeds_with_items == 2
    assert aggregator.error_log.get_error_statistics()["failing_feeds"] == {FEED_B: 1}
    titles = [item.title for item in FeedExtractor().extract(aggregator.rss_path.read_text(encoding="utf-8")).items]
    assert "B middle" in titles


@pytest.mark.asyncio
async def test_failed_feed_without_cache_contributes_nothing(config, cache_store, feeds, documents):
    aggregator = FeedAggregator(config, cache_store, fetcher=FakeFetcher({FEED_A: documents[FEED_A]}))

    report = await aggregator.aggregate()

    assert report.feeds_with_items == 1
    assert report.unique_items == 2
    assert await cache_store.get_cached_items(FEED_B) is None


@pytest.mark.asyncio
async def test_use_cache_skips_fetching_cached_feeds(config, cache_store, feeds, documents):
    cache_store.write_raw_feed(FEED_A, documents[FEED_A])
    fetcher = FakeFetcher(documents)
    aggregator = FeedAggregator(config, cache_store, fetcher=fetcher)

    await aggregator.aggregate(use_cache=True)

    assert fetcher.calls == [FEED_B]


@pytest.mark.asyncio
async def test_unparseable_feed_is_recorded(config, cache_store, opml_path, documents):
    write_opml(opml_path, [FeedMetadata(url=FEED_A, title="Feed A"), FeedMetadata(url=FEED_C, title="Broken")])
    fetcher = FakeFetcher({FEED_A: documents[FEED_A], FEED_C: "<html><body>Moved</body></html>"})
    aggregator = FeedAggregator(config, cache_store, fetcher=fetcher)

    report = await aggregator.aggregate()

    assert report.failed_feeds == [FEED_C]
    [recent] = aggregator.error_log.recent(1)
    assert recent.error_message == f"Could not parse feed: {FEED_C}"


@pytest.mark.asyncio
async def test_empty_feed_list_still_renders(config, cache_store, opml_path):
    write_opml(opml_path, [])
    aggregator = FeedAggregator(config, cache_store, fetcher=FakeFetcher({}))

    report = await aggregator.aggregate()

    assert report.unique_items == 0
    assert aggregator.rss_path.exists()
    assert "No items yet." in aggregator.html_path.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_scheduler_runs_then_stops(config, cache_store, feeds, documents):
    aggregator = FeedAggregator(config, cache_store, fetcher=FakeFetcher(documents))
    stop_event = asyncio.Event()

    task = asyncio.create_task(aggregator.run_scheduler(interval_minutes=60, stop_event=stop_event))
    for _ in range(200):
        if aggregator.last_report is not None:
            break
        await asyncio.sleep(0.01)
    stop_event.set()
    await asyncio.wait_for(task, timeout=5)

    assert aggregator.last_report is not None
    assert aggregator.last_report.unique_items == 3
