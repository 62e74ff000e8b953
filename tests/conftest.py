from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from neptune.config import NeptuneConfig
from neptune.models.content import FeedInfo, FeedItem, FeedMetadata
from neptune.services.cache_service import FeedCacheStore
from neptune.services.opml import FeedListLoader
from neptune.services.search.search_service import SearchService
from neptune.utils.error_monitoring import FeedErrorLog


def rfc822(days_ago: float = 1, now: Optional[datetime] = None) -> str:
    """RFC 822 date string relative to now."""
    reference = now or datetime.now(timezone.utc)
    return format_datetime(reference - timedelta(days=days_ago), usegmt=True)


def make_item(title: str, **overrides) -> FeedItem:
    data = {
        "title": title,
        "description": "",
        "link": f"https://example.com/{abs(hash(title))}",
        "pub_date": "Fri, 27 Feb 2026 12:00:00 GMT",
        "source": "Example Blog",
        "source_link": "https://example.com",
    }
    data.update(overrides)
    return FeedItem(**data)


def write_opml(path: Path, feeds: List[FeedMetadata]) -> Path:
    outlines = "\n".join(
        f'    <outline type="rss" text="{feed.title}" title="{feed.title}" xmlUrl="{feed.url}"'
        + (f' defaultImageUrl="{feed.default_image_url}"' if feed.default_image_url else "")
        + " />"
        for feed in feeds
    )
    path.write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<opml version="2.0">\n'
        '  <head><title>Test feeds</title></head>\n'
        '  <body>\n'
        f'{outlines}\n'
        '  </body>\n'
        '</opml>\n',
        encoding="utf-8",
    )
    return path


def rss_document(title: str, link: str, items: List[Dict[str, str]]) -> str:
    entries = []
    for item in items:
        extra = item.get("extra", "")
        entries.append(
            "    <item>\n"
            f"      <title>{item['title']}</title>\n"
            f"      <link>{item['link']}</link>\n"
            f"      <description>{item.get('description', '')}</description>\n"
            + (f"      <pubDate>{item['pubDate']}</pubDate>\n" if item.get("pubDate") else "")
            + extra
            + "    </item>\n"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<rss version="2.0">\n'
        "  <channel>\n"
        f"    <title>{title}</title>\n"
        f"    <link>{link}</link>\n"
        "    <description>Test channel</description>\n"
        + "".join(entries)
        + "  </channel>\n"
        "</rss>\n"
    )


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def opml_path(tmp_path) -> Path:
    return tmp_path / "feeds.opml"


@pytest.fixture
def cache_store(cache_dir, opml_path) -> FeedCacheStore:
    return FeedCacheStore(str(cache_dir), feed_list=FeedListLoader(str(opml_path)))


@pytest.fixture
def error_log() -> FeedErrorLog:
    return FeedErrorLog()


@pytest.fixture
def search_service(cache_store, error_log) -> SearchService:
    return SearchService(cache_store, error_log=error_log, batch_size=2)


@pytest.fixture
def populate(cache_store, opml_path):
    """Write an OPML list and one item cache per feed: populate({url: (title, [items])})."""

    def _populate(feeds: Dict[str, tuple]) -> List[FeedMetadata]:
        metadata = [FeedMetadata(url=url, title=title) for url, (title, _) in feeds.items()]
        write_opml(opml_path, metadata)
        for url, (title, items) in feeds.items():
            if items is None:
                continue
            cache_store.write_item_cache(url, FeedInfo(title=title, link=url, items=items))
        return metadata

    return _populate


@pytest.fixture
def config(tmp_path, opml_path) -> NeptuneConfig:
    return NeptuneConfig(
        cache_dir=str(tmp_path / "cache"),
        output_dir=str(tmp_path / "output"),
        opml_file=str(opml_path),
        log_dir=str(tmp_path / "logs"),
        aggregation_concurrency=2,
    )
