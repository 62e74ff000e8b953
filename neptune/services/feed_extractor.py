"""
Feed item extraction.

Normalizes Atom, RSS 2.0 and RDF (RSS 1.0) documents into FeedItem lists,
dropping entries outside the recency window.
"""

import logging
import re
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import urljoin, urlparse

import feedparser
from bs4 import BeautifulSoup

from neptune.models.content import FeedInfo, FeedItem
from neptune.utils.date_parsing import months_ago, parse_feed_date
from neptune.utils.text_utils import strip_html, summarize_text

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.svg', '.bmp', '.ico')
_IMAGE_PATTERN_RE = re.compile(r'\.(jpg|jpeg|png|gif|webp|svg|bmp|ico)(\?|$)', re.IGNORECASE)
_URL_IN_TEXT_RE = re.compile(r'https?://[^\s"\'<>]+')

FORMAT_ATOM = "atom"
FORMAT_RSS = "rss"
FORMAT_RDF = "rdf"


def is_valid_image_url(url: Optional[str]) -> bool:
    """Absolute http(s) URL whose path looks like an image file."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return False
    if parsed.path.lower().endswith(IMAGE_EXTENSIONS):
        return True
    return bool(_IMAGE_PATTERN_RE.search(url))


def resolve_url(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """Make a relative URL absolute against base_url when possible."""
    if not url:
        return None
    if urlparse(url).scheme in ('http', 'https'):
        return url
    if not base_url or urlparse(base_url).scheme not in ('http', 'https'):
        return None
    return urljoin(base_url, url)


def extract_image_from_html(html: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """og:image meta tag first, then the first <img> of an HTML fragment."""
    if not html or '<' not in html:
        return None

    soup = BeautifulSoup(html, 'html.parser')
    og_image = (
        soup.find('meta', attrs={'property': 'og:image'})
        or soup.find('meta', attrs={'name': 'og:image'})
    )
    if og_image and og_image.get('content'):
        resolved = resolve_url(og_image['content'], base_url)
        if is_valid_image_url(resolved):
            return resolved

    first_img = soup.find('img')
    if first_img:
        src = first_img.get('src') or first_img.get('data-src')
        if src:
            resolved = resolve_url(src, base_url)
            if is_valid_image_url(resolved):
                return resolved
    return None


class FeedExtractor:
    """
    Turns a raw feed document into normalized items.

    Dates are kept as the original source strings; only their parseability
    and recency are checked here.
    """

    def __init__(self, months_back: int = 12, description_max_length: int = 1000):
        self.months_back = months_back
        self.description_max_length = description_max_length
        self.logger = logging.getLogger(__name__)

    def extract(
        self,
        content: str,
        base_url: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[FeedInfo]:
        """
        Parse a feed document.

        Args:
            content: Raw XML text
            base_url: Used to resolve relative links when the feed has no absolute link
            now: Reference time for the recency cutoff (defaults to current time)

        Returns:
            FeedInfo, or None when the document is not a recognizable feed
        """
        if not content or '<' not in content:
            return None

        parsed = feedparser.parse(content)
        feed_format = self._detect_format(parsed)
        if feed_format is None:
            if parsed.get('bozo'):
                self.logger.debug(f"Unparseable feed document: {parsed.get('bozo_exception')}")
            return None

        channel = parsed.get('feed', {})
        feed_title = strip_html(channel.get('title')) or 'Untitled Feed'
        feed_link = channel.get('link') or ''
        if feed_link and not urlparse(feed_link).scheme:
            feed_link = resolve_url(feed_link, base_url) or feed_link

        cutoff = months_ago(self.months_back, now)
        items: List[FeedItem] = []
        dropped = 0
        for entry in parsed.get('entries', []):
            pub_date = self._entry_date(entry, feed_format)
            published = parse_feed_date(pub_date)
            if published is None or published <= cutoff:
                dropped += 1
                continue
            items.append(self._build_item(entry, pub_date, feed_title, feed_link, base_url))

        if dropped:
            self.logger.debug(f"Dropped {dropped} stale or undated entries from '{feed_title}'")

        return FeedInfo(title=feed_title, link=feed_link, items=items, format=feed_format)

    def _detect_format(self, parsed: Any) -> Optional[str]:
        version = parsed.get('version') or ''
        if version.startswith('atom'):
            return FORMAT_ATOM
        if version in ('rss10', 'rss090'):
            return FORMAT_RDF
        if version.startswith('rss'):
            return FORMAT_RSS
        return None

    def _entry_date(self, entry: Any, feed_format: str) -> str:
        """Original date string: Atom prefers updated, RSS/RDF prefer pubDate/dc:date."""
        if feed_format == FORMAT_ATOM:
            return entry.get('updated') or entry.get('published') or ''
        return entry.get('published') or entry.get('updated') or ''

    def _entry_html(self, entry: Any) -> str:
        """Full content (content:encoded, Atom content) before summary/description."""
        for content_item in entry.get('content') or []:
            value = content_item.get('value')
            if value:
                return value
        return entry.get('summary') or entry.get('description') or ''

    def _build_item(
        self,
        entry: Any,
        pub_date: str,
        feed_title: str,
        feed_link: str,
        base_url: Optional[str]
    ) -> FeedItem:
        link = (entry.get('link') or '').strip()
        if link and not urlparse(link).scheme:
            link = resolve_url(link, feed_link) or resolve_url(link, base_url) or link

        raw_html = self._entry_html(entry)
        return FeedItem(
            title=strip_html(entry.get('title')) or 'Untitled',
            description=summarize_text(raw_html, self.description_max_length),
            link=link,
            pub_date=pub_date,
            source=feed_title,
            source_link=feed_link,
            image_url=self._extract_image_url(entry, link, raw_html),
        )

    def _extract_image_url(self, entry: Any, item_link: str, html: str) -> Optional[str]:
        """
        Featured image in priority order:
        1. Enclosure with an image type
        2. og:image element
        3. media:thumbnail, then image media:content
        4. og:image meta / first img in the HTML content
        5. Any image-like URL in the content text
        """
        for enclosure in entry.get('enclosures') or []:
            if (enclosure.get('type') or '').startswith('image/'):
                url = enclosure.get('href') or enclosure.get('url')
                if is_valid_image_url(url):
                    return url

        og_image = entry.get('og_image')
        if isinstance(og_image, str):
            resolved = resolve_url(og_image, item_link)
            if is_valid_image_url(resolved):
                return resolved

        for thumbnail in (entry.get('media_thumbnail') or [])[:1]:
            url = thumbnail.get('url')
            if is_valid_image_url(url):
                return url

        for media in entry.get('media_content') or []:
            if media.get('medium') == 'image' or (media.get('type') or '').startswith('image/'):
                url = media.get('url')
                if is_valid_image_url(url):
                    return url

        if html:
            from_html = extract_image_from_html(html, item_link)
            if from_html:
                return from_html

            for raw in _URL_IN_TEXT_RE.findall(html):
                cleaned = raw.rstrip('),.')
                if is_valid_image_url(cleaned):
                    return cleaned

        return None


def apply_default_image(items: List[FeedItem], default_image_url: Optional[str]) -> List[FeedItem]:
    """OPML-level default image as the last fallback per item."""
    if not default_image_url or not is_valid_image_url(default_image_url):
        return items
    for item in items:
        if not item.image_url:
            item.image_url = default_image_url
    return items
