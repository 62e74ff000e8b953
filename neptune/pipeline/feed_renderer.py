"""
Jinja2 rendering of the aggregated feed (RSS 2.0 and HTML views).
"""

import logging
import mimetypes
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from jinja2 import Environment, FileSystemLoader, TemplateError

from neptune.models.content import FeedItem, FeedMetadata
from neptune.utils.date_parsing import parse_feed_date

RSS_TEMPLATE = "rss.xml.j2"
HTML_TEMPLATE = "feeds.html.j2"
LIST_TEMPLATE = "list.html.j2"


class RenderError(Exception):
    """Custom exception for template rendering failures"""
    pass


class FeedRenderer:
    """Renders merged feed items through the Jinja2 templates."""

    def __init__(
        self,
        template_dir: str,
        feed_title: str = "Neptune Aggregated Feed",
        feed_link: str = "",
        feed_description: str = "Aggregated feed of all subscribed sources"
    ) -> None:
        self.template_dir = template_dir
        self.feed_title = feed_title
        self.feed_link = feed_link
        self.feed_description = feed_description
        self.logger = logging.getLogger(__name__)

        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

        # Add custom filters
        self.env.filters["rfc822"] = self._rfc822_filter
        self.env.filters["displaydate"] = self._displaydate_filter
        self.env.filters["imagetype"] = self._imagetype_filter

    def render_rss(self, items: List[FeedItem], build_date: Optional[datetime] = None) -> str:
        return self._render(RSS_TEMPLATE, {
            "title": self.feed_title,
            "link": self.feed_link,
            "description": self.feed_description,
            "build_date": build_date or datetime.now(timezone.utc),
            "items": items,
        })

    def render_html(self, items: List[FeedItem]) -> str:
        return self._render(HTML_TEMPLATE, {
            "title": self.feed_title,
            "items": items,
        })

    def render_feed_list(self, feeds: List[FeedMetadata]) -> str:
        ordered = sorted(feeds, key=lambda f: (f.title or "").lower())
        return self._render(LIST_TEMPLATE, {
            "title": self.feed_title,
            "feeds": ordered,
        })

    def _render(self, template_name: str, data: Dict[str, Any]) -> str:
        try:
            template = self.env.get_template(template_name)
            return template.render(data)
        except TemplateError as e:
            self.logger.error(f"Template {template_name} failed: {e}")
            raise RenderError(f"Template error in {template_name}: {e}") from e

    @staticmethod
    def _rfc822_filter(value: Any) -> str:
        """Feed date string or datetime as an RFC 822 date; unparseable strings pass through."""
        if isinstance(value, datetime):
            dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
            return format_datetime(dt.astimezone(timezone.utc), usegmt=True)
        parsed = parse_feed_date(value)
        if parsed is None:
            return str(value or "")
        return format_datetime(parsed, usegmt=True)

    @staticmethod
    def _displaydate_filter(value: Any) -> str:
        parsed = parse_feed_date(value)
        if parsed is None:
            return str(value or "")
        return parsed.strftime("%B %d, %Y %H:%M UTC")

    @staticmethod
    def _imagetype_filter(url: Optional[str]) -> str:
        if not url:
            return "image/jpeg"
        guessed, _ = mimetypes.guess_type(urlparse(url).path)
        return guessed or "image/jpeg"
