"""
OPML feed list loading.
"""

import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Tuple

from neptune.models.content import FeedMetadata

logger = logging.getLogger(__name__)


class OPMLError(Exception):
    """Raised when the OPML document cannot be parsed"""
    pass


def parse_opml(content: str) -> List[FeedMetadata]:
    """Parse OPML text into feed metadata, one entry per outline with an xmlUrl."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise OPMLError(f"Invalid OPML: {e}") from e

    body = root.find('body')
    if body is None:
        return []

    feeds: List[FeedMetadata] = []
    seen = set()
    for outline in body.iter('outline'):
        url = (outline.get('xmlUrl') or '').strip()
        if not url or url in seen:
            continue
        seen.add(url)
        feeds.append(FeedMetadata(
            url=url,
            title=outline.get('title') or outline.get('text') or 'Untitled',
            description=outline.get('description') or '',
            default_image_url=outline.get('defaultImageUrl') or None,
        ))
    return feeds


class FeedListLoader:
    """
    Loads the configured feed list, re-reading the OPML file only when its
    modification time changes.
    """

    def __init__(self, opml_path: str):
        self.opml_path = Path(opml_path)
        self._cached: Optional[Tuple[float, List[FeedMetadata]]] = None
        self.logger = logging.getLogger(__name__)

    def load(self) -> List[FeedMetadata]:
        try:
            mtime = os.stat(self.opml_path).st_mtime
        except FileNotFoundError:
            self.logger.warning(f"OPML file not found: {self.opml_path}")
            self._cached = None
            return []

        if self._cached and self._cached[0] == mtime:
            return list(self._cached[1])

        try:
            feeds = parse_opml(self.opml_path.read_text(encoding='utf-8'))
        except (OPMLError, OSError) as e:
            self.logger.error(f"Error reading OPML {self.opml_path}: {e}")
            return []

        self._cached = (mtime, feeds)
        self.logger.info(f"Loaded {len(feeds)} feeds from {self.opml_path}")
        return list(feeds)
