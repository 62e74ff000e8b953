"""
Content models for the feed cache and search engine.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

SEARCHABLE_FIELDS: Tuple[str, ...] = ("title", "description", "source")


@dataclass
class FeedItem:
    """One syndicated entry, normalized regardless of source format."""

    title: str
    description: str
    link: str
    pub_date: str
    source: str
    source_link: str = ""
    image_url: Optional[str] = None
    feed_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used by the item cache and tools."""
        data: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "pubDate": self.pub_date,
            "source": self.source,
            "sourceLink": self.source_link,
            "imageUrl": self.image_url,
        }
        if self.feed_url is not None:
            data["feedUrl"] = self.feed_url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedItem":
        return cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            link=str(data.get("link") or ""),
            pub_date=str(data.get("pubDate") or ""),
            source=str(data.get("source") or ""),
            source_link=str(data.get("sourceLink") or ""),
            image_url=data.get("imageUrl") or None,
            feed_url=data.get("feedUrl") or None,
        )

    def __hash__(self):
        """Items are identified by link at the aggregation boundary."""
        return hash(self.link)


@dataclass
class FeedMetadata:
    """One configured feed, as listed in the OPML file."""

    url: str
    title: str
    description: str = ""
    default_image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "defaultImageUrl": self.default_image_url,
        }


@dataclass
class FeedInfo:
    """Result of extracting one feed document."""

    title: str
    link: str
    items: List[FeedItem] = field(default_factory=list)
    format: str = "rss"


@dataclass
class ScoredItem:
    """A FeedItem with its relevance score for one search call."""

    item: FeedItem
    relevance_score: float
    matched_fields: Set[str] = field(default_factory=set)
    match_positions: Dict[str, List[List[int]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data["relevanceScore"] = self.relevance_score
        data["matchedFields"] = [f for f in SEARCHABLE_FIELDS if f in self.matched_fields]
        data["matchPositions"] = {
            name: [list(span) for span in spans]
            for name, spans in self.match_positions.items()
        }
        return data


@dataclass
class SearchMetadata:
    """Bookkeeping returned alongside search results."""

    total_matches: int
    returned_matches: int
    feeds_searched: int
    feeds_with_matches: int
    search_time_ms: float
    query_parsed: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalMatches": self.total_matches,
            "returnedMatches": self.returned_matches,
            "feedsSearched": self.feeds_searched,
            "feedsWithMatches": self.feeds_with_matches,
            "searchTimeMs": self.search_time_ms,
            "queryParsed": self.query_parsed,
        }


@dataclass
class SearchResult:
    """Complete, JSON-serializable outcome of one search call."""

    query: str
    results: List[ScoredItem]
    metadata: SearchMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [scored.to_dict() for scored in self.results],
            "metadata": self.metadata.to_dict(),
        }
