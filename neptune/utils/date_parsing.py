"""
Date parsing utilities for feed publication dates and search date bounds.
"""

import logging
import warnings
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as dateutil_parser
from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

# Abbreviations that still show up in RFC 822 dates of older feeds
TZINFOS = {
    "UT": 0,
    "UTC": 0,
    "GMT": 0,
    "Z": 0,
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
    "CET": 1 * 3600,
    "CEST": 2 * 3600,
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_feed_date(date_str: Optional[str]) -> Optional[datetime]:
    """
    Parse an RSS/Atom/RDF date string into an aware UTC datetime.

    Args:
        date_str: RFC 822, ISO 8601 or any format dateutil understands

    Returns:
        datetime in UTC, or None when the string is empty or unparseable
    """
    if not date_str or not str(date_str).strip():
        return None

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", dateutil_parser.UnknownTimezoneWarning)
            dt = dateutil_parser.parse(str(date_str).strip(), tzinfos=TZINFOS)
        return _as_utc(dt)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Failed to parse feed date '{date_str}': {e}")
        return None


def parse_date_bound(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 search bound such as "2026-02-27".

    Malformed values mean "no bound" rather than an error, since the
    conversion from natural language happens upstream of the search tool.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        return _as_utc(isoparse(text))
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Ignoring malformed date bound '{value}': {e}")
        return None


def date_sort_key(date_str: Optional[str]) -> float:
    """Timestamp used for newest-first ordering; unparseable dates sort last."""
    dt = parse_feed_date(date_str)
    return (dt or EPOCH).timestamp()


def months_ago(months: int, now: Optional[datetime] = None) -> datetime:
    """Recency cutoff used at extraction time."""
    reference = _as_utc(now) if now else datetime.now(timezone.utc)
    return reference - relativedelta(months=months)
