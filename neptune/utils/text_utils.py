"""
Text normalization helpers shared by feed extraction and search.
"""

import re
import warnings
from typing import Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

# Plain-text descriptions and bare URLs are routinely passed through the parser
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

_WHITESPACE_RE = re.compile(r"\s+")


def strip_html(text: Optional[str]) -> str:
    """Remove markup and decode HTML entities, collapsing whitespace."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return _WHITESPACE_RE.sub(" ", text).strip()

    soup = BeautifulSoup(text, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    plain = soup.get_text(" ")
    return _WHITESPACE_RE.sub(" ", plain).strip()


def truncate_at_word(text: str, max_length: int, ellipsis: str = "...") -> str:
    """
    Truncate text to max_length characters at the last word boundary.

    The ellipsis is appended only when something was cut. If the first max_length characters hold
    no space at all, the text is hard-cut at max_length.
    """
    if len(text) <= max_length:
        return text

    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return truncated.rstrip() + ellipsis


def summarize_text(text: Optional[str], max_length: int = 1000) -> str:
    """Strip markup, decode entities, and cap the result at max_length."""
    if not text:
        return ""
    return truncate_at_word(strip_html(text), max_length)
