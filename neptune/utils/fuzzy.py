"""
Fuzzy term matching used by the relevance scorer.

The matcher sits behind a small interface so the brute-force Levenshtein scan
can be replaced by an indexed structure (trie, BK-tree) for larger corpora.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

_TOKEN_RE = re.compile(r"\S+")

# Tokens whose length differs from the term by more than this are never compared
MAX_LENGTH_DIFFERENCE = 2


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning a into b."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


@dataclass
class FuzzyMatch:
    """A token of the searched text that is close enough to the term."""
    token: str
    start: int
    end: int
    distance: int


class FuzzyMatcher(ABC):
    """Finds an approximate occurrence of a term inside a text."""

    @abstractmethod
    def find(self, term: str, text: str, tolerance: int) -> Optional[FuzzyMatch]:
        """Return the first qualifying token, or None."""


class LevenshteinMatcher(FuzzyMatcher):
    """
    Whitespace-tokenizing matcher comparing the term to every token of
    similar length, case-insensitively.
    """

    def __init__(self, max_length_difference: int = MAX_LENGTH_DIFFERENCE):
        self.max_length_difference = max_length_difference

    def find(self, term: str, text: str, tolerance: int) -> Optional[FuzzyMatch]:
        if tolerance <= 0 or not term or not text:
            return None

        term_lower = term.lower()
        for match in _TOKEN_RE.finditer(text):
            token = match.group(0)
            if abs(len(token) - len(term_lower)) > self.max_length_difference:
                continue
            distance = levenshtein_distance(term_lower, token.lower())
            if distance <= tolerance:
                return FuzzyMatch(
                    token=token,
                    start=match.start(),
                    end=match.end(),
                    distance=distance,
                )
        return None
