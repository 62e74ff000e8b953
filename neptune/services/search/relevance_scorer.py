"""
Relevance scoring of a single feed item against a parsed query.

Weights and multipliers are empirically tuned; keep them stable so rankings
stay comparable across releases.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Pattern, Set

from neptune.models.content import SEARCHABLE_FIELDS, FeedItem
from neptune.services.search.query_parser import LOGIC_AND, LOGIC_OR, ParsedQuery
from neptune.utils.fuzzy import FuzzyMatcher, LevenshteinMatcher

FIELD_WEIGHTS: Dict[str, float] = {"title": 3, "description": 2, "source": 1}
EXACT_MULTIPLIERS: Dict[str, float] = {"title": 3, "description": 2, "source": 1}
FUZZY_MULTIPLIERS: Dict[str, float] = {"title": 1, "description": 1, "source": 0.5}

# Flat bonus per quoted-phrase hit, stacking with term matches on the same field
PHRASE_BONUS: Dict[str, float] = {"title": 20, "description": 10, "source": 5}

MAX_FUZZY_TOLERANCE = 2


@lru_cache(maxsize=1024)
def _substring_pattern(term: str) -> Pattern[str]:
    return re.compile(re.escape(term), re.IGNORECASE)


@lru_cache(maxsize=1024)
def _word_boundary_pattern(term: str) -> Pattern[str]:
    return re.compile(r'(?<!\w)' + re.escape(term) + r'(?!\w)', re.IGNORECASE)


@dataclass
class TermMatch:
    """Where a term matched inside one field."""
    start: int
    end: int
    fuzzy: bool = False


@dataclass
class MatchResult:
    """Score of one item for one query."""
    score: float = 0
    matched_fields: Set[str] = field(default_factory=set)
    match_positions: Dict[str, List[List[int]]] = field(default_factory=dict)

    def add(self, field_name: str, points: float, start: int, end: int) -> None:
        self.score += points
        self.matched_fields.add(field_name)
        self.match_positions.setdefault(field_name, []).append([start, end])


def term_score(field_name: str, fuzzy: bool) -> float:
    multiplier = FUZZY_MULTIPLIERS[field_name] if fuzzy else EXACT_MULTIPLIERS[field_name]
    return FIELD_WEIGHTS[field_name] * multiplier


class RelevanceScorer:
    """
    Scores items field by field.

    Matching of one term in one field stops at the first success:
    substring, then word boundary, then fuzzy (bounded Levenshtein).
    """

    def __init__(self, fuzzy_matcher: Optional[FuzzyMatcher] = None):
        self.fuzzy_matcher = fuzzy_matcher or LevenshteinMatcher()

    def match_term(
        self,
        term: str,
        text: str,
        use_word_boundary: bool = True,
        fuzzy_tolerance: int = 1
    ) -> Optional[TermMatch]:
        if not term or not text:
            return None

        found = _substring_pattern(term).search(text)
        if found:
            return TermMatch(found.start(), found.end())

        if use_word_boundary:
            found = _word_boundary_pattern(term).search(text)
            if found:
                return TermMatch(found.start(), found.end())

        if fuzzy_tolerance > 0:
            fuzzy = self.fuzzy_matcher.find(term, text, fuzzy_tolerance)
            if fuzzy:
                return TermMatch(fuzzy.start, fuzzy.end, fuzzy=True)

        return None

    def score(
        self,
        item: FeedItem,
        query: ParsedQuery,
        use_word_boundary: bool = True,
        fuzzy_tolerance: int = 1
    ) -> MatchResult:
        """
        Score an item.

        Under AND logic a quoted phrase found in no field, a field-scoped term
        missing from its field, or a general term found in no field makes the
        whole item score zero; contributions already counted are discarded.
        Under OR logic every contribution is summed.

        Raises:
            ValueError: the query has an unknown logic or field name
        """
        if query.logic not in (LOGIC_AND, LOGIC_OR):
            raise ValueError(f"Unknown query logic: {query.logic!r}")
        unknown = set(query.field_queries) - set(SEARCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown search fields: {sorted(unknown)}")

        require_all = query.logic == LOGIC_AND
        fields = {
            "title": item.title or "",
            "description": item.description or "",
            "source": item.source or "",
        }
        result = MatchResult()

        for phrase in query.quoted_phrases:
            found_anywhere = False
            for field_name in SEARCHABLE_FIELDS:
                found = _substring_pattern(phrase).search(fields[field_name])
                if found:
                    result.add(field_name, PHRASE_BONUS[field_name], found.start(), found.end())
                    found_anywhere = True
            if require_all and not found_anywhere:
                return MatchResult()

        for field_name, terms in query.field_queries.items():
            for term in terms:
                match = self.match_term(term, fields[field_name], use_word_boundary, fuzzy_tolerance)
                if match:
                    result.add(field_name, term_score(field_name, match.fuzzy), match.start, match.end)
                elif require_all:
                    return MatchResult()

        # General terms last: under AND the first miss zeroes the item
        for term in query.general_terms:
            found_anywhere = False
            for field_name in SEARCHABLE_FIELDS:
                match = self.match_term(term, fields[field_name], use_word_boundary, fuzzy_tolerance)
                if match:
                    result.add(field_name, term_score(field_name, match.fuzzy), match.start, match.end)
                    found_anywhere = True
            if require_all and not found_anywhere:
                return MatchResult()

        return result


def clamp_fuzzy_tolerance(value) -> int:
    """Coerce a caller-supplied tolerance into the supported 0..2 range."""
    try:
        tolerance = int(value)
    except (TypeError, ValueError):
        return 1
    return max(0, min(MAX_FUZZY_TOLERANCE, tolerance))


_default_scorer = RelevanceScorer()


def score_item(
    item: FeedItem,
    query: ParsedQuery,
    use_word_boundary: bool = True,
    fuzzy_tolerance: int = 1
) -> MatchResult:
    """Score with the default Levenshtein-backed scorer."""
    return _default_scorer.score(item, query, use_word_boundary, fuzzy_tolerance)
