"""
Query parsing for feed search.

Supported syntax:
- "exact phrase"            quoted phrases (substring match)
- title:term                field-scoped terms (title, description, source)
- term AND term / term OR term
                            boolean combinator for the remaining general terms
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from neptune.models.content import SEARCHABLE_FIELDS

LOGIC_AND = "AND"
LOGIC_OR = "OR"

_PHRASE_RE = re.compile(r'"([^"]*)"')
_FIELD_TERM_RE = re.compile(r'\b(title|description|source):(\S+)', re.IGNORECASE)
_OR_RE = re.compile(r'\sOR\s', re.IGNORECASE)
_BOOLEAN_SPLIT_RE = re.compile(r'\b(?:AND|OR)\b', re.IGNORECASE)


@dataclass
class ParsedQuery:
    """Structured form of one search query."""
    quoted_phrases: List[str] = field(default_factory=list)
    field_queries: Dict[str, List[str]] = field(
        default_factory=lambda: {name: [] for name in SEARCHABLE_FIELDS}
    )
    general_terms: List[str] = field(default_factory=list)
    logic: str = LOGIC_AND

    @property
    def is_empty(self) -> bool:
        return not (
            self.quoted_phrases
            or self.general_terms
            or any(self.field_queries.values())
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotedPhrases": list(self.quoted_phrases),
            "fieldQueries": {name: list(terms) for name, terms in self.field_queries.items()},
            "generalTerms": list(self.general_terms),
            "logic": self.logic,
        }


def _add_unique(values: List[str], value: str) -> None:
    if value not in values:
        values.append(value)


def parse_query(query: str) -> ParsedQuery:
    """
    Turn a raw query string into a ParsedQuery.

    Never raises: anything not recognized as a phrase or a field-scoped term
    ends up among the general terms.
    """
    parsed = ParsedQuery()
    remaining = query or ""

    # 1. Quoted phrases, first-seen order
    for match in _PHRASE_RE.finditer(remaining):
        phrase = match.group(1).strip()
        if phrase:
            _add_unique(parsed.quoted_phrases, phrase)
    remaining = _PHRASE_RE.sub(" ", remaining)

    # 2. Field-scoped terms
    for match in _FIELD_TERM_RE.finditer(remaining):
        field_name = match.group(1).lower()
        _add_unique(parsed.field_queries[field_name], match.group(2))
    remaining = _FIELD_TERM_RE.sub(" ", remaining)

    # 3. Logic: OR only when the word is surrounded by whitespace
    parsed.logic = LOGIC_OR if _OR_RE.search(remaining) else LOGIC_AND

    # 4. General terms between the boolean operators
    for piece in _BOOLEAN_SPLIT_RE.split(remaining):
        # Removed phrases and field terms leave runs of spaces behind
        term = " ".join(piece.split())
        if term:
            parsed.general_terms.append(term)

    return parsed
