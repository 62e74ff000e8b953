import pytest

from conftest import make_item
from neptune.services.search.query_parser import ParsedQuery, parse_query
from neptune.services.search.relevance_scorer import (
    RelevanceScorer,
    clamp_fuzzy_tolerance,
    score_item,
    term_score,
)
from neptune.utils.fuzzy import LevenshteinMatcher


def test_term_scores_follow_field_weights():
    assert term_score("title", fuzzy=False) == 9
    assert term_score("description", fuzzy=False) == 4
    assert term_score("source", fuzzy=False) == 1
    assert term_score("title", fuzzy=True) == 3
    assert term_score("description", fuzzy=True) == 2
    assert term_score("source", fuzzy=True) == 0.5


def test_exact_title_match():
    item = make_item("Python release notes", description="Nothing relevant", source="Blog")

    result = score_item(item, parse_query("python"))

    assert result.score == 9
    assert result.matched_fields == {"title"}
    assert result.match_positions == {"title": [[0, 6]]}


def test_general_term_scores_every_matching_field():
    item = make_item("Python tips", description="More python", source="Python Weekly")

    result = score_item(item, parse_query("python"))

    assert result.score == 9 + 4 + 1
    assert result.matched_fields == {"title", "description", "source"}
    assert result.match_positions["description"] == [[5, 11]]


def test_fuzzy_title_match():
    item = make_item("Pyton tips", description="Nothing relevant", source="Blog")

    result = score_item(item, parse_query("python"), fuzzy_tolerance=1)

    assert result.score == 3
    assert result.match_positions == {"title": [[0, 5]]}


def test_fuzzy_source_match_scores_half():
    item = make_item("Tips", description="Daily notes", source="Pythn Weekly")

    result = score_item(item, parse_query("python"), fuzzy_tolerance=1)

    assert result.score == 0.5
    assert result.matched_fields == {"source"}


def test_zero_tolerance_disables_fuzzy_matching():
    item = make_item("Pyton tips", description="Nothing relevant", source="Blog")

    assert score_item(item, parse_query("python"), fuzzy_tolerance=0).score == 0


def test_tolerance_two_allows_two_edits():
    item = make_item("Pytn tips", description="Nothing relevant", source="Blog")

    assert score_item(item, parse_query("python"), fuzzy_tolerance=1).score == 0
    assert score_item(item, parse_query("python"), fuzzy_tolerance=2).score == 3


def test_matching_is_case_insensitive():
    item = make_item("QGIS 3.40 released", source="Blog")

    assert score_item(item, parse_query("qgis")).score == 9


def test_word_boundary_flag_does_not_restrict_substring_matches():
    item = make_item("Getting started", description="", source="Blog")

    with_boundary = score_item(item, parse_query("start"), use_word_boundary=True)
    without_boundary = score_item(item, parse_query("start"), use_word_boundary=False)

    assert with_boundary.score == without_boundary.score == 9


def test_phrase_bonus_per_field():
    item = make_item("GIS mapping tools", description="All about gis mapping", source="GIS mapping weekly")

    result = score_item(item, parse_query('"gis mapping"'))

    assert result.score == 20 + 10 + 5
    assert result.match_positions["title"] == [[0, 11]]
    assert result.match_positions["description"] == [[10, 21]]


def test_phrase_bonus_stacks_with_general_term():
    item = make_item("GIS mapping tools", description="", source="Blog")

    result = score_item(item, parse_query('"gis mapping" OR gis'))

    assert result.score == 20 + 9
    assert result.match_positions["title"] == [[0, 11], [0, 3]]


def test_phrase_is_not_fuzzy_matched():
    item = make_item("GIS maping tools", description="", source="Blog")

    assert score_item(item, parse_query('"gis mapping"'), fuzzy_tolerance=2).score == 0


def test_field_term_only_matches_its_field():
    item = make_item("Weekly digest", description="QGIS news", source="Blog")

    assert score_item(item, parse_query("title:qgis")).score == 0
    assert score_item(item, parse_query("description:qgis")).score == 4


def test_and_requires_every_general_term():
    item = make_item("alpha only", description="", source="Blog")

    assert score_item(item, parse_query("alpha AND beta")).score == 0
    assert score_item(item, parse_query("alpha AND only")).score == 18


def test_and_failure_discards_phrase_and_field_contributions():
    item = make_item("alpha only", description="", source="Blog")

    result = score_item(item, parse_query('"alpha only" title:alpha AND beta'))

    assert result.score == 0
    assert result.matched_fields == set()
    assert result.match_positions == {}


def test_and_requires_phrases_and_field_terms():
    item = make_item("alpha only", description="", source="Blog")

    assert score_item(item, parse_query('"missing phrase" alpha')).score == 0
    assert score_item(item, parse_query("source:nowhere alpha")).score == 0


def test_phrase_only_query_under_and():
    item = make_item("GIS mapping tools", description="", source="Blog")

    assert score_item(item, parse_query('"mapping tools"')).score == 20


def test_or_sums_whatever_matches():
    item = make_item("gamma ray", description="", source="Blog")

    result = score_item(item, parse_query('alpha OR gamma OR "missing phrase"'))

    assert result.score == 9
    assert result.matched_fields == {"title"}


def test_or_with_no_match_scores_zero():
    item = make_item("nothing here", description="", source="Blog")

    assert score_item(item, parse_query("alpha OR gamma")).score == 0


def test_scorer_rejects_unknown_logic():
    item = make_item("anything")

    with pytest.raises(ValueError):
        score_item(item, ParsedQuery(general_terms=["anything"], logic="XOR"))


def test_scorer_rejects_unknown_field():
    item = make_item("anything")
    query = ParsedQuery(field_queries={"author": ["smith"]})

    with pytest.raises(ValueError):
        score_item(item, query)


def test_custom_fuzzy_matcher_is_used():
    item = make_item("colour chart", description="", source="Blog")
    strict = RelevanceScorer(fuzzy_matcher=LevenshteinMatcher(max_length_difference=0))

    assert RelevanceScorer().score(item, parse_query("color")).score == 3
    assert strict.score(item, parse_query("color")).score == 0


@pytest.mark.parametrize("value, expected", [
    (-1, 0),
    (0, 0),
    (1, 1),
    (2, 2),
    (5, 2),
    ("2", 2),
    (None, 1),
    ("lots", 1),
])
def test_clamp_fuzzy_tolerance(value, expected):
    assert clamp_fuzzy_tolerance(value) == expected
