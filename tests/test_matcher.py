from recordwatch.matching.matcher import (
    EXACT_SCORE,
    HighlightSpan,
    MatchKind,
    match,
    match_record,
    match_targets,
)
from recordwatch.tracking.models import DeathRecord


def test_exact_match_through_dot_separator():
    result = match("JOHN.SMITH", "John Smith")
    assert result is not None
    assert result.kind is MatchKind.EXACT
    assert result.score == EXACT_SCORE
    assert result.spans == (HighlightSpan(0, 10),)


def test_exact_match_start_skips_stripped_dots():
    value = "Dr. A.B. Smithson"
    result = match(value, "smith")
    assert result is not None
    assert result.kind is MatchKind.EXACT
    assert result.spans == (HighlightSpan(9, 17),)
    assert result.spans[0].slice(value) == "Smithson"


def test_highlight_includes_trailing_slack():
    result = match("Anna Smith Jr", "anna")
    assert result.spans == (HighlightSpan(0, 9),)


def test_word_overlap_fallback():
    result = match("Mary Ann Jones", "Maryann")
    assert result is not None
    assert result.kind is MatchKind.WORD_OVERLAP
    assert result.score is None
    assert result.spans == (HighlightSpan(0, 4), HighlightSpan(5, 8))


def test_exact_takes_precedence_over_word_overlap():
    result = match("John Smith", "john")
    assert result.kind is MatchKind.EXACT
    assert result.score == 100


def test_empty_inputs_never_match():
    assert match("", "John") is None
    assert match("John", "") is None
    assert match("   ", "John") is None
    assert match("John", " . ") is None


def test_unrelated_names_do_not_match():
    assert match("Peter Parker", "Smith") is None


def test_match_is_deterministic():
    assert match("Mary Ann Jones", "Maryann") == match("Mary Ann Jones", "Maryann")


def test_field_priority_name_first():
    record = DeathRecord(name="Ali Smith", fathers_name="Smith Khan", mothers_name="Sara Smith")
    found = match_record(record, "smith")
    assert found.field == "name"


def test_falls_through_to_parent_fields():
    record = DeathRecord(name="Ali Khan", fathers_name="Omar Khan", mothers_name="Sara Smith")
    found = match_record(record, "Smith")
    assert found.field == "mothers_name"
    assert found.matched_part == "Smith"
    assert match_record(record, "Zed") is None


def test_targets_match_independently():
    record = DeathRecord(name="Ali Khan", fathers_name="John Smith")
    found = match_targets(record, ["Ali", "Smith", "Nobody"])
    assert [(item.target, item.field) for item in found] == [("Ali", "name"), ("Smith", "fathers_name")]


def test_word_overlap_matched_part_lists_words():
    record = DeathRecord(name="Mary Ann Jones")
    found = match_record(record, "Maryann")
    assert found.kind is MatchKind.WORD_OVERLAP
    assert found.matched_part == "Mary Ann"
