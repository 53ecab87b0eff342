"""Fuzzy target-name matching and highlight spans for registry records."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from recordwatch.matching.normalize import (
    normalize_name,
    normalize_with_offsets,
    original_offset,
    split_words,
)
from recordwatch.tracking.models import DeathRecord

EXACT_SCORE = 100
# Trailing characters included after an exact match, e.g. honorific fragments.
HIGHLIGHT_SLACK = 5

# Searched in this order; the first matching field wins for a target name.
MATCH_FIELDS: Tuple[str, ...] = ("name", "fathers_name", "mothers_name")

WIRE_FIELD_NAMES = {
    "name": "name",
    "fathers_name": "fathersName",
    "mothers_name": "mothersName",
}


class MatchKind(str, Enum):
    EXACT = "exact"
    WORD_OVERLAP = "word_overlap"


@dataclass(frozen=True)
class HighlightSpan:
    """Half-open ``[start, end)`` range into the original field text."""

    start: int
    end: int

    def slice(self, text: str) -> str:
        return text[self.start:self.end]


@dataclass(frozen=True)
class TextMatch:
    """Result of matching one target against one field value.

    ``score`` is only set for exact-substring matches.  Word-overlap matches
    are unscored and must not be ranked against scored ones.
    """

    kind: MatchKind
    spans: Tuple[HighlightSpan, ...]
    score: Optional[int] = None


@dataclass(frozen=True)
class FieldMatch:
    """A target name matched against a specific field of a record."""

    target: str
    field: str
    value: str
    match: TextMatch

    @property
    def kind(self) -> MatchKind:
        return self.match.kind

    @property
    def score(self) -> Optional[int]:
        return self.match.score

    @property
    def spans(self) -> Tuple[HighlightSpan, ...]:
        return self.match.spans

    @property
    def matched_part(self) -> str:
        return " ".join(span.slice(self.value) for span in self.spans)


def _exact_match(value: str, target: str) -> Optional[TextMatch]:
    for dots_as_spaces in (False, True):
        needle = normalize_name(target, dots_as_spaces=dots_as_spaces)
        if not needle:
            continue
        haystack, offsets = normalize_with_offsets(value, dots_as_spaces=dots_as_spaces)
        index = haystack.find(needle)
        if index < 0:
            continue
        start = original_offset(offsets, index, len(value))
        end = min(len(value), start + len(target) + HIGHLIGHT_SLACK)
        return TextMatch(kind=MatchKind.EXACT, spans=(HighlightSpan(start, end),), score=EXACT_SCORE)
    return None


def _word_overlap(value: str, target: str) -> Optional[TextMatch]:
    target_words = [word for word, _, _ in split_words(target)]
    spans = [
        HighlightSpan(start, end)
        for word, start, end in split_words(value)
        if any(word in other or other in word for other in target_words)
    ]
    if not spans:
        return None
    return TextMatch(kind=MatchKind.WORD_OVERLAP, spans=tuple(spans))


def match(value: str, target: str) -> Optional[TextMatch]:
    """Match ``target`` against a single field value; ``None`` means no match."""
    if not value or not target:
        return None
    if not normalize_name(value) or not normalize_name(target):
        return None
    return _exact_match(value, target) or _word_overlap(value, target)


def match_record(record: DeathRecord, target: str) -> Optional[FieldMatch]:
    """Return the first field of ``record`` that matches ``target``."""
    for field_name in MATCH_FIELDS:
        value = getattr(record, field_name)
        result = match(value, target)
        if result is not None:
            return FieldMatch(target=target, field=field_name, value=value, match=result)
    return None


def match_targets(record: DeathRecord, targets: Iterable[str]) -> List[FieldMatch]:
    """Match every target name independently against one record."""
    matches: List[FieldMatch] = []
    for target in targets:
        found = match_record(record, target)
        if found is not None:
            matches.append(found)
    return matches
