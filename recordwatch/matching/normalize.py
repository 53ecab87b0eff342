"""Name normalisation with offset tracking back into the original text.

Registry names are frequently transliterated with abbreviations such as
``"M.K. Gandhi"`` or ``"JOHN.SMITH"``.  Matching happens on a normalised form
(lowercase, dots removed, whitespace collapsed) while highlights must point
into the text as it was received, so every normalised character carries the
index of the original character it came from.
"""
from __future__ import annotations

import re
from typing import List, Sequence, Tuple

_WORD_RE = re.compile(r"[^\s.]+")


def normalize_with_offsets(text: str, *, dots_as_spaces: bool = False) -> Tuple[str, List[int]]:
    """Normalise ``text`` and return the original index of each output character.

    Dots are deleted, or treated as whitespace when ``dots_as_spaces`` is set.
    Whitespace runs become a single space mapped to the first character of the
    run; leading and trailing whitespace is dropped.
    """
    chars: List[str] = []
    offsets: List[int] = []
    gap_at = -1
    for idx, ch in enumerate(text):
        if ch == "." and not dots_as_spaces:
            continue
        if ch == "." or ch.isspace():
            if chars and gap_at < 0:
                gap_at = idx
            continue
        if gap_at >= 0:
            chars.append(" ")
            offsets.append(gap_at)
            gap_at = -1
        # str.lower() can expand a character (e.g. "İ"), keep the offset table aligned
        for lowered in ch.lower():
            chars.append(lowered)
            offsets.append(idx)
    return "".join(chars), offsets


def normalize_name(text: str, *, dots_as_spaces: bool = False) -> str:
    return normalize_with_offsets(text, dots_as_spaces=dots_as_spaces)[0]


def original_offset(offsets: Sequence[int], index: int, original_length: int) -> int:
    """Map an index in the normalised string back to the original string.

    An index at or past the end of the normalised text maps to the end of the
    original text.
    """
    if index < 0:
        return 0
    if index >= len(offsets):
        return original_length
    return offsets[index]


def split_words(text: str) -> List[Tuple[str, int, int]]:
    """Split on whitespace or dots, returning lowercase words with original spans."""
    return [(m.group().lower(), m.start(), m.end()) for m in _WORD_RE.finditer(text)]
