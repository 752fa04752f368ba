# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script tokenizer.

Splits script text into an ordered list of text units: one unit per run of
word characters and one per run of anything else (whitespace, punctuation,
line breaks). Nothing is dropped, so joining the unit values in order gives
back the original text exactly. Word units carry a normalized comparison key
used by the matcher; separator units have an empty key.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

# A word is a run of word characters, optionally joined by apostrophes
# ("don't", "it’s") so contractions stay a single unit.
WORD_PATTERN: re.Pattern[str] = re.compile(r"\w+(?:['’]\w+)*")
UNIT_PATTERN: re.Pattern[str] = re.compile(r"\w+(?:['’]\w+)*|(?:(?!\w).)+", re.DOTALL)


@dataclass(frozen=True)
class TextUnit:
    """One matchable piece of the script."""
    index: int  # Position in the unit list (contiguous from 0)
    value: str  # Literal text covered by this unit
    key: str = ""  # Comparison key, empty for separators

    @property
    def is_word(self) -> bool:
        """True if this unit takes part in matching."""
        return bool(self.key)

    def to_dict(self) -> dict[str, object]:
        """Serialize for clients (the key is never displayed)."""
        return {"index": self.index, "value": self.value}

    def __repr__(self) -> str:
        return f"TextUnit({self.index}: {self.value!r})"


def normalize_word(word: str) -> str:
    """Normalize a word for matching (lowercase, strip punctuation)."""
    return re.sub(r'[^\w\s]', '', word.lower()).strip()


def tokenize(text: str) -> list[TextUnit]:
    """Split script text into text units.

    Every character of ``text`` ends up in exactly one unit. Newlines are
    ordinary separator characters, so line breaks survive reconstruction.

    Examples:
        "Hi, you" -> ["Hi", ", ", "you"]
        "don't\\n" -> ["don't", "\\n"]
    """
    units: list[TextUnit] = []
    for match in UNIT_PATTERN.finditer(text):
        value: str = match.group(0)
        key: str = normalize_word(value) if WORD_PATTERN.fullmatch(value) else ""
        units.append(TextUnit(index=len(units), value=value, key=key))
    return units


def transcript_words(transcript: str) -> list[str]:
    """Split a recognized transcript into comparison words.

    Uses the same word pattern and normalization as ``tokenize`` so that
    transcript words and script keys compare like for like.
    """
    words = (normalize_word(w) for w in WORD_PATTERN.findall(transcript))
    return [w for w in words if w]


def join_units(units: Iterable[TextUnit]) -> str:
    """Rebuild the text covered by a sequence of units."""
    return ''.join(unit.value for unit in units)
