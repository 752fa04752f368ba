# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Speech-to-script alignment.

Given a recognized transcript, the tokenized script and the last confirmed
position, find how far into the script the speaker has got. Matching runs
over a bounded window of script words around the last position, so the cost
of each call follows the transcript length rather than the script length and
repeated phrases far away in the script can't be picked up by mistake.

The matcher is a pure function: all position memory is owned by the caller
and threaded through ``last_index``.
"""

import bisect
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from rapidfuzz import fuzz

from .tokenizer import TextUnit, transcript_words

logger = logging.getLogger(__name__)

NO_PROGRESS: int = -1


@dataclass(frozen=True)
class MatcherSettings:
    """Tunable parameters for the alignment search."""
    # Script words before the last position that may be re-matched
    lookbehind_words: int = 2
    # Window length as a multiple of the transcript word count
    window_multiplier: int = 4
    # Minimum window length in script words
    min_window_words: int = 8
    # Skipped transcript/script words tolerated in one gap of a run
    max_skipped_words: int = 1
    # Score deducted for each skipped word
    skip_penalty: float = 0.25
    # Minimum rapidfuzz ratio (0-100) for a near-miss word match
    fuzzy_threshold: float = 80.0
    # Both words need at least this many characters to match fuzzily
    min_fuzzy_length: int = 4
    # Score of a near-miss match (an exact match scores 1)
    fuzzy_weight: float = 0.75
    # Best run must reach this score to count as a match
    min_score: float = 1.0
    # Only the newest words of a long transcript are aligned
    max_transcript_words: int = 32

    @classmethod
    def from_config(cls, matching: dict[str, Any] | None) -> 'MatcherSettings':
        """Build settings from the ``matching`` config section, ignoring unknown keys."""
        if not matching:
            return cls()
        known = {name: value for name, value in matching.items()
                 if name in cls.__dataclass_fields__}
        return cls(**known)


DEFAULT_MATCHER_SETTINGS: MatcherSettings = MatcherSettings()


@dataclass
class _Candidate:
    """Best run found so far, ending at a script word ordinal."""
    score: float
    end_ordinal: int
    ahead: bool
    distance: int

    def beats(self, other: '_Candidate | None') -> bool:
        if other is None:
            return True
        if abs(self.score - other.score) > 1e-9:
            return self.score > other.score
        if self.ahead != other.ahead:
            return self.ahead
        return self.distance < other.distance


def word_similarity(spoken: str, scripted: str, settings: MatcherSettings) -> float:
    """Score a single spoken word against a script word (0 means no match)."""
    if spoken == scripted:
        return 1.0
    if min(len(spoken), len(scripted)) < settings.min_fuzzy_length:
        return 0.0
    if fuzz.ratio(spoken, scripted) >= settings.fuzzy_threshold:
        return settings.fuzzy_weight
    return 0.0


def match(
    transcript: str,
    units: Sequence[TextUnit],
    last_index: int,
    settings: MatcherSettings = DEFAULT_MATCHER_SETTINGS
) -> int:
    """
    Compute the new progress index for a recognized transcript.

    Args:
        transcript: Recognized text (lowercase, punctuation-free)
        units: The tokenized script
        last_index: Last confirmed progress index (-1 for no progress)
        settings: Window and fuzziness parameters

    Returns:
        The unit index just after the last matched word of the best run,
        or ``last_index`` unchanged when nothing in the window matches.
        Never less than ``last_index``.
    """
    spoken: list[str] = transcript_words(transcript)
    if not spoken or not units:
        return last_index

    # Word units only, with a mapping from word ordinal to true unit index
    ordinals: list[int] = []
    keys: list[str] = []
    for unit in units:
        if unit.is_word:
            ordinals.append(unit.index)
            keys.append(unit.key)
    if not keys:
        return last_index

    # First word not yet confirmed
    cursor: int = bisect.bisect_left(ordinals, last_index)
    window_start: int = max(0, cursor - settings.lookbehind_words)
    window_len: int = max(settings.min_window_words,
                          settings.window_multiplier * len(spoken))
    window_end: int = min(len(keys), cursor + window_len)
    if window_start >= window_end:
        return last_index

    aligned: list[str] = spoken[-settings.max_transcript_words:]
    best: _Candidate | None = _best_run(
        aligned, keys[window_start:window_end], cursor - window_start, settings)

    if best is None or best.score < settings.min_score:
        logger.debug("No match for %r in window [%d, %d)",
                     transcript, window_start, window_end)
        return last_index

    new_index: int = ordinals[window_start + best.end_ordinal] + 1
    logger.debug("Matched %r ending at unit %d (score %.2f)",
                 transcript, new_index - 1, best.score)
    return max(last_index, new_index)


def _best_run(
    spoken: list[str],
    window: list[str],
    cursor: int,
    settings: MatcherSettings
) -> _Candidate | None:
    """Find the best in-order run of spoken words matching window words.

    Local alignment: a run ending with spoken[i] matched to window[j] extends
    an earlier run ending at (i - di, j - dj) where at most
    ``max_skipped_words`` words are skipped on each side of the gap.
    """
    max_step: int = settings.max_skipped_words + 1
    scores: list[list[float | None]] = [[None] * len(window) for _ in spoken]
    best: _Candidate | None = None

    for i, spoken_word in enumerate(spoken):
        for j, script_word in enumerate(window):
            similarity: float = word_similarity(spoken_word, script_word, settings)
            if not similarity:
                continue

            score: float = similarity
            for di in range(1, min(max_step, i) + 1):
                row = scores[i - di]
                for dj in range(1, min(max_step, j) + 1):
                    previous = row[j - dj]
                    if previous is None:
                        continue
                    skipped = (di - 1) + (dj - 1)
                    score = max(score, previous + similarity - settings.skip_penalty * skipped)
            scores[i][j] = score

            candidate = _Candidate(
                score=score,
                end_ordinal=j,
                ahead=j >= cursor,
                distance=abs(j - cursor),
            )
            if candidate.beats(best):
                best = candidate

    return best
