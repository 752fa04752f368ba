"""
Tests for the bounded search window around the last position.
"""

from voiceprompter.matcher import NO_PROGRESS, MatcherSettings, match
from voiceprompter.tokenizer import tokenize

GREEK = ("alpha beta gamma delta epsilon zeta eta theta iota kappa "
         "lambda mu nu xi omicron pi rho sigma tau upsilon")


def word_end(units, word: str, occurrence: int = 0) -> int:
    """Index of the unit right after the given occurrence of a word."""
    found = [u.index for u in units if u.key == word]
    return found[occurrence] + 1


class TestWindowBounds:
    """Matches far from the last position are out of reach."""

    def test_words_beyond_window_are_ignored(self) -> None:
        units = tokenize(GREEK)
        assert match("sigma tau", units, NO_PROGRESS) == NO_PROGRESS

    def test_window_follows_position(self) -> None:
        units = tokenize(GREEK)
        last = word_end(units, "omicron")
        assert match("sigma tau", units, last) == word_end(units, "tau")

    def test_window_grows_with_transcript_length(self) -> None:
        """A longer transcript searches further ahead."""
        units = tokenize(GREEK)
        small = MatcherSettings(min_window_words=2, window_multiplier=2)
        assert match("delta epsilon", units, NO_PROGRESS, small) == word_end(units, "delta")
        assert match("alpha beta delta epsilon", units, NO_PROGRESS, small) == word_end(units, "epsilon")

    def test_lookbehind_reaches_recent_words(self) -> None:
        """Words just before the position still count, without moving it back."""
        units = tokenize(GREEK)
        last = word_end(units, "gamma")
        assert match("beta gamma delta", units, last) == word_end(units, "delta")


class TestRepeatedWords:
    """Common words occur all over a script."""

    SCRIPT = ("the cat sat on a mat and looked around " + GREEK +
              " and finally the end")

    def test_lone_common_word_does_not_jump(self) -> None:
        units = tokenize(self.SCRIPT)
        last = word_end(units, "cat")
        result = match("the", units, last)
        assert result < word_end(units, "the", occurrence=1)
        assert result == last

    def test_nearest_occurrence_ahead_wins(self) -> None:
        units = tokenize("go home go home now")
        # go(0) home(2) go(4) home(6) now(8)
        assert match("go home", units, 3) == 7

    def test_repeated_phrase_prefers_next_occurrence(self) -> None:
        units = tokenize("say it again and say it again and stop")
        first_end = word_end(units, "again")
        assert match("say it again", units, first_end) == word_end(units, "again", occurrence=1)

    def test_equal_runs_prefer_closest_to_position(self) -> None:
        units = tokenize("one two three one two three")
        # Only the first occurrence is ahead and nearest from the start
        assert match("one two", units, NO_PROGRESS) == word_end(units, "two")
