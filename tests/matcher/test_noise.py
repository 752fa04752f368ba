"""
Tests for matching through recognition errors, filler words and skips.
"""

from voiceprompter.matcher import NO_PROGRESS, MatcherSettings, match
from voiceprompter.tokenizer import TextUnit, tokenize

# Units: The(0) ' '(1) quick(2) ' '(3) brown(4) ' '(5) fox(6)
FOX: list[TextUnit] = tokenize("The quick brown fox")


class TestMisrecognizedWords:
    """The recognizer often gets a word slightly wrong."""

    def test_near_miss_inside_run(self) -> None:
        """"brow" for "brown" still carries the run on to "fox"."""
        assert match("the quick brow fox", FOX, NO_PROGRESS) >= 7

    def test_near_miss_at_end_of_run(self) -> None:
        assert match("the quick browne", FOX, NO_PROGRESS) == 5

    def test_misheard_word_inside_run(self) -> None:
        assert match("the quack brown fox", FOX, NO_PROGRESS) == 7

    def test_unrelated_word_inside_run(self) -> None:
        """An unrelated word in place of a script word is skipped over."""
        assert match("the zebra brown fox", FOX, NO_PROGRESS) == 7


class TestFillerWords:
    """Extra spoken words that aren't in the script."""

    def test_leading_filler(self) -> None:
        assert match("um the quick brown", FOX, NO_PROGRESS) == 5

    def test_filler_between_words(self) -> None:
        assert match("the quick uh brown", FOX, NO_PROGRESS) == 5

    def test_trailing_filler(self) -> None:
        """Trailing noise doesn't move the position past the last real match."""
        assert match("the quick brown er", FOX, NO_PROGRESS) == 5


class TestSkippedScriptWords:
    """The speaker leaves out a script word."""

    def test_one_skipped_word(self) -> None:
        assert match("the brown fox", FOX, NO_PROGRESS) == 7

    def test_skip_limit_is_configurable(self) -> None:
        units = tokenize("alpha beta gamma delta epsilon")
        # alpha(0) beta(2) gamma(4) delta(6) epsilon(8)
        no_skips = MatcherSettings(max_skipped_words=0)
        # Without skips "alpha" and "delta epsilon" are separate runs
        assert match("alpha delta epsilon", units, NO_PROGRESS, no_skips) == 9
        assert match("alpha gamma", units, NO_PROGRESS, no_skips) == 1


class TestRevisedTranscripts:
    """Interim hypotheses are re-sent as they grow."""

    def test_growing_hypothesis(self) -> None:
        units = tokenize("Welcome to the show everyone")
        # Welcome(0) to(2) the(4) show(6) everyone(8)
        positions = [
            match(text, units, NO_PROGRESS)
            for text in ["welcome", "welcome to", "welcome to the", "welcome to the show"]
        ]
        assert positions == [1, 3, 5, 7]

    def test_long_transcript_uses_latest_words(self) -> None:
        """Only the newest words of a very long transcript are aligned."""
        words = [f"w{i}" for i in range(40)]
        units = tokenize(" ".join(words))
        settings = MatcherSettings(max_transcript_words=4, min_window_words=80)
        last_word = units[-1]
        assert match(" ".join(words), units, NO_PROGRESS, settings) == last_word.index + 1
