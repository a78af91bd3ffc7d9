"""Tests for stop word filtering and stemming."""

from hybrid.common.stopwords import (
    FilterContext,
    categories_for_word,
    filter_stop_words,
    is_stop_word,
    stem,
)


class TestStopWords:
    def test_articles_always_removed(self):
        assert is_stop_word("The")
        assert is_stop_word("an", FilterContext(is_question=False))

    def test_question_words_removed_in_questions(self):
        ctx = FilterContext(is_question=True)
        assert filter_stop_words(["what", "is", "my", "favorite", "color"], ctx) == ["favorite", "color"]

    def test_important_prepositions_kept_inside_phrases(self):
        ctx = FilterContext(preserve_phrases=True, preserve_important_prepositions=True)
        assert not is_stop_word("on", ctx)
        assert is_stop_word("on")

    def test_word_in_several_categories(self):
        assert categories_for_word("for") == ["prepositions", "conjunctions"]


class TestStem:
    def test_plural_folding(self):
        assert stem("colors") == "color"
        assert stem("libraries") == "library"
        assert stem("boxes") == "box"

    def test_non_plural_endings_untouched(self):
        assert stem("status") == "status"
        assert stem("class") == "class"
        assert stem("analytics") == "analytics"

    def test_short_words_untouched(self):
        assert stem("bus") == "bus"
