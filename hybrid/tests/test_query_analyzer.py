"""Tests for QueryAnalyzer intent, complexity and keyword extraction."""

import pytest

from hybrid.common.schemas import Message, Role
from hybrid.retriever.query_analyzer import Complexity, QueryAnalyzer, QueryIntent


@pytest.fixture
def analyzer():
    return QueryAnalyzer()


class TestIntent:
    @pytest.mark.parametrize("query,intent", [
        ("what's my favorite color", QueryIntent.FACTUAL),
        ("Please remember that I prefer tea over coffee", QueryIntent.MEMORY_SAVE),
        ("What do you remember about me?", QueryIntent.MEMORY_LIST),
        ("No, that's not what I meant", QueryIntent.CORRECTION),
        ("search the web for rust async runtimes", QueryIntent.WEB_SEARCH),
        ("thanks!", QueryIntent.CONVERSATIONAL),
        ("Explain the trade-offs of a microservices architecture", QueryIntent.COMPLEX_REASONING),
    ])
    def test_explicit_intents(self, analyzer, query, intent):
        assert analyzer.analyze(query).intent == intent

    def test_recall_question_is_not_a_save(self, analyzer):
        result = analyzer.analyze("do you remember my name?")
        assert result.intent != QueryIntent.MEMORY_SAVE
        assert result.is_personal

    def test_temporal_heuristic_routes_to_web(self, analyzer):
        result = analyzer.analyze("latest developments in quantum computing")
        assert result.is_temporal
        assert result.intent == QueryIntent.WEB_SEARCH

    def test_explicit_search_flag(self, analyzer):
        assert analyzer.analyze("look up the weather in Paris").explicit_search
        assert not analyzer.analyze("what is a monad").explicit_search


class TestKeywords:
    def test_question_normalization(self, analyzer):
        result = analyzer.analyze("what's my favorite color")
        assert result.is_question
        assert result.normalized == "favorite color"
        assert result.phrases == ["favorite color"]
        assert result.keywords == ["favorite", "color"]

    def test_keywords_are_stemmed_and_unique(self, analyzer):
        result = analyzer.analyze("python libraries and more python libraries")
        assert result.keywords.count("python") == 1
        assert "library" in result.keywords

    def test_quoted_phrase_kept_verbatim(self, analyzer):
        result = analyzer.analyze('find the "borrow checker rules" page')
        assert "borrow checker rules" in result.phrases

    def test_terms_put_phrases_first(self, analyzer):
        result = analyzer.analyze("what's my favorite color")
        assert result.terms[0] == "favorite color"


class TestComplexity:
    def test_simple(self, analyzer):
        assert analyzer.analyze("what is rust?").complexity == Complexity.SIMPLE

    def test_complex_by_technical_terms(self, analyzer):
        assert analyzer.analyze("how does the raft protocol handle latency").complexity == Complexity.COMPLEX


class TestEdgeCases:
    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query_is_conversational(self, analyzer, query):
        result = analyzer.analyze(query)
        assert result.intent == QueryIntent.CONVERSATIONAL
        assert result.keywords == []

    def test_follow_up_inherits_temporal_shape(self, analyzer):
        turns = [
            Message(thread_id="t1", role=Role.USER, content="what are the latest rust releases"),
            Message(thread_id="t1", role=Role.ASSISTANT, content="Rust 1.80 shipped..."),
        ]
        result = analyzer.analyze("and what about go", turns)
        assert result.is_temporal

    def test_internal_failure_degrades(self, analyzer, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("regex exploded")
        monkeypatch.setattr(analyzer, "_analyze", boom)
        result = analyzer.analyze("what's my favorite color")
        assert result.intent == QueryIntent.CONVERSATIONAL
