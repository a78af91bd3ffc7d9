"""Tests for token-budgeted context assembly."""

from datetime import timedelta

import pytest

from conftest import NOW
from hybrid.common.config import AssemblyConfig
from hybrid.common.schemas import (
    Candidate,
    ConversationSummary,
    HybridResult,
    Message,
    Role,
    ScoredCandidate,
    SourceType,
    ThreadDigest,
)
from hybrid.retriever.assembler import ContextAssembler, build_fallback_summary


def scored(source, text, score, **kwargs):
    return ScoredCandidate(Candidate(source_type=source, text=text, raw_score=score, **kwargs), score)


def result_of(*candidates):
    return HybridResult(
        candidates=list(candidates),
        layer_breakdown={},
        confidence=0.8,
        elapsed_ms=5,
    )


def turns(n, size=40, thread_id="t1"):
    out = []
    for i in range(n):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        out.append(Message(
            role=role, content=f"turn{i} " + "x" * size,
            timestamp=NOW - timedelta(minutes=n - i), thread_id=thread_id,
        ))
    return out


def correction(text="No, the meeting was on Tuesday not Monday, please fix that everywhere"):
    return scored(SourceType.MEMORY, text, 1.0, is_correction=True)


@pytest.fixture
def assembler():
    return ContextAssembler(AssemblyConfig(token_budget=4000, min_recent_turns=4, max_recent_turns=12))


class TestBudget:
    @pytest.mark.parametrize("budget", [0, 1, 10, 37, 100, 250, 1000])
    def test_total_never_exceeds_budget(self, assembler, budget):
        result = result_of(
            correction(),
            *[scored(SourceType.VECTOR, f"knowledge item {i} " + "k" * 120, 0.9 - i * 0.05) for i in range(8)],
        )
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW, messages=turns(4, thread_id="t2"))]

        context = assembler.assemble(result, turns(10, size=200), digests, token_budget=budget, now=NOW)

        assert context.total_tokens <= budget
        assert context.total_tokens == sum(b.tokens for b in context.blocks)

    def test_token_estimate_rounds_up(self, assembler):
        block = assembler.make_block("web", "abc")
        # "[web] abc" is 9 chars
        assert block.tokens == 3

    def test_fit_block_truncates_with_ellipsis(self, assembler):
        block = assembler.make_block("memory", "m" * 400)
        fitted = assembler.fit_block(block, 10)
        assert fitted.tokens <= 10
        assert fitted.text.endswith("...")
        assert assembler.fit_block(block, 0) is None


class TestCorrections:
    def test_correction_survives_tight_budget(self, assembler):
        result = result_of(
            scored(SourceType.VECTOR, "v" * 300, 0.99),
            correction("c" * 200),
        )
        context = assembler.assemble(result, turns(4, size=400), token_budget=40, now=NOW)

        corrections = context.blocks_of("correction")
        assert len(corrections) == 1
        assert corrections[0].text.endswith("...")
        assert len(context.blocks_of("turn")) == 4
        assert context.blocks_of("knowledge") == []
        assert context.total_tokens <= 40

    @pytest.mark.parametrize("budget", [5, 6, 8, 9, 12])
    def test_correction_stub_kept_at_small_budgets(self, assembler, budget):
        result = result_of(correction("c" * 200))
        context = assembler.assemble(result, turns(1, size=400), token_budget=budget, now=NOW)

        assert len(context.blocks_of("correction")) == 1
        assert context.blocks[0].tag == "correction"
        assert context.total_tokens <= budget
        if budget >= 8:
            assert [b.tag for b in context.blocks] == ["correction", "turn"]

    def test_correction_kept_whole_when_room(self, assembler):
        context = assembler.assemble(result_of(correction()), [], token_budget=4000, now=NOW)
        assert context.blocks[0].tag == "correction"
        assert not context.blocks[0].text.endswith("...")


class TestLayout:
    def test_block_order_and_tags(self, assembler):
        result = result_of(
            correction(),
            scored(SourceType.MEMORY, "favorite color is blue", 0.95),
            scored(SourceType.WEB, "Rust 2.0 released", 0.7, url="https://example.com/rust"),
            scored(SourceType.VECTOR, "Rust book chapter", 0.6),
        )
        summary = ConversationSummary(
            thread_id="t2", summary_text="Discussed rust lifetimes",
            generated_at=NOW, next_due_at=NOW + timedelta(hours=1),
        )
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW - timedelta(hours=1), summary=summary)]

        context = assembler.assemble(result, turns(6), digests, now=NOW)

        assert [b.tag for b in context.blocks] == [
            "correction", "memory", "web", "knowledge", "summary",
            "turn", "turn", "turn", "turn", "turn", "turn",
        ]
        assert context.blocks_of("web")[0].text.endswith("(https://example.com/rust)")
        turn_texts = [b.text.split()[1] for b in context.blocks_of("turn")]
        assert turn_texts == [f"turn{i}" for i in range(6)]
        assert context.render().startswith("[correction] ")

    def test_turns_beyond_max_are_dropped(self):
        assembler = ContextAssembler(AssemblyConfig(min_recent_turns=2, max_recent_turns=3))
        context = assembler.assemble(None, turns(5), now=NOW)
        assert len(context.blocks_of("turn")) == 3
        assert context.dropped_turns == 2

    def test_low_scoring_candidates_dropped_when_full(self, assembler):
        result = result_of(*[scored(SourceType.VECTOR, "k" * 196, 0.9) for _ in range(5)])
        context = assembler.assemble(result, [], token_budget=120, now=NOW)
        assert len(context.blocks_of("knowledge")) == 2
        assert context.dropped_candidates == 3

    def test_no_result_gives_turns_only(self, assembler):
        context = assembler.assemble(None, turns(2), now=NOW)
        assert [b.tag for b in context.blocks] == ["turn", "turn"]
        assert context.result is None


class TestSummaries:
    def test_missing_summary_triggers_fallback(self):
        assembler = ContextAssembler(AssemblyConfig(fallback_summary_ttl_s=1800))
        messages = [
            Message(role=Role.USER, content="How do I configure nginx as a reverse proxy?", thread_id="t2"),
            Message(role=Role.ASSISTANT, content="Use a location block with proxy_pass pointing at the upstream app server.", thread_id="t2"),
        ]
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW, messages=messages)]

        context = assembler.assemble(None, [], digests, now=NOW)

        summaries = context.blocks_of("summary")
        assert len(summaries) == 1
        assert summaries[0].text.startswith("How do I configure nginx")
        persisted = context.fallback_summaries
        assert len(persisted) == 1
        assert persisted[0].is_fallback
        assert persisted[0].next_due_at == NOW + timedelta(seconds=1800)
        assert not persisted[0].is_stale(NOW + timedelta(minutes=29))

    def test_stale_summary_is_replaced(self):
        assembler = ContextAssembler(AssemblyConfig())
        stale = ConversationSummary(
            thread_id="t2", summary_text="old summary",
            generated_at=NOW - timedelta(hours=3), next_due_at=NOW - timedelta(hours=1),
        )
        messages = [Message(role=Role.USER, content="Plan the database migration", thread_id="t2")]
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW, summary=stale, messages=messages)]

        context = assembler.assemble(None, [], digests, now=NOW)
        assert context.blocks_of("summary")[0].text == "Plan the database migration"
        assert context.fallback_summaries[0].is_fallback

    def test_stale_summary_kept_without_messages(self):
        assembler = ContextAssembler(AssemblyConfig())
        stale = ConversationSummary(
            thread_id="t2", summary_text="old summary",
            generated_at=NOW - timedelta(hours=3), next_due_at=NOW - timedelta(hours=1),
        )
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW, summary=stale)]
        context = assembler.assemble(None, [], digests, now=NOW)
        assert context.blocks_of("summary")[0].text == "old summary"
        assert context.fallback_summaries == []

    def test_fresh_summary_needs_no_fallback(self):
        assembler = ContextAssembler(AssemblyConfig())
        fresh = ConversationSummary(
            thread_id="t2", summary_text="fallback from earlier", is_fallback=True,
            generated_at=NOW - timedelta(minutes=5), next_due_at=NOW + timedelta(minutes=25),
        )
        messages = [Message(role=Role.USER, content="Plan the database migration", thread_id="t2")]
        digests = [ThreadDigest(thread_id="t2", last_activity=NOW, summary=fresh, messages=messages)]
        context = assembler.assemble(None, [], digests, now=NOW)
        assert context.blocks_of("summary")[0].text == "fallback from earlier"
        assert context.fallback_summaries == []

    def test_newest_threads_first_up_to_max(self):
        assembler = ContextAssembler(AssemblyConfig(max_summaries=2))
        digests = []
        for i in range(3):
            summary = ConversationSummary(
                thread_id=f"t{i}", summary_text=f"summary {i}",
                generated_at=NOW, next_due_at=NOW + timedelta(hours=1),
            )
            digests.append(ThreadDigest(
                thread_id=f"t{i}", last_activity=NOW - timedelta(hours=i), summary=summary,
            ))

        context = assembler.assemble(None, [], list(reversed(digests)), now=NOW)
        assert [b.text for b in context.blocks_of("summary")] == ["summary 0", "summary 1"]
        assert context.dropped_summaries == 1


class TestFallbackSummary:
    def test_exchange_count_and_outcome(self):
        messages = [
            Message(role=Role.USER, content="Help me pick a laptop"),
            Message(role=Role.ASSISTANT, content="Sure."),
            Message(role=Role.USER, content="Something with at least 32GB of memory please"),
            Message(role=Role.ASSISTANT, content="The ThinkPad X1 Carbon and the MacBook Pro both fit that requirement."),
        ]
        text = build_fallback_summary(messages)
        assert text.startswith("Help me pick a laptop (2 exchanges)")
        assert "Latest: Something with at least 32GB" in text
        assert "Outcome: The ThinkPad" in text

    def test_no_user_messages(self):
        assert build_fallback_summary([Message(role=Role.ASSISTANT, content="hello")]) == ""

    def test_respects_max_chars(self):
        messages = [Message(role=Role.USER, content="x" * 400)]
        assert len(build_fallback_summary(messages, max_chars=50)) == 50
