"""Tests for the SQLite memory / message / summary store."""

from datetime import datetime, timedelta, timezone

import pytest

from hybrid.common.memory_store import MemoryStore, estimate_tokens
from hybrid.common.schemas import ConversationSummary, Memory, Role, Tier


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = MemoryStore(":memory:")
    yield s
    s.close()


class TestMemories:
    def test_insert_and_get(self, store):
        memory = Memory(user_id="u1", content="user's favorite color is blue", tier=Tier.TIER1, priority=0.9)
        store.insert_memory(memory)

        loaded = store.get_memory(memory.id)
        assert loaded.content == memory.content
        assert loaded.tier == Tier.TIER1
        assert loaded.priority == 0.9
        assert loaded.id.startswith("mem_")

    def test_soft_delete_hides_memory(self, store):
        memory = store.insert_memory(Memory(user_id="u1", content="likes tea"))
        assert store.soft_delete_memory(memory.id)
        assert not store.soft_delete_memory(memory.id)

        assert store.list_memories("u1") == []
        tombstoned = store.list_memories("u1", include_deleted=True)
        assert tombstoned[0].is_deleted

    def test_search_orders_by_matches_then_priority(self, store):
        store.insert_memory(Memory(user_id="u1", content="favorite color is blue", priority=0.5))
        store.insert_memory(Memory(user_id="u1", content="favorite food is ramen", priority=0.9))
        store.insert_memory(Memory(user_id="u2", content="favorite color is red", priority=0.9))

        hits = store.search_memories("u1", ["favorite", "color"])
        assert [m.content for m, _ in hits] == ["favorite color is blue", "favorite food is ramen"]
        assert hits[0][1] == 2

    def test_search_escapes_like_wildcards(self, store):
        store.insert_memory(Memory(user_id="u1", content="discount is 50% off"))
        store.insert_memory(Memory(user_id="u1", content="nothing to see"))
        hits = store.search_memories("u1", ["50%"])
        assert len(hits) == 1

    def test_search_scoped_to_thread(self, store):
        store.insert_memory(Memory(user_id="u1", thread_id="t1", content="deploy uses blue green"))
        store.insert_memory(Memory(user_id="u1", thread_id="t2", content="deploy window is friday"))
        store.insert_memory(Memory(user_id="u1", thread_id="t2", content="deploy needs approval", tier=Tier.TIER1))
        store.insert_memory(Memory(user_id="u1", content="deploy from main only"))

        scoped = {m.content for m, _ in store.search_memories("u1", ["deploy"], thread_id="t1")}
        assert scoped == {"deploy uses blue green", "deploy needs approval", "deploy from main only"}
        assert len(store.search_memories("u1", ["deploy"])) == 4

    def test_embeddings_scoped_to_thread(self, store):
        store.insert_memory(Memory(user_id="u1", thread_id="t1", content="here"), embedding=[1.0, 0.0])
        store.insert_memory(Memory(user_id="u1", thread_id="t2", content="elsewhere"), embedding=[0.0, 1.0])
        rows = store.memory_embeddings("u1", thread_id="t1")
        assert [m.content for m, _ in rows] == ["here"]

    def test_embeddings_round_trip(self, store):
        memory = store.insert_memory(Memory(user_id="u1", content="vector memory"), embedding=[0.1, 0.2])
        rows = store.memory_embeddings("u1")
        assert rows[0][0].id == memory.id
        assert rows[0][1] == [0.1, 0.2]

    def test_thread_memory_stats(self, store):
        store.insert_memory(Memory(user_id="u1", thread_id="t1", content="a", tier=Tier.TIER1))
        store.insert_memory(Memory(user_id="u1", thread_id="t1", content="b", tier=Tier.TIER3))
        assert store.thread_memory_stats("t1") == (2, True, False)
        assert store.thread_memory_stats("t-empty") == (0, False, False)


class TestMessages:
    def test_list_messages_chronological_with_limit(self, store):
        for i in range(5):
            store.add_message("t1", "u1", Role.USER, f"message {i}", at=NOW + timedelta(minutes=i))

        last_two = store.list_messages("t1", limit=2)
        assert [m.content for m in last_two] == ["message 3", "message 4"]

    def test_recent_threads_excludes_current(self, store):
        store.add_message("t1", "u1", Role.USER, "old", at=NOW)
        store.add_message("t2", "u1", Role.USER, "newer", at=NOW + timedelta(hours=1))
        store.add_message("t3", "u1", Role.USER, "current", at=NOW + timedelta(hours=2))

        threads = store.recent_threads("u1", exclude_thread="t3")
        assert [t for t, _ in threads] == ["t2", "t1"]

    def test_active_threads_counts_tokens(self, store):
        store.add_message("t1", "u1", Role.USER, "x" * 40, at=NOW)
        store.add_message("t1", "u1", Role.ASSISTANT, "y" * 8, at=NOW + timedelta(minutes=1))
        store.add_message("t-old", "u1", Role.USER, "stale", at=NOW - timedelta(days=3))

        active = store.active_threads(NOW - timedelta(hours=1))
        assert len(active) == 1
        assert active[0].message_count == 2
        assert active[0].token_count == 12


class TestSummaries:
    def test_upsert_replaces(self, store):
        first = ConversationSummary(thread_id="t1", summary_text="v1", generated_at=NOW, next_due_at=NOW)
        store.upsert_summary(first)
        second = first.model_copy(update={"summary_text": "v2", "is_fallback": True})
        store.upsert_summary(second)

        loaded = store.get_summary("t1")
        assert loaded.summary_text == "v2"
        assert loaded.is_fallback
        assert loaded.next_due_at == NOW

    def test_missing_summary(self, store):
        assert store.get_summary("nope") is None


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2
