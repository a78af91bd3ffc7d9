"""
SQLite-backed persistence for memories, messages and summaries.

Reads serve the memory executor and the assembler; writes come from the
service (memories, messages) and the audit job (summary rows). Memories
are never hard-deleted: forgetting sets deleted_at.

DB location (default): ~/.hybrid/hybrid.db, ":memory:" in tests.
"""

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .schemas import (
    ConversationSummary,
    Memory,
    Message,
    Role,
    ThreadActivity,
    Tier,
    utcnow,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    thread_id TEXT,
    content TEXT NOT NULL,
    tier TEXT NOT NULL DEFAULT 'tier3',
    priority REAL NOT NULL DEFAULT 0.5,
    kind TEXT NOT NULL DEFAULT 'fact',
    created_at REAL NOT NULL,
    deleted_at REAL,
    embedding TEXT
);
CREATE INDEX IF NOT EXISTS idx_memories_user ON memories (user_id, deleted_at);
CREATE INDEX IF NOT EXISTS idx_memories_thread ON memories (thread_id);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    tokens INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages (thread_id, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_user ON messages (user_id, created_at);

CREATE TABLE IF NOT EXISTS summaries (
    thread_id TEXT PRIMARY KEY,
    summary_text TEXT NOT NULL,
    importance_score REAL NOT NULL DEFAULT 0,
    generated_at REAL NOT NULL,
    next_due_at REAL NOT NULL,
    is_fallback INTEGER NOT NULL DEFAULT 0
);
"""


def _ts(dt: Optional[datetime]) -> Optional[float]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _dt(ts: Optional[float]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Conservative token estimate: ceil(chars / chars_per_token)"""
    if not text:
        return 0
    return -(-len(text) // chars_per_token)


# a thread also sees thread-less and tier1 memories saved elsewhere
_THREAD_SCOPE = " AND (thread_id = ? OR thread_id IS NULL OR tier = 'tier1')"


class MemoryStore:
    """
    Persistence service for the retrieval core.

    One connection guarded by a lock; every call is short so the audit
    job never holds the lock across an LLM call.
    """

    def __init__(self, db_path: str = ":memory:"):
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------ #
    # Memories
    # ------------------------------------------------------------------ #

    def insert_memory(self, memory: Memory, embedding: Optional[Sequence[float]] = None) -> Memory:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO memories "
                "(id, user_id, thread_id, content, tier, priority, kind, created_at, deleted_at, embedding) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id, memory.user_id, memory.thread_id, memory.content,
                    memory.tier.value, memory.priority, memory.kind,
                    _ts(memory.created_at), _ts(memory.deleted_at),
                    json.dumps(list(embedding)) if embedding is not None else None,
                ),
            )
        return memory

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return self._row_to_memory(row) if row else None

    def soft_delete_memory(self, memory_id: str, when: Optional[datetime] = None) -> bool:
        """Tombstone a memory. Returns False if it is unknown or already deleted."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE memories SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (_ts(when or utcnow()), memory_id),
            )
        return cur.rowcount > 0

    def list_memories(self, user_id: str, limit: int = 20, include_deleted: bool = False) -> List[Memory]:
        sql = "SELECT * FROM memories WHERE user_id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        sql += " ORDER BY created_at DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(sql, (user_id, limit)).fetchall()
        return [self._row_to_memory(r) for r in rows]

    def search_memories(
        self,
        user_id: str,
        terms: Sequence[str],
        limit: int = 20,
        thread_id: Optional[str] = None,
    ) -> List[Tuple[Memory, int]]:
        """
        Keyword search over a user's live memories.

        With thread_id, memories saved in other threads are skipped unless
        they are tier1 (thread-less memories always match).

        Returns (memory, number of matched terms) ordered by matches, then
        priority, then recency.
        """
        terms = [t.lower() for t in terms if t and t.strip()]
        if not terms:
            return []

        clauses = " OR ".join(["content LIKE ? ESCAPE '\\'"] * len(terms))
        params: list = [user_id]
        sql = f"SELECT * FROM memories WHERE user_id = ? AND deleted_at IS NULL AND ({clauses})"
        params.extend(f"%{_escape_like(t)}%" for t in terms)
        if thread_id:
            sql += _THREAD_SCOPE
            params.append(thread_id)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()

        hits = []
        for row in rows:
            memory = self._row_to_memory(row)
            content = memory.content.lower()
            matched = sum(1 for t in terms if t in content)
            if matched:
                hits.append((memory, matched))

        hits.sort(key=lambda h: (-h[1], -h[0].priority, -_ts(h[0].created_at)))
        return hits[:limit]

    def memory_embeddings(
        self, user_id: str, limit: int = 500, thread_id: Optional[str] = None
    ) -> List[Tuple[Memory, List[float]]]:
        """Live memories of a user that carry an embedding, thread scoped like search_memories"""
        sql = "SELECT * FROM memories WHERE user_id = ? AND deleted_at IS NULL AND embedding IS NOT NULL"
        params: list = [user_id]
        if thread_id:
            sql += _THREAD_SCOPE
            params.append(thread_id)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [(self._row_to_memory(r), json.loads(r["embedding"])) for r in rows]

    def thread_memory_stats(self, thread_id: str) -> Tuple[int, bool, bool]:
        """(live memory count, has tier1, has tier2) for one thread"""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n, "
                "SUM(CASE WHEN tier = 'tier1' THEN 1 ELSE 0 END) AS t1, "
                "SUM(CASE WHEN tier = 'tier2' THEN 1 ELSE 0 END) AS t2 "
                "FROM memories WHERE thread_id = ? AND deleted_at IS NULL",
                (thread_id,),
            ).fetchone()
        return int(row["n"] or 0), bool(row["t1"]), bool(row["t2"])

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    def add_message(
        self,
        thread_id: str,
        user_id: str,
        role: Role,
        content: str,
        at: Optional[datetime] = None,
    ) -> Message:
        at = at or utcnow()
        role = Role(role)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO messages (thread_id, user_id, role, content, tokens, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (thread_id, user_id, role.value, content, estimate_tokens(content), _ts(at)),
            )
        return Message(role=role, content=content, timestamp=at, thread_id=thread_id)

    def list_messages(self, thread_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages of a thread in chronological order (the last `limit` if given)"""
        sql = "SELECT * FROM messages WHERE thread_id = ? ORDER BY created_at DESC, id DESC"
        params: list = [thread_id]
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [
            Message(
                role=Role(r["role"]),
                content=r["content"],
                timestamp=_dt(r["created_at"]),
                thread_id=r["thread_id"],
            )
            for r in reversed(rows)
        ]

    def recent_threads(
        self,
        user_id: str,
        exclude_thread: Optional[str] = None,
        limit: int = 4,
    ) -> List[Tuple[str, datetime]]:
        """Most recently active threads of a user, newest first"""
        with self._lock:
            rows = self._conn.execute(
                "SELECT thread_id, MAX(created_at) AS last_at FROM messages "
                "WHERE user_id = ? AND thread_id != ? "
                "GROUP BY thread_id ORDER BY last_at DESC LIMIT ?",
                (user_id, exclude_thread or "", limit),
            ).fetchall()
        return [(r["thread_id"], _dt(r["last_at"])) for r in rows]

    def active_threads(self, since: datetime) -> List[ThreadActivity]:
        """Threads with at least one message since the given time"""
        with self._lock:
            rows = self._conn.execute(
                "SELECT thread_id, MIN(user_id) AS user_id, COUNT(*) AS n, "
                "SUM(tokens) AS tokens, MAX(created_at) AS last_at FROM messages "
                "GROUP BY thread_id HAVING MAX(created_at) >= ?",
                (_ts(since),),
            ).fetchall()
        return [
            ThreadActivity(
                thread_id=r["thread_id"],
                user_id=r["user_id"],
                message_count=int(r["n"]),
                token_count=int(r["tokens"] or 0),
                last_message_at=_dt(r["last_at"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------ #
    # Summaries
    # ------------------------------------------------------------------ #

    def upsert_summary(self, summary: ConversationSummary) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO summaries "
                "(thread_id, summary_text, importance_score, generated_at, next_due_at, is_fallback) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(thread_id) DO UPDATE SET "
                "summary_text = excluded.summary_text, "
                "importance_score = excluded.importance_score, "
                "generated_at = excluded.generated_at, "
                "next_due_at = excluded.next_due_at, "
                "is_fallback = excluded.is_fallback",
                (
                    summary.thread_id, summary.summary_text, summary.importance_score,
                    _ts(summary.generated_at), _ts(summary.next_due_at),
                    1 if summary.is_fallback else 0,
                ),
            )

    def get_summary(self, thread_id: str) -> Optional[ConversationSummary]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM summaries WHERE thread_id = ?", (thread_id,)
            ).fetchone()
        if not row:
            return None
        return ConversationSummary(
            thread_id=row["thread_id"],
            summary_text=row["summary_text"],
            importance_score=row["importance_score"],
            generated_at=_dt(row["generated_at"]),
            next_due_at=_dt(row["next_due_at"]),
            is_fallback=bool(row["is_fallback"]),
        )

    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            content=row["content"],
            tier=Tier.parse(row["tier"]),
            priority=row["priority"],
            kind=row["kind"],
            created_at=_dt(row["created_at"]),
            deleted_at=_dt(row["deleted_at"]),
        )
