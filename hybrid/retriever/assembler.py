"""
Context Assembler

Folds a HybridResult, recent conversation turns and other-thread
summaries into provenance-tagged blocks under a hard token budget.

Allocation order:
1. The last min_recent_turns turns (truncated, not dropped, when tight)
2. Correction candidates (always included, truncated if needed)
3. Remaining candidates by enhanced score, while they fit
4. Summaries of recent threads, newest first
5. Older turns, up to max_recent_turns

Token estimate: ceil(len(rendered block) / chars_per_token).
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ..common.config import AssemblyConfig
from ..common.schemas import (
    ConversationSummary,
    HybridResult,
    Message,
    Role,
    ScoredCandidate,
    SourceType,
    ThreadDigest,
    utcnow,
)

logger = logging.getLogger("hybrid.retriever.assembler")

SOURCE_TAGS = {
    SourceType.MEMORY: "memory",
    SourceType.VECTOR: "knowledge",
    SourceType.WEB: "web",
}
ELLIPSIS = "..."


def build_fallback_summary(messages: Sequence[Message], max_chars: int = 500) -> str:
    """
    Summarize a thread without an LLM.

    First user message, exchange count, latest user message and the last
    assistant outcome, cut to max_chars.
    """
    user_msgs = [m.content.strip() for m in messages if m.role == Role.USER and m.content.strip()]
    assistant_msgs = [m.content.strip() for m in messages if m.role == Role.ASSISTANT and m.content.strip()]
    if not user_msgs:
        return ""

    parts = [user_msgs[0][:150]]
    if len(user_msgs) > 1:
        parts.append(f"({len(user_msgs)} exchanges)")
        latest = user_msgs[-1]
        if latest != user_msgs[0] and len(latest) > 20:
            parts.append(f"Latest: {latest[:100]}")
    if assistant_msgs and len(assistant_msgs[-1]) > 50:
        parts.append(f"Outcome: {assistant_msgs[-1][:80]}")
    return " ".join(parts)[:max_chars]


@dataclass
class ContextBlock:
    """One provenance-tagged unit of assembled context"""
    tag: str
    text: str
    tokens: int
    score: Optional[float] = None
    thread_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def render(self) -> str:
        return f"[{self.tag}] {self.text}"


@dataclass
class AssembledContext:
    """Final bounded context handed to the conversation layer"""
    blocks: List[ContextBlock]
    total_tokens: int
    token_budget: int
    dropped_candidates: int = 0
    dropped_turns: int = 0
    dropped_summaries: int = 0
    result: Optional[HybridResult] = field(default=None, repr=False)
    # heuristic summaries built during assembly, for the caller to persist
    fallback_summaries: List[ConversationSummary] = field(default_factory=list, repr=False)

    def blocks_of(self, tag: str) -> List[ContextBlock]:
        return [b for b in self.blocks if b.tag == tag]

    def render(self) -> str:
        return "\n\n".join(b.render() for b in self.blocks)

    @property
    def is_empty(self) -> bool:
        return not self.blocks


class ContextAssembler:
    """Token-budgeted context window builder"""

    def __init__(self, config: Optional[AssemblyConfig] = None):
        self.config = config or AssemblyConfig()

    def estimate_tokens(self, rendered: str) -> int:
        return math.ceil(len(rendered) / self.config.chars_per_token)

    def make_block(self, tag: str, text: str, **kwargs) -> ContextBlock:
        block = ContextBlock(tag=tag, text=text, tokens=0, **kwargs)
        block.tokens = self.estimate_tokens(block.render())
        return block

    def min_stub_tokens(self, tag: str) -> int:
        """Smallest budget fit_block can truncate a block with this tag into"""
        return math.ceil((len(f"[{tag}] ") + len(ELLIPSIS) + 1) / self.config.chars_per_token)

    def fit_block(self, block: ContextBlock, max_tokens: int) -> Optional[ContextBlock]:
        """Truncate a block to max_tokens; None if not even a stub fits"""
        if block.tokens <= max_tokens:
            return block
        if max_tokens <= 0:
            return None
        overhead = len(f"[{block.tag}] ") + len(ELLIPSIS)
        allowed = max_tokens * self.config.chars_per_token - overhead
        if allowed <= 0:
            return None
        text = block.text[:allowed].rstrip() + ELLIPSIS
        return self.make_block(
            block.tag, text, score=block.score, thread_id=block.thread_id, timestamp=block.timestamp
        )

    def assemble(
        self,
        result: Optional[HybridResult],
        recent_turns: Sequence[Message] = (),
        digests: Sequence[ThreadDigest] = (),
        token_budget: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AssembledContext:
        """
        Build the context window.

        Args:
            result: Orchestrated retrieval result (may be None or empty)
            recent_turns: Current thread turns, chronological
            digests: Other recent threads (summary and/or messages)
            token_budget: Overrides the configured budget
            now: Reference time for summary staleness

        Returns:
            AssembledContext whose total_tokens never exceeds the budget
        """
        budget = max(0, token_budget if token_budget is not None else self.config.token_budget)
        now = now or utcnow()
        candidates = list(result.candidates) if result else []
        corrections = [c for c in candidates if c.is_correction]
        others = [c for c in candidates if not c.is_correction]

        correction_blocks = [self._candidate_block(c) for c in corrections]
        # every correction keeps at least a truncated stub, even past half the budget
        floors = [min(b.tokens, self.min_stub_tokens(b.tag)) for b in correction_blocks]
        wanted = sum(b.tokens for b in correction_blocks)
        reserve = min(budget, max(min(wanted, budget // 2), sum(floors)))

        turns = list(recent_turns)
        reserved_count = min(self.config.min_recent_turns, len(turns))
        reserved = turns[len(turns) - reserved_count:] if reserved_count else []
        older = turns[:len(turns) - reserved_count]
        older = older[max(0, len(older) - (self.config.max_recent_turns - reserved_count)):]

        turn_blocks, dropped_turns = self._fit_turns(reserved, budget - reserve)
        dropped_turns += len(turns) - len(reserved) - len(older)
        remaining = budget - sum(b.tokens for b in turn_blocks)

        kept_corrections = []
        for i, block in enumerate(correction_blocks):
            fitted = self.fit_block(block, remaining - sum(floors[i + 1:]))
            if fitted is None:
                logger.warning("No room left for correction block (%d tokens remaining)", remaining)
                continue
            kept_corrections.append(fitted)
            remaining -= fitted.tokens

        kept_candidates = []
        dropped_candidates = 0
        for candidate in others:
            block = self._candidate_block(candidate)
            if block.tokens <= remaining:
                kept_candidates.append(block)
                remaining -= block.tokens
            else:
                dropped_candidates += 1

        summary_blocks = []
        fallbacks: List[ConversationSummary] = []
        dropped_summaries = 0
        ordered_digests = sorted(digests, key=lambda d: d.last_activity, reverse=True)
        for digest in ordered_digests[:self.config.max_summaries]:
            block = self._summary_block(digest, now, fallbacks)
            if block is None:
                continue
            if block.tokens <= remaining:
                summary_blocks.append(block)
                remaining -= block.tokens
            else:
                dropped_summaries += 1
        dropped_summaries += max(0, len(ordered_digests) - self.config.max_summaries)

        older_blocks = []
        for message in reversed(older):
            block = self._turn_block(message)
            if block.tokens > remaining:
                dropped_turns += 1
                continue
            older_blocks.insert(0, block)
            remaining -= block.tokens

        blocks = kept_corrections + kept_candidates + summary_blocks + older_blocks + turn_blocks
        total = sum(b.tokens for b in blocks)
        logger.debug(
            "Assembled %d blocks, %d/%d tokens (dropped: %d candidates, %d turns, %d summaries)",
            len(blocks), total, budget, dropped_candidates, dropped_turns, dropped_summaries,
        )
        return AssembledContext(
            blocks=blocks,
            total_tokens=total,
            token_budget=budget,
            dropped_candidates=dropped_candidates,
            dropped_turns=dropped_turns,
            dropped_summaries=dropped_summaries,
            result=result,
            fallback_summaries=fallbacks,
        )

    def _fit_turns(self, turns: List[Message], budget: int):
        """
        Fit the reserved turns into budget.

        Turns are truncated to an equal share first; the oldest is only
        dropped when even a truncated stub cannot fit.
        """
        blocks = [self._turn_block(m) for m in turns]
        dropped = 0
        while blocks:
            if sum(b.tokens for b in blocks) <= budget:
                return blocks, dropped
            share = budget // len(blocks)
            fitted = [self.fit_block(b, share) for b in blocks]
            if all(f is not None for f in fitted):
                return fitted, dropped
            blocks.pop(0)
            dropped += 1
        return [], dropped

    def _candidate_block(self, candidate: ScoredCandidate) -> ContextBlock:
        c = candidate.candidate
        tag = "correction" if c.is_correction else SOURCE_TAGS[c.source_type]
        text = c.text
        if c.url:
            text = f"{text} ({c.url})"
        return self.make_block(tag, text, score=candidate.enhanced_score, timestamp=c.timestamp)

    def _turn_block(self, message: Message) -> ContextBlock:
        return self.make_block(
            "turn", f"{message.role.value}: {message.content}",
            thread_id=message.thread_id, timestamp=message.timestamp,
        )

    def _summary_block(
        self, digest: ThreadDigest, now: datetime, fallbacks: List[ConversationSummary]
    ) -> Optional[ContextBlock]:
        summary = digest.summary
        if summary is None or summary.is_stale(now):
            fallback = self._fallback_summary(digest, now)
            if fallback is not None:
                fallbacks.append(fallback)
            summary = fallback or summary
        if summary is None or not summary.summary_text:
            return None
        return self.make_block(
            "summary", summary.summary_text,
            thread_id=digest.thread_id, timestamp=digest.last_activity,
        )

    def _fallback_summary(self, digest: ThreadDigest, now: datetime) -> Optional[ConversationSummary]:
        text = build_fallback_summary(digest.messages, self.config.fallback_summary_chars)
        if not text:
            return None
        return ConversationSummary(
            thread_id=digest.thread_id,
            summary_text=text,
            importance_score=digest.summary.importance_score if digest.summary else 0.0,
            generated_at=now,
            next_due_at=now + timedelta(seconds=self.config.fallback_summary_ttl_s),
            is_fallback=True,
        )
