"""
Conversation Summarizer

LLM-based rolling summary of a thread's recent messages. Falls back to
a heuristic summary (first request, exchange count, latest request,
outcome) when no LLM is configured or the call fails.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ..common.config import AuditConfig
from ..common.llm_client import LLMClient
from ..common.schemas import ConversationSummary, Message, utcnow
from ..retriever.assembler import build_fallback_summary
from .importance import max_summary_chars, refresh_interval_s

logger = logging.getLogger("hybrid.audit.summarizer")


SUMMARY_PROMPT = """Summarize this conversation in 1-2 sentences, focusing on the user's goal and what was decided or answered.
Keep it under {max_chars} characters. Reply with the summary only.

Conversation:
{transcript}

Summary:"""


class ConversationSummarizer:
    """Builds ConversationSummary rows for the audit job"""

    def __init__(self, llm_client: Optional[LLMClient] = None, config: Optional[AuditConfig] = None):
        self.llm = llm_client
        self.config = config or AuditConfig()

    @property
    def has_llm(self) -> bool:
        return self.llm is not None and self.llm.is_available

    async def summarize(
        self,
        thread_id: str,
        messages: Sequence[Message],
        importance: float,
        now: Optional[datetime] = None,
    ) -> Optional[ConversationSummary]:
        """
        Summarize the last messages of a thread.

        Returns:
            ConversationSummary with next_due_at scaled by importance,
            or None when the thread has nothing to summarize
        """
        now = now or utcnow()
        window = list(messages)[-self.config.summary_message_window:]
        max_chars = max_summary_chars(importance, self.config)

        text = ""
        is_fallback = False
        if self.has_llm and window:
            try:
                text = await asyncio.to_thread(self._generate, window, max_chars)
            except Exception as e:
                logger.warning("LLM summary failed for %s, using fallback: %s", thread_id, e)

        if not text:
            text = build_fallback_summary(window, max_chars)
            is_fallback = True
        if not text:
            return None

        return ConversationSummary(
            thread_id=thread_id,
            summary_text=text[:max_chars],
            importance_score=importance,
            generated_at=now,
            next_due_at=now + timedelta(seconds=refresh_interval_s(importance, self.config)),
            is_fallback=is_fallback,
        )

    def _generate(self, messages: Sequence[Message], max_chars: int) -> str:
        transcript = "\n".join(f"{m.role.value}: {m.content[:500]}" for m in messages)
        prompt = SUMMARY_PROMPT.format(max_chars=max_chars, transcript=transcript)
        return self.llm.generate(prompt, max_tokens=max(64, max_chars // 3)).strip()
