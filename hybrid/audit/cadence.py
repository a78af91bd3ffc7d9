"""
Cadence Tracker

Decides when a thread's summary is due for regeneration. A thread
triggers when enough new messages or tokens accumulate, or when enough
time has passed with new activity, whichever comes first. A debounce
floor prevents back-to-back runs.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from ..common.config import AuditConfig
from ..common.schemas import ThreadActivity

logger = logging.getLogger("hybrid.audit.cadence")


@dataclass
class ThreadCadence:
    """Per-thread counters since the last completed audit"""
    thread_id: str
    messages_since: int = 0
    tokens_since: int = 0
    first_pending_at: Optional[float] = None
    last_activity_at: Optional[float] = None
    last_run_at: Optional[float] = None
    seen_messages: int = 0
    seen_tokens: int = 0


class CadenceTracker:
    """Message / token / wall-clock triggers with a debounce floor"""

    def __init__(self, config: Optional[AuditConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or AuditConfig()
        self._clock = clock
        self._threads: Dict[str, ThreadCadence] = {}

    def _state(self, thread_id: str) -> ThreadCadence:
        state = self._threads.get(thread_id)
        if state is None:
            state = ThreadCadence(thread_id=thread_id)
            self._threads[thread_id] = state
        return state

    def record_message(self, thread_id: str, tokens: int, at: Optional[float] = None) -> None:
        """Count one new message on a thread"""
        self._record(thread_id, 1, tokens, at)

    def sync(self, activity: ThreadActivity) -> None:
        """Fold store totals for a thread into the counters (deltas only)"""
        state = self._state(activity.thread_id)
        new_messages = max(0, activity.message_count - state.seen_messages)
        new_tokens = max(0, activity.token_count - state.seen_tokens)
        state.seen_messages = max(state.seen_messages, activity.message_count)
        state.seen_tokens = max(state.seen_tokens, activity.token_count)
        if new_messages or new_tokens:
            at = activity.last_message_at.timestamp() if activity.last_message_at else None
            self._record(activity.thread_id, new_messages, new_tokens, at)

    def _record(self, thread_id: str, messages: int, tokens: int, at: Optional[float]) -> None:
        at = at if at is not None else self._clock()
        state = self._state(thread_id)
        state.messages_since += messages
        state.tokens_since += tokens
        if state.first_pending_at is None:
            state.first_pending_at = at
        state.last_activity_at = max(at, state.last_activity_at or at)

    def trigger_reason(self, thread_id: str, now: Optional[float] = None) -> Optional[str]:
        """Name of the threshold that fired, or None"""
        state = self._threads.get(thread_id)
        if state is None or (state.messages_since == 0 and state.tokens_since == 0):
            return None

        now = now if now is not None else self._clock()
        if state.last_run_at is not None and now - state.last_run_at < self.config.debounce_s:
            return None

        if state.messages_since >= self.config.message_threshold:
            return "messages"
        if state.tokens_since >= self.config.token_threshold:
            return "tokens"
        since = state.last_run_at if state.last_run_at is not None else state.first_pending_at
        if since is not None and now - since >= self.config.time_threshold_s:
            return "time"
        return None

    def should_trigger(self, thread_id: str, now: Optional[float] = None) -> bool:
        return self.trigger_reason(thread_id, now) is not None

    def mark_complete(self, thread_id: str, now: Optional[float] = None) -> None:
        state = self._state(thread_id)
        state.messages_since = 0
        state.tokens_since = 0
        state.first_pending_at = None
        state.last_run_at = now if now is not None else self._clock()

    def get_state(self, thread_id: str) -> Optional[ThreadCadence]:
        state = self._threads.get(thread_id)
        return replace(state) if state else None

    def clear_thread(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)

    def cleanup(self, now: Optional[float] = None) -> int:
        """Forget threads idle longer than thread_max_age_s"""
        now = now if now is not None else self._clock()
        cutoff = now - self.config.thread_max_age_s
        stale = [
            tid for tid, s in self._threads.items()
            if (s.last_activity_at or s.last_run_at or now) < cutoff
        ]
        for tid in stale:
            del self._threads[tid]
        if stale:
            logger.debug("Dropped %d idle threads from cadence tracking", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._threads)
