"""
Audit - Conversation Summary Maintenance

Runs independently of request handling and communicates with it only
through ConversationSummary rows in the store.

Key Components:
- CadenceTracker: Message / token / time triggers with a debounce floor
- compute_importance: Per-thread importance driving refresh interval and length
- ConversationSummarizer: LLM summary with a heuristic fallback
- AuditJob: Polling worker tying them together
"""

from .cadence import CadenceTracker, ThreadCadence
from .importance import compute_importance, max_summary_chars, refresh_interval_s
from .job import AuditJob
from .summarizer import ConversationSummarizer

__all__ = [
    "CadenceTracker",
    "ThreadCadence",
    "compute_importance",
    "max_summary_chars",
    "refresh_interval_s",
    "AuditJob",
    "ConversationSummarizer",
]
