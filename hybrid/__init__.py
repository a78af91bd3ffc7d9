"""
Hybrid Context

Assembles a bounded, relevance-ranked context window for a conversational
model from three retrieval sources: persisted memory, a vector index and
live web search.

Philosophy:
- Retrieval degrades, it never fails: a broken source contributes nothing
- The token budget is a hard wall
- User corrections always reach the model

Usage:
    from hybrid.common import load_config
    from hybrid.service import HybridContextService

    service = HybridContextService.from_config(load_config())
    context = await service.retrieve_context(query, thread_id, user_id)
"""

__version__ = "0.1.0"
