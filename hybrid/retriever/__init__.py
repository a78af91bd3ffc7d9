"""
Retriever - Hybrid Context Retrieval

Classifies a query, plans which sources to hit, fetches them concurrently
under deadlines and folds the ranked result into a bounded context.

Key Components:
- QueryAnalyzer: Intent, complexity and keyword extraction
- StrategyPlanner: Intent to sources and merge strategy
- HybridOrchestrator: Deadline-bounded fan-out, scoring and ranking
- ContextAssembler: Token-budgeted, provenance-tagged context blocks

Pipeline:
1. Analyze the query (intent, keywords, shape)
2. Plan sources and strategy
3. Retrieve from memory, vector index and web in parallel
4. Score, merge and rank candidates
5. Assemble the context window under the token budget
"""

from .assembler import AssembledContext, ContextAssembler, ContextBlock
from .orchestrator import HybridOrchestrator
from .query_analyzer import QueryAnalyzer, QueryClassification, QueryIntent
from .scorer import RelevanceScorer
from .strategy_planner import MergeStrategy, RetrievalPlan, StrategyPlanner

__all__ = [
    "AssembledContext",
    "ContextAssembler",
    "ContextBlock",
    "HybridOrchestrator",
    "QueryAnalyzer",
    "QueryClassification",
    "QueryIntent",
    "RelevanceScorer",
    "MergeStrategy",
    "RetrievalPlan",
    "StrategyPlanner",
]
