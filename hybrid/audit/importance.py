"""
Thread Importance

importance = 0.3 x memory density + 0.3 x tier signal
           + 0.2 x conversation length + 0.2 x recency

Drives how often a thread's summary is refreshed and how long it may be.
"""

from datetime import datetime
from typing import Optional

from ..common.config import AuditConfig
from ..common.schemas import utcnow


def compute_importance(
    memory_count: int,
    has_tier1: bool,
    has_tier2: bool,
    message_count: int,
    hours_since_last: float,
) -> float:
    density = min(1.0, memory_count / 10)
    tier = (0.4 if has_tier1 else 0.0) + (0.2 if has_tier2 else 0.0)
    length = min(1.0, message_count / 50)
    recency = max(0.0, 1.0 - hours_since_last / 24)
    score = 0.3 * density + 0.3 * tier + 0.2 * length + 0.2 * recency
    return round(max(0.0, min(1.0, score)), 4)


def hours_since(last: Optional[datetime], now: Optional[datetime] = None) -> float:
    if last is None:
        return float("inf")
    return max(0.0, ((now or utcnow()) - last).total_seconds() / 3600)


def refresh_interval_s(importance: float, config: Optional[AuditConfig] = None) -> int:
    """More important threads refresh more often"""
    config = config or AuditConfig()
    if importance > config.high_importance:
        return config.high_refresh_s
    if importance > config.medium_importance:
        return config.medium_refresh_s
    return config.low_refresh_s


def max_summary_chars(importance: float, config: Optional[AuditConfig] = None) -> int:
    """More important threads may carry longer summaries"""
    config = config or AuditConfig()
    if importance > config.high_importance:
        return config.high_summary_chars
    return config.default_summary_chars
