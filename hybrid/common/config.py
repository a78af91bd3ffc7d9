"""
Configuration Management for Hybrid Context

Loads configuration from ~/.hybrid/config.json and environment variables.
The result is an immutable tree built once at startup and injected into
every component.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields, asdict, replace
from typing import Any, Dict, FrozenSet, List

from .errors import ConfigError

logger = logging.getLogger("hybrid.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".hybrid"
CONFIG_PATH = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "hybrid.db"

FRESHNESS_WINDOWS = ("pd", "pw", "pm", "py")


@dataclass(frozen=True)
class RetrievalConfig:
    """Deadlines, limits and source toggles for the retrieval fan-out"""
    per_source_deadline_ms: int = 250
    overall_deadline_ms: int = 800
    max_candidates: int = 12
    memory_limit: int = 10
    memory_min_relevance: float = 0.25
    vector_topk: int = 10
    vector_min_similarity: float = 0.6
    enable_memory: bool = True
    enable_vector: bool = True
    enable_web: bool = True


@dataclass(frozen=True)
class ScoringConfig:
    """Multiplicative boosts used by the relevance scorer"""
    phrase_exact: float = 2.0
    phrase_strong: float = 1.5
    phrase_partial: float = 1.2
    position_early: float = 1.5
    position_mid: float = 1.2
    tier1: float = 1.2
    tier2: float = 1.1
    priority_high: float = 1.2
    priority_mid: float = 1.1
    priority_low: float = 1.05
    recency_day: float = 1.1
    recency_week: float = 1.05


@dataclass(frozen=True)
class AssemblyConfig:
    """Token budget and allocation limits for the context assembler"""
    token_budget: int = 4000
    min_recent_turns: int = 4
    max_recent_turns: int = 12
    max_summaries: int = 4
    chars_per_token: int = 4
    fallback_summary_chars: int = 500
    fallback_summary_ttl_s: int = 1800


@dataclass(frozen=True)
class CacheConfig:
    """Per-source TTLs for the read-through cache"""
    enabled: bool = True
    memory_ttl_s: int = 60
    vector_ttl_s: int = 3600
    web_ttl_s: int = 1800
    negative_ttl_s: int = 300


@dataclass(frozen=True)
class WebSearchConfig:
    """Brave web search configuration"""
    api_key: str = ""
    endpoint: str = "https://api.search.brave.com/res/v1/web/search"
    result_count: int = 10
    default_freshness: str = "pw"
    min_results: int = 3
    request_timeout_s: float = 5.0


@dataclass(frozen=True)
class VectorConfig:
    """Vector index configuration"""
    mode: str = "memory"  # "memory" (numpy) or "qdrant" (HTTP)
    endpoint: str = "http://localhost:6333"
    collection: str = "knowledge"
    api_key: str = ""
    corpus_path: str = ""  # JSON or JSONL documents loaded into the in-process index at startup


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding model configuration"""
    mode: str = "openai"  # "openai" or "none"
    model: str = "text-embedding-3-small"
    api_key: str = ""
    cache_size: int = 1000
    cache_ttl_s: int = 604800


@dataclass(frozen=True)
class StorageConfig:
    """Persistence configuration"""
    db_path: str = str(DEFAULT_DB_PATH)


@dataclass(frozen=True)
class AuditConfig:
    """Cadence and importance thresholds for the summary audit job"""
    message_threshold: int = 6
    token_threshold: int = 1500
    time_threshold_s: int = 180
    debounce_s: int = 30
    poll_interval_s: int = 15
    thread_max_age_s: int = 86400
    high_importance: float = 0.7
    medium_importance: float = 0.4
    high_refresh_s: int = 900
    medium_refresh_s: int = 1800
    low_refresh_s: int = 3600
    high_summary_chars: int = 800
    default_summary_chars: int = 500
    summary_message_window: int = 20


@dataclass(frozen=True)
class LLMConfig:
    """LLM provider configuration used for summary generation"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"


@dataclass(frozen=True)
class HybridConfig:
    """Main Hybrid Context configuration"""
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    web: WebSearchConfig = field(default_factory=WebSearchConfig)
    vector: VectorConfig = field(default_factory=VectorConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    _env_sourced_keys: FrozenSet[str] = field(default_factory=frozenset, repr=False, compare=False)


_SECTIONS = {
    "retrieval": RetrievalConfig,
    "scoring": ScoringConfig,
    "assembly": AssemblyConfig,
    "cache": CacheConfig,
    "web": WebSearchConfig,
    "vector": VectorConfig,
    "embedding": EmbeddingConfig,
    "storage": StorageConfig,
    "audit": AuditConfig,
    "llm": LLMConfig,
}

# env var -> (section, attribute)
_ENV_OVERRIDES = {
    "HYBRID_PER_SOURCE_DEADLINE_MS": ("retrieval", "per_source_deadline_ms"),
    "HYBRID_OVERALL_DEADLINE_MS": ("retrieval", "overall_deadline_ms"),
    "HYBRID_MAX_CANDIDATES": ("retrieval", "max_candidates"),
    "HYBRID_ENABLE_MEMORY": ("retrieval", "enable_memory"),
    "HYBRID_ENABLE_VECTOR": ("retrieval", "enable_vector"),
    "HYBRID_ENABLE_WEB": ("retrieval", "enable_web"),
    "HYBRID_TOKEN_BUDGET": ("assembly", "token_budget"),
    "HYBRID_MIN_RECENT_TURNS": ("assembly", "min_recent_turns"),
    "HYBRID_CACHE_ENABLED": ("cache", "enabled"),
    "HYBRID_WEB_FRESHNESS": ("web", "default_freshness"),
    "BRAVE_API_KEY": ("web", "api_key"),
    "HYBRID_VECTOR_MODE": ("vector", "mode"),
    "HYBRID_VECTOR_ENDPOINT": ("vector", "endpoint"),
    "HYBRID_VECTOR_COLLECTION": ("vector", "collection"),
    "HYBRID_VECTOR_CORPUS": ("vector", "corpus_path"),
    "QDRANT_API_KEY": ("vector", "api_key"),
    "EMBEDDING_MODE": ("embedding", "mode"),
    "EMBEDDING_MODEL": ("embedding", "model"),
    "HYBRID_DB_PATH": ("storage", "db_path"),
    "HYBRID_AUDIT_MESSAGE_THRESHOLD": ("audit", "message_threshold"),
    "HYBRID_AUDIT_TOKEN_THRESHOLD": ("audit", "token_threshold"),
    "HYBRID_AUDIT_TIME_THRESHOLD_S": ("audit", "time_threshold_s"),
    "HYBRID_LLM_PROVIDER": ("llm", "provider"),
    "ANTHROPIC_API_KEY": ("llm", "anthropic_api_key"),
    "ANTHROPIC_MODEL": ("llm", "anthropic_model"),
    "OPENAI_API_KEY": ("llm", "openai_api_key"),
    "OPENAI_MODEL": ("llm", "openai_model"),
    "GOOGLE_API_KEY": ("llm", "google_api_key"),
    "GEMINI_API_KEY": ("llm", "google_api_key"),
    "GOOGLE_MODEL": ("llm", "google_model"),
}

_API_KEY_FIELDS = {
    ("web", "api_key"),
    ("vector", "api_key"),
    ("embedding", "api_key"),
    ("llm", "anthropic_api_key"),
    ("llm", "openai_api_key"),
    ("llm", "google_api_key"),
}


def _coerce(value: Any, default: Any) -> Any:
    """Coerce a raw JSON or env value to the type of the field default"""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _parse_section(cls, section_data: Dict[str, Any]):
    """Build one frozen section from its dict, ignoring unknown keys"""
    kwargs = {}
    for f in fields(cls):
        if f.name in section_data:
            default = getattr(cls(), f.name)
            try:
                kwargs[f.name] = _coerce(section_data[f.name], default)
            except (TypeError, ValueError):
                raise ConfigError([f"{cls.__name__}.{f.name}: cannot parse {section_data[f.name]!r}"])
    return cls(**kwargs)


def _parse_embedding_config(data: dict, llm: LLMConfig) -> EmbeddingConfig:
    """Parse embedding section; the OpenAI LLM key doubles as embedding key"""
    embedding = _parse_section(EmbeddingConfig, data.get("embedding", {}))
    if not embedding.api_key and llm.openai_api_key:
        return replace(embedding, api_key=llm.openai_api_key)
    return embedding


def _apply_env_overrides(data: dict) -> FrozenSet[str]:
    """Merge environment overrides into the raw config dict in place"""
    env_sourced = set()
    for env_var, (section, attr) in _ENV_OVERRIDES.items():
        val = os.getenv(env_var)
        if val:
            data.setdefault(section, {})[attr] = val
            if (section, attr) in _API_KEY_FIELDS:
                env_sourced.add(f"{section}.{attr}")
    return frozenset(env_sourced)


def load_config(path: Path = None) -> HybridConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.hybrid/config.json)
    3. Default values

    Raises:
        ConfigError: If the merged configuration fails validation
    """
    config_path = Path(path) if path else CONFIG_PATH
    data: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", config_path, e)
            data = {}

    env_sourced = _apply_env_overrides(data)

    llm = _parse_section(LLMConfig, data.get("llm", {}))
    config = HybridConfig(
        retrieval=_parse_section(RetrievalConfig, data.get("retrieval", {})),
        scoring=_parse_section(ScoringConfig, data.get("scoring", {})),
        assembly=_parse_section(AssemblyConfig, data.get("assembly", {})),
        cache=_parse_section(CacheConfig, data.get("cache", {})),
        web=_parse_section(WebSearchConfig, data.get("web", {})),
        vector=_parse_section(VectorConfig, data.get("vector", {})),
        embedding=_parse_embedding_config(data, llm),
        storage=_parse_section(StorageConfig, data.get("storage", {})),
        audit=_parse_section(AuditConfig, data.get("audit", {})),
        llm=llm,
        _env_sourced_keys=env_sourced,
    )

    validate_config(config)
    return config


def validate_config(config: HybridConfig) -> None:
    """
    Check ranges and relative orderings across the whole tree.

    Raises:
        ConfigError: Listing every problem found
    """
    problems: List[str] = []
    r, s, a, c, w, au = (
        config.retrieval, config.scoring, config.assembly,
        config.cache, config.web, config.audit,
    )

    if r.per_source_deadline_ms <= 0 or r.overall_deadline_ms <= 0:
        problems.append("retrieval deadlines must be positive")
    if r.per_source_deadline_ms > r.overall_deadline_ms:
        problems.append("retrieval.per_source_deadline_ms must not exceed overall_deadline_ms")
    if r.max_candidates < 1 or r.memory_limit < 1 or r.vector_topk < 1:
        problems.append("retrieval limits must be at least 1")
    for name in ("memory_min_relevance", "vector_min_similarity"):
        if not 0.0 <= getattr(r, name) <= 1.0:
            problems.append(f"retrieval.{name} must be within [0, 1]")

    boosts = asdict(s)
    for name, value in boosts.items():
        if value < 1.0:
            problems.append(f"scoring.{name} must be >= 1.0")
    if not s.phrase_exact >= s.phrase_strong >= s.phrase_partial:
        problems.append("scoring phrase boosts must be ordered exact >= strong >= partial")
    if s.position_early < s.position_mid:
        problems.append("scoring.position_early must be >= position_mid")
    if s.tier1 < s.tier2:
        problems.append("scoring.tier1 must be >= tier2")
    if not s.priority_high >= s.priority_mid >= s.priority_low:
        problems.append("scoring priority boosts must be ordered high >= mid >= low")
    if s.recency_day < s.recency_week:
        problems.append("scoring.recency_day must be >= recency_week")
    top_boosts = (s.position_early, s.tier1, s.priority_high, s.recency_day)
    if s.phrase_exact < max(top_boosts):
        problems.append("scoring.phrase_exact must be the largest boost")
    if s.recency_day > min(s.phrase_exact, s.position_early, s.tier1, s.priority_high):
        problems.append("scoring.recency_day must be the smallest boost")

    if a.token_budget <= 0:
        problems.append("assembly.token_budget must be positive")
    if a.min_recent_turns < 0 or a.min_recent_turns > a.max_recent_turns:
        problems.append("assembly.min_recent_turns must be within [0, max_recent_turns]")
    if a.chars_per_token < 1 or a.max_summaries < 0 or a.fallback_summary_chars < 1:
        problems.append("assembly sizes must be positive")
    if a.fallback_summary_ttl_s < 0:
        problems.append("assembly.fallback_summary_ttl_s must not be negative")

    for name in ("memory_ttl_s", "vector_ttl_s", "web_ttl_s", "negative_ttl_s"):
        if getattr(c, name) < 0:
            problems.append(f"cache.{name} must not be negative")

    if w.default_freshness not in FRESHNESS_WINDOWS:
        problems.append(f"web.default_freshness must be one of {', '.join(FRESHNESS_WINDOWS)}")
    if w.result_count < 1 or w.min_results < 0:
        problems.append("web result counts out of range")

    if config.vector.mode not in ("memory", "qdrant"):
        problems.append("vector.mode must be 'memory' or 'qdrant'")
    if config.embedding.mode not in ("openai", "none"):
        problems.append("embedding.mode must be 'openai' or 'none'")
    if config.embedding.cache_size < 0 or config.embedding.cache_ttl_s < 0:
        problems.append("embedding cache size and TTL must not be negative")
    if config.llm.provider not in ("anthropic", "openai", "google"):
        problems.append("llm.provider must be anthropic, openai or google")

    if au.message_threshold < 1 or au.token_threshold < 1 or au.time_threshold_s < 1:
        problems.append("audit thresholds must be positive")
    if not 0.0 < au.medium_importance < au.high_importance < 1.0:
        problems.append("audit importance cut-offs must satisfy 0 < medium < high < 1")
    if not 0 < au.high_refresh_s <= au.medium_refresh_s <= au.low_refresh_s:
        problems.append("audit refresh intervals must satisfy high <= medium <= low")

    if problems:
        raise ConfigError(problems)


def save_config(config: HybridConfig, path: Path = None) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    config_path = Path(path) if path else CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {name: asdict(getattr(config, name)) for name in _SECTIONS}
    for key in config._env_sourced_keys:
        section, attr = key.split(".", 1)
        data[section][attr] = ""
    if "llm.openai_api_key" in config._env_sourced_keys \
            and config.embedding.api_key == config.llm.openai_api_key:
        data["embedding"]["api_key"] = ""

    with open(config_path, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    config_path.chmod(0o600)
