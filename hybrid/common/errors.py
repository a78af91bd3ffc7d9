"""
Error Taxonomy

Exceptions raised at the seams of the retrieval core. Only ConfigError is
ever allowed to reach a caller; the rest are recovered inside the source
executors and the cache layer.
"""

from typing import Optional


class HybridError(Exception):
    """Base class for all hybrid context errors."""
    pass


class ConfigError(HybridError):
    """Configuration failed validation at startup."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class SourceTimeout(HybridError):
    """A source executor exceeded its deadline."""

    def __init__(self, source: str, deadline_ms: int):
        self.source = source
        self.deadline_ms = deadline_ms
        super().__init__(f"{source} source exceeded {deadline_ms}ms deadline")


class SourceUpstreamFailure(HybridError):
    """An upstream service returned an error or a malformed payload."""

    def __init__(self, source: str, detail: str, status_code: Optional[int] = None):
        self.source = source
        self.detail = detail
        self.status_code = status_code
        message = f"{source} upstream failure: {detail}"
        if status_code is not None:
            message += f" (status {status_code})"
        super().__init__(message)


class CacheUnavailable(HybridError):
    """The cache service could not be reached; callers bypass it."""
    pass
