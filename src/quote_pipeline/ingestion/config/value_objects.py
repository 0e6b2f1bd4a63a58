"""Transport settings handed to the HTTP connector instead of the whole ConfigState."""

from collections.abc import Iterable
from dataclasses import dataclass

from quote_pipeline.config.state import SourceConfig


@dataclass(frozen=True)
class HttpClientConfig:
    timeout: float = 10.0
    connect_timeout: float = 5.0
    max_connections: int = 100
    max_connections_per_host: int = 10
    user_agent: str = "quote-pipeline/0.1"

    @classmethod
    def for_sources(cls, sources: Iterable[SourceConfig]) -> "HttpClientConfig":
        """Session-wide timeout wide enough for the slowest configured source."""
        timeouts = [s.request_timeout_seconds for s in sources]
        if not timeouts:
            return cls()
        timeout = max(timeouts)
        return cls(timeout=timeout, connect_timeout=min(cls.connect_timeout, timeout))
