"""
Process-wide source registry built once at startup.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.config.state import ConfigState
from quote_pipeline.ingestion.adapters.base import SourceAdapter
from quote_pipeline.ingestion.adapters.sources import create_adapter
from quote_pipeline.ingestion.ports.http import IHttpClient
from quote_pipeline.shared.errors import ConfigurationError
from quote_pipeline.shared.models.market import Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceHealth:
    source_id: str
    healthy: bool
    checked_at: str
    response_time_ms: float | None = None
    error: str | None = None


class SourceRegistry:
    """
    Immutable mapping of source id to (Source, adapter, requested codes).
    """

    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        sources: Mapping[str, Source] | None = None,
        requested_codes: Mapping[str, list[str]] | None = None,
    ):
        if sources is None:
            sources = {
                source_id: Source(
                    source_id=source_id,
                    display_name=source_id,
                    rate_limit_per_second=adapter.rate_limit_hint,
                )
                for source_id, adapter in adapters.items()
            }
        missing = set(sources) ^ set(adapters)
        if missing:
            raise ConfigurationError(f"Sources without adapters: {sorted(missing)}")

        self._adapters = MappingProxyType(dict(adapters))
        self._sources = MappingProxyType(dict(sources))
        self._codes = MappingProxyType(
            {sid: list((requested_codes or {}).get(sid, [])) for sid in sources}
        )

    @classmethod
    def from_config(cls, config: ConfigState, http_client: IHttpClient) -> "SourceRegistry":
        """Build adapters for every enabled source in the configuration."""
        adapters: dict[str, SourceAdapter] = {}
        sources: dict[str, Source] = {}
        codes: dict[str, list[str]] = {}

        for source_config in config.enabled_sources:
            adapters[source_config.source_id] = create_adapter(source_config, http_client)
            sources[source_config.source_id] = Source(
                source_id=source_config.source_id,
                display_name=source_config.name,
                rate_limit_per_second=source_config.rate_limit_per_second,
            )
            codes[source_config.source_id] = source_config.requested_codes

        logger.info(f"Source registry built: {sorted(sources)}")
        return cls(adapters, sources, codes)

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._sources

    def sources(self) -> list[Source]:
        return list(self._sources.values())

    def adapter(self, source_id: str) -> SourceAdapter:
        try:
            return self._adapters[source_id]
        except KeyError:
            raise KeyError(f"Unknown source: {source_id}") from None

    def requested_codes(self, source_id: str) -> list[str]:
        return list(self._codes.get(source_id, []))

    async def health_check(self, timeout_seconds: float = 10.0) -> dict[str, SourceHealth]:
        """
        Probe every source with a single-code request.

        Never raises: failures are reported as unhealthy entries.
        """

        async def probe(source_id: str) -> SourceHealth:
            codes = self.requested_codes(source_id)[:1]
            started = time.perf_counter()
            try:
                await run_with_timeout(
                    self._adapters[source_id].fetch_quotes(codes), timeout_seconds
                )
            except Exception as e:
                logger.warning(f"Health check failed for {source_id}: {e}")
                return SourceHealth(
                    source_id=source_id,
                    healthy=False,
                    checked_at=utc_now().isoformat(),
                    error=str(e) or type(e).__name__,
                )
            return SourceHealth(
                source_id=source_id,
                healthy=True,
                checked_at=utc_now().isoformat(),
                response_time_ms=round((time.perf_counter() - started) * 1000, 1),
            )

        results = await asyncio.gather(*(probe(sid) for sid in self._sources))
        return {health.source_id: health for health in results}
