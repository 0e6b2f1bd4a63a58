"""
Periodic health check of the symbol mapping table.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.infrastructure.observability import get_ingestion_logger
from quote_pipeline.ingestion.symbol_resolution.unmapped import UNMAPPED_KEY_PREFIX
from quote_pipeline.storage.ports import ICacheStore, IMetadataStore


@dataclass
class MappingQualityReport:
    checked_at: datetime
    unmapped_symbols: int = 0
    low_confidence_mappings: int = 0
    stale_mappings: int = 0
    alerts: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.alerts)


class MappingQualityMonitor:
    """
    Counts unmapped codes (cache), low-confidence and stale mappings (metadata
    store) and raises alerts when thresholds are exceeded.
    """

    def __init__(
        self,
        cache: ICacheStore,
        metadata_store: IMetadataStore,
        low_confidence_threshold: float = 0.8,
        stale_after: timedelta = timedelta(days=7),
        unmapped_alert_threshold: int = 50,
        low_confidence_alert_threshold: int = 10,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.metadata_store = metadata_store
        self.low_confidence_threshold = low_confidence_threshold
        self.stale_after = stale_after
        self.unmapped_alert_threshold = unmapped_alert_threshold
        self.low_confidence_alert_threshold = low_confidence_alert_threshold
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.logger = get_ingestion_logger("mapping-quality")

    async def _bounded(self, query: Awaitable[int]) -> int:
        return await run_with_timeout(query, self.timeout_seconds)

    async def check(self) -> MappingQualityReport:
        now = self._clock()
        report = MappingQualityReport(checked_at=now)

        report.unmapped_symbols = await self._bounded(
            self.cache.count_keys(f"{UNMAPPED_KEY_PREFIX}:*")
        )
        report.low_confidence_mappings = await self._bounded(
            self.metadata_store.count_low_confidence_mappings(self.low_confidence_threshold)
        )
        report.stale_mappings = await self._bounded(
            self.metadata_store.count_stale_mappings(now - self.stale_after)
        )

        if report.unmapped_symbols > self.unmapped_alert_threshold:
            report.alerts.append(
                f"{report.unmapped_symbols} unmapped symbols in the last window"
            )
        if report.low_confidence_mappings > self.low_confidence_alert_threshold:
            report.alerts.append(
                f"{report.low_confidence_mappings} mappings below "
                f"{self.low_confidence_threshold} confidence"
            )

        if report.degraded:
            self.logger.warning(
                "mapping_quality_degraded",
                unmapped=report.unmapped_symbols,
                low_confidence=report.low_confidence_mappings,
                stale=report.stale_mappings,
                alerts=report.alerts,
            )
        else:
            self.logger.info(
                "mapping_quality_ok",
                unmapped=report.unmapped_symbols,
                low_confidence=report.low_confidence_mappings,
                stale=report.stale_mappings,
            )
        return report
