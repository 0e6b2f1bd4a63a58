"""
Composition root for the quote pipeline.

Wires together:
- HTTP client (aiohttp wrapper) and source registry
- Extractor, IdentityResolver, unmapped tracker, Transformer
- Loader over the three stores
- VWAP aggregator and candle generator
- Mapping quality monitor
- PipelineCoordinator and its periodic triggers
"""

import logging
from datetime import timedelta

from quote_pipeline.aggregation.candles import CandleGenerator
from quote_pipeline.aggregation.vwap import VWAPAggregator
from quote_pipeline.common.utils import interval_to_seconds
from quote_pipeline.config.state import ConfigState
from quote_pipeline.infrastructure.observability import setup_logging
from quote_pipeline.ingestion.config.value_objects import HttpClientConfig
from quote_pipeline.ingestion.connectors.aiohttp_client import AiohttpClient
from quote_pipeline.ingestion.extractor import Extractor
from quote_pipeline.ingestion.ports.http import IHttpClient
from quote_pipeline.ingestion.registry import SourceRegistry
from quote_pipeline.ingestion.symbol_resolution.quality import MappingQualityMonitor
from quote_pipeline.ingestion.symbol_resolution.resolver import IdentityResolver
from quote_pipeline.ingestion.symbol_resolution.unmapped import UnmappedSymbolTracker
from quote_pipeline.orchestration.coordinator import PipelineCoordinator
from quote_pipeline.orchestration.scheduling import PeriodicTrigger
from quote_pipeline.storage.adapters.postgres import (
    PostgresDatabase,
    PostgresMetadataStore,
    TimescaleTimeSeriesStore,
)
from quote_pipeline.storage.adapters.redis_cache import RedisCacheStore
from quote_pipeline.storage.loader import Loader
from quote_pipeline.storage.ports import ICacheStore, IMetadataStore, ITimeSeriesStore
from quote_pipeline.transformation.transformer import Transformer

logger = logging.getLogger(__name__)


class PipelineContainer:
    """
    Single place where all concrete implementations are chosen.

    Usage:
        container = PipelineContainer.build(config, time_series, cache, metadata)
        container.start()
        ...
        await container.stop()
    """

    def __init__(self, config: ConfigState):
        self.config = config
        self.http_client: IHttpClient | None = None
        self.registry: SourceRegistry | None = None
        self.coordinator: PipelineCoordinator | None = None
        self.triggers: list[PeriodicTrigger] = []
        self._owned_resources: list = []
        self._database: PostgresDatabase | None = None

    @classmethod
    def build(
        cls,
        config: ConfigState,
        time_series_store: ITimeSeriesStore,
        cache: ICacheStore,
        metadata_store: IMetadataStore,
        http_client: IHttpClient | None = None,
        registry: SourceRegistry | None = None,
    ) -> "PipelineContainer":
        container = cls(config)

        if http_client is None:
            http_client = AiohttpClient(HttpClientConfig.for_sources(config.enabled_sources))
            container._owned_resources.append(http_client)
        container.http_client = http_client
        container.registry = registry or SourceRegistry.from_config(config, http_client)

        stale_after = timedelta(days=config.mapping_quality.stale_after_days)
        store_timeout = config.loading.sink_timeout_seconds

        extractor = Extractor(
            container.registry,
            timeout_seconds=config.extraction.timeout_seconds,
            majority_failure_ratio=config.extraction.majority_failure_ratio,
        )
        resolver = IdentityResolver(
            metadata_store,
            low_confidence_threshold=config.mapping_quality.low_confidence_threshold,
            stale_after=stale_after,
            timeout_seconds=config.transformation.resolver_timeout_seconds,
        )
        tracker = UnmappedSymbolTracker(
            cache,
            metadata_store,
            ttl_seconds=config.unmapped.ttl_seconds,
            audit_every=config.unmapped.audit_every,
            timeout_seconds=store_timeout,
        )
        transformer = Transformer(
            resolver,
            tracker,
            batch_size=config.transformation.batch_size,
            resolution_warning_threshold=config.transformation.resolution_warning_threshold,
        )
        loader = Loader(
            time_series_store,
            cache,
            metadata_store,
            timeout_seconds=store_timeout,
            snapshot_ttl_seconds=config.loading.snapshot_ttl_seconds,
            market_ttl_seconds=config.loading.market_ttl_seconds,
        )
        vwap = VWAPAggregator(
            time_series_store,
            window=config.aggregation.vwap_window,
            windowed=config.aggregation.windowed_vwap,
            timeout_seconds=store_timeout,
        )
        candles = CandleGenerator(
            time_series_store, config.aggregation, timeout_seconds=store_timeout
        )
        quality = MappingQualityMonitor(
            cache,
            metadata_store,
            low_confidence_threshold=config.mapping_quality.low_confidence_threshold,
            stale_after=stale_after,
            unmapped_alert_threshold=config.mapping_quality.unmapped_alert_threshold,
            low_confidence_alert_threshold=config.mapping_quality.low_confidence_alert_threshold,
            timeout_seconds=store_timeout,
        )

        container.coordinator = PipelineCoordinator(
            container.registry,
            extractor,
            transformer,
            loader,
            vwap,
            candle_generator=candles,
            quality_monitor=quality,
            metadata_store=metadata_store,
            store_timeout_seconds=store_timeout,
        )
        container.triggers = container._build_triggers()

        logger.info(
            f"Pipeline built: {len(container.registry)} sources, "
            f"triggers={[t.name for t in container.triggers]}"
        )
        return container

    @classmethod
    async def create(cls, config: ConfigState) -> "PipelineContainer":
        """Connect the PostgreSQL and Redis stores from config, then build."""
        setup_logging(level=config.logging.level, json_logs=config.logging.json_logs)

        database = PostgresDatabase(config.database)
        await database.connect()
        cache = RedisCacheStore.from_config(config.redis)

        container = cls.build(
            config,
            TimescaleTimeSeriesStore(database),
            cache,
            PostgresMetadataStore(database),
        )
        container._owned_resources.append(cache)
        container._database = database
        return container

    def _build_triggers(self) -> list[PeriodicTrigger]:
        schedule = self.config.schedule
        coordinator = self.coordinator
        triggers = [
            PeriodicTrigger(
                "ingestion",
                schedule.ingestion_interval_seconds,
                coordinator.run_cycle,
                jitter_seconds=schedule.jitter_seconds,
            ),
            PeriodicTrigger(
                "windowed-vwap",
                schedule.windowed_vwap_interval_seconds,
                coordinator.run_windowed_vwap,
                jitter_seconds=schedule.jitter_seconds,
            ),
            PeriodicTrigger(
                "raw-candles",
                schedule.raw_candle_interval_seconds,
                coordinator.run_raw_candles,
                jitter_seconds=schedule.jitter_seconds,
            ),
        ]
        for interval in self.config.aggregation.candle_intervals:
            triggers.append(
                PeriodicTrigger(
                    f"candles-{interval}",
                    interval_to_seconds(interval),
                    self._candle_action(interval),
                    jitter_seconds=schedule.jitter_seconds,
                )
            )
        triggers.append(
            PeriodicTrigger(
                "mapping-quality",
                schedule.mapping_quality_interval_seconds,
                coordinator.run_mapping_quality_check,
                jitter_seconds=schedule.jitter_seconds,
            )
        )
        return triggers

    def _candle_action(self, interval: str):
        async def action():
            return await self.coordinator.run_candles(intervals=[interval])

        return action

    def trigger(self, name: str) -> PeriodicTrigger:
        for t in self.triggers:
            if t.name == name:
                return t
        raise KeyError(f"Unknown trigger: {name}")

    def start(self) -> None:
        for t in self.triggers:
            t.start()

    async def stop(self) -> None:
        for t in self.triggers:
            await t.stop()
        for resource in self._owned_resources:
            await resource.close()
        self._owned_resources.clear()
        if self._database is not None:
            await self._database.disconnect()
            self._database = None
        logger.info("Pipeline stopped")
