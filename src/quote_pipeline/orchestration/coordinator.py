"""
PipelineCoordinator: one ingestion cycle at a time.

Extract -> Transform -> Load -> VWAP. The run state moves Idle -> Running
only through `_try_begin`; it returns to Idle unconditionally when the cycle
ends, whatever the outcome.
"""

import asyncio
from collections import deque
from collections.abc import Callable
from datetime import datetime

from quote_pipeline.aggregation.candles import CandleGenerator, CandleRunReport
from quote_pipeline.aggregation.vwap import VWAPAggregator
from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.infrastructure.observability import cycle_context, get_pipeline_logger
from quote_pipeline.ingestion.extractor import Extractor
from quote_pipeline.ingestion.registry import SourceRegistry
from quote_pipeline.ingestion.symbol_resolution.quality import (
    MappingQualityMonitor,
    MappingQualityReport,
)
from quote_pipeline.orchestration.ports import CycleRun, CycleStatus, RunState
from quote_pipeline.shared.errors import AggregationError, CriticalSinkError
from quote_pipeline.shared.models.market import OHLCVCandle, VWAPRecord
from quote_pipeline.storage.loader import Loader
from quote_pipeline.storage.ports import IMetadataStore
from quote_pipeline.transformation.transformer import Transformer


class PipelineCoordinator:
    """
    Orchestrates ingestion cycles and exposes the trigger targets.

    `run_cycle()` and `get_last_cycle_status()` are the externally callable
    surface; `run_windowed_vwap`, `run_raw_candles`, `run_candles` and
    `run_mapping_quality_check` are invoked by their own triggers.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        extractor: Extractor,
        transformer: Transformer,
        loader: Loader,
        vwap_aggregator: VWAPAggregator,
        candle_generator: CandleGenerator | None = None,
        quality_monitor: MappingQualityMonitor | None = None,
        metadata_store: IMetadataStore | None = None,
        history_size: int = 100,
        store_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.registry = registry
        self.extractor = extractor
        self.transformer = transformer
        self.loader = loader
        self.vwap_aggregator = vwap_aggregator
        self.candle_generator = candle_generator
        self.quality_monitor = quality_monitor
        self.metadata_store = metadata_store
        self.store_timeout_seconds = store_timeout_seconds
        self._clock = clock

        self._state = RunState.IDLE
        self._state_lock = asyncio.Lock()
        self._cycle_counter = 0
        self._last_run: CycleRun | None = None
        self.history: deque[CycleRun] = deque(maxlen=history_size)
        self.logger = get_pipeline_logger()

    # ------------------------------------------------------------------
    # Run state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is RunState.RUNNING

    async def _try_begin(self) -> bool:
        async with self._state_lock:
            if self._state is RunState.RUNNING:
                return False
            self._state = RunState.RUNNING
            return True

    def _finish(self) -> None:
        self._state = RunState.IDLE

    def get_last_cycle_status(self) -> CycleRun | None:
        """Last completed CycleRun, or None before the first cycle ends."""
        return self._last_run

    # ------------------------------------------------------------------
    # Ingestion cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleRun:
        """
        Run one Extract -> Transform -> Load -> VWAP cycle.

        Returns a SKIPPED CycleRun, without recording it, when a cycle is
        already running.
        """
        if not await self._try_begin():
            self.logger.info("cycle_skipped_busy")
            return CycleRun(cycle_id=None, started_at=self._clock(), status=CycleStatus.SKIPPED)

        self._cycle_counter += 1
        run = CycleRun(cycle_id=self._cycle_counter, started_at=self._clock())

        with cycle_context(run.cycle_id):
            self.logger.info("cycle_started")
            try:
                await self._execute(run)
            except Exception as e:
                run.status = CycleStatus.FAILED
                run.errors.append(f"unexpected: {type(e).__name__}: {e}")
                self.logger.exception("cycle_unexpected_error")
            finally:
                run.finished_at = self._clock()
                self._last_run = run
                self.history.append(run)
                self._finish()

            self.logger.info(
                "cycle_completed",
                status=run.status.value,
                duration_seconds=run.duration_seconds,
                **run.stage_counts,
            )
            await self._persist_run(run)
        return run

    async def _execute(self, run: CycleRun) -> None:
        degraded = False

        extraction = await self.extractor.extract(self.registry.sources())
        run.stage_counts.update(
            sources_attempted=extraction.attempted,
            sources_succeeded=extraction.succeeded,
            sources_failed=extraction.failed,
            records_extracted=extraction.total_records,
        )
        if extraction.failed:
            degraded = True
            run.errors.extend(f"source {sid}: {reason}" for sid, reason in extraction.failures)

        transform = await self.transformer.transform(extraction)
        run.stage_counts.update(
            records_processed=transform.processed,
            observations=len(transform.observations),
            unmapped=transform.unmapped,
            resolution_rate=round(transform.resolution_rate, 4),
        )
        if transform.failed_sources:
            degraded = True
            run.errors.extend(
                f"transform {sid}: {transform.per_source[sid].error}"
                for sid in transform.failed_sources
            )

        try:
            load = await self.loader.load(transform.observations)
        except CriticalSinkError as e:
            run.status = CycleStatus.FAILED
            run.errors.append(f"sink {e.sink}: {e}")
            if e.report is not None:
                run.errors.extend(
                    f"sink {r.sink.value}: {r.error}" for r in e.report.non_critical_failures
                )
            return

        if load.degraded:
            degraded = True
            run.errors.extend(f"sink {r.sink.value}: {r.error}" for r in load.non_critical_failures)

        vwap_count = 0
        if load.observation_count and load.critical_ok:
            try:
                records = await self.vwap_aggregator.aggregate_cycle(transform.observations)
                vwap_count = len(records)
            except AggregationError as e:
                degraded = True
                run.errors.append(f"vwap: {e}")
                self.logger.error("cycle_vwap_failed", error=str(e))
        run.stage_counts["vwap_records"] = vwap_count

        run.status = CycleStatus.PARTIAL if degraded else CycleStatus.SUCCESS

    async def _persist_run(self, run: CycleRun) -> None:
        if self.metadata_store is None:
            return
        try:
            await run_with_timeout(
                self.metadata_store.record_cycle_run(run.to_dict()),
                self.store_timeout_seconds,
            )
        except Exception as e:
            self.logger.warning(
                "cycle_run_persist_failed", error=str(e) or type(e).__name__
            )

    # ------------------------------------------------------------------
    # Slower cadences
    # ------------------------------------------------------------------

    async def run_windowed_vwap(self, window_end: datetime | None = None) -> list[VWAPRecord]:
        try:
            return await self.vwap_aggregator.aggregate_window(window_end)
        except AggregationError as e:
            self.logger.error("windowed_vwap_failed", interval=e.interval, error=str(e))
            return []

    async def run_raw_candles(self, window_end: datetime | None = None) -> list[OHLCVCandle]:
        if self.candle_generator is None:
            return []
        try:
            return await self.candle_generator.generate_raw(window_end)
        except AggregationError as e:
            self.logger.error("raw_candles_failed", interval=e.interval, error=str(e))
            return []

    async def run_candles(
        self,
        window_end: datetime | None = None,
        intervals: list[str] | None = None,
    ) -> CandleRunReport | None:
        if self.candle_generator is None:
            return None
        report = await self.candle_generator.generate_all(window_end, intervals)
        self.logger.info(
            "candles_completed",
            intervals=sorted(report.candles),
            candles=report.total,
            failures=report.failures,
        )
        return report

    async def run_mapping_quality_check(self) -> MappingQualityReport | None:
        if self.quality_monitor is None:
            return None
        return await self.quality_monitor.check()
