"""
Transformer: resolve identities and normalize raw quotes into observations.

One pass per source runs in parallel. Within a source, records are split into
fixed-size batches that are also processed in parallel. A failing source is
isolated and contributes zero observations.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import ValidationError

from quote_pipeline.common.utils import ensure_utc, utc_now
from quote_pipeline.infrastructure.observability import get_processing_logger
from quote_pipeline.ingestion.extractor import ExtractionReport, SourceOutcome
from quote_pipeline.ingestion.symbol_resolution.resolver import (
    IdentityResolver,
    ResolutionResult,
)
from quote_pipeline.ingestion.symbol_resolution.unmapped import UnmappedSymbolTracker
from quote_pipeline.shared.errors import ResolutionError
from quote_pipeline.shared.models.market import PriceObservation, QuoteRecord
from quote_pipeline.transformation.quality import compute_quality_score, compute_spread


@dataclass
class SourceTransformStats:
    source_id: str
    processed: int = 0
    resolved: int = 0
    unmapped: int = 0
    failed: int = 0
    low_confidence: int = 0
    stale: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class TransformReport:
    observations: list[PriceObservation] = field(default_factory=list)
    per_source: dict[str, SourceTransformStats] = field(default_factory=dict)
    low_resolution_rate: bool = False

    @property
    def processed(self) -> int:
        return sum(s.processed for s in self.per_source.values())

    @property
    def resolved(self) -> int:
        return sum(s.resolved for s in self.per_source.values())

    @property
    def unmapped(self) -> int:
        return sum(s.unmapped for s in self.per_source.values())

    @property
    def resolution_rate(self) -> float:
        """Resolved / processed; 1.0 when nothing was processed."""
        if not self.processed:
            return 1.0
        return self.resolved / self.processed

    @property
    def failed_sources(self) -> list[str]:
        return [sid for sid, s in self.per_source.items() if not s.success]


class Transformer:
    def __init__(
        self,
        resolver: IdentityResolver,
        tracker: UnmappedSymbolTracker | None = None,
        batch_size: int = 100,
        resolution_warning_threshold: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.resolver = resolver
        self.tracker = tracker
        self.batch_size = batch_size
        self.resolution_warning_threshold = resolution_warning_threshold
        self._clock = clock
        self.logger = get_processing_logger("transformer")

    async def transform(self, extraction: ExtractionReport) -> TransformReport:
        received_at = self._clock()
        results = await asyncio.gather(
            *(self._transform_source(o, received_at) for o in extraction.successes)
        )

        report = TransformReport()
        for stats, observations in results:
            report.per_source[stats.source_id] = stats
            report.observations.extend(observations)

        if report.processed and report.resolution_rate < self.resolution_warning_threshold:
            report.low_resolution_rate = True
            self.logger.warning(
                "low_resolution_rate",
                resolution_rate=round(report.resolution_rate, 4),
                threshold=self.resolution_warning_threshold,
                unmapped=report.unmapped,
            )

        self.logger.info(
            "transform_completed",
            processed=report.processed,
            resolved=report.resolved,
            observations=len(report.observations),
            resolution_rate=round(report.resolution_rate, 4),
            failed_sources=report.failed_sources,
        )
        return report

    async def _transform_source(
        self, outcome: SourceOutcome, received_at: datetime
    ) -> tuple[SourceTransformStats, list[PriceObservation]]:
        stats = SourceTransformStats(
            source_id=outcome.source_id, processed=outcome.record_count
        )
        if not outcome.records:
            return stats, []

        try:
            resolution = await self.resolver.resolve_batch(
                outcome.source_id, [r.code for r in outcome.records]
            )
        except ResolutionError as e:
            stats.failed = stats.processed
            stats.error = str(e)
            self.logger.error(
                "source_transform_failed", source_id=outcome.source_id, error=str(e)
            )
            return stats, []

        stats.low_confidence = len(resolution.low_confidence)
        stats.stale = len(resolution.stale)

        batches = [
            outcome.records[i : i + self.batch_size]
            for i in range(0, len(outcome.records), self.batch_size)
        ]
        batch_results = await asyncio.gather(
            *(self._process_batch(b, resolution, received_at) for b in batches)
        )

        observations: list[PriceObservation] = []
        for batch_observations, unmapped, failed in batch_results:
            observations.extend(batch_observations)
            stats.unmapped += unmapped
            stats.failed += failed
        stats.resolved = len(observations)
        return stats, observations

    async def _process_batch(
        self,
        records: list[QuoteRecord],
        resolution: ResolutionResult,
        received_at: datetime,
    ) -> tuple[list[PriceObservation], int, int]:
        observations: list[PriceObservation] = []
        unmapped = failed = 0

        for record in records:
            asset = resolution.get(record.code)
            if asset is None:
                unmapped += 1
                if self.tracker is not None:
                    await self.tracker.record(record.source_id, record.code)
                continue

            try:
                observations.append(self._to_observation(record, asset, received_at))
            except ValidationError as e:
                failed += 1
                self.logger.warning(
                    "record_rejected",
                    source_id=record.source_id,
                    raw_code=record.code,
                    error=str(e),
                )

        return observations, unmapped, failed

    @staticmethod
    def _to_observation(record: QuoteRecord, asset, received_at: datetime) -> PriceObservation:
        observed_at = ensure_utc(record.observed_at) if record.observed_at else received_at
        return PriceObservation(
            source_id=record.source_id,
            asset_id=asset.asset_id,
            symbol=asset.symbol,
            raw_code=record.code,
            observed_at=observed_at,
            price=record.price or 0.0,
            volume=record.volume or 0.0,
            bid=record.bid or 0.0,
            ask=record.ask or 0.0,
            spread=compute_spread(record.bid, record.ask),
            change=record.change or 0.0,
            change_percent=record.change_percent or 0.0,
            quality_score=compute_quality_score(record),
        )
