"""
OHLCV candle generation.

Cross-source candles are built from the stored VWAP series; per-source raw
candles are built from stored price observations. Within an asset, successive
runs only ever move forward in bucket start time.
"""

import asyncio
import math
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from quote_pipeline.common.utils import (
    align_to_interval,
    closed_buckets,
    interval_to_timedelta,
    run_with_timeout,
    utc_now,
)
from quote_pipeline.config.state import AggregationConfig
from quote_pipeline.infrastructure.observability import get_aggregation_logger
from quote_pipeline.shared.errors import AggregationError
from quote_pipeline.shared.models.enums import CandleSource, TableName
from quote_pipeline.shared.models.market import OHLCVCandle, PriceObservation, VWAPRecord
from quote_pipeline.storage.ports import ITimeSeriesStore


def build_candle(
    asset_id: str,
    symbol: str,
    interval: str,
    bucket_start: datetime,
    points: list[VWAPRecord],
) -> OHLCVCandle | None:
    """
    Candle from the VWAP points of one bucket, or None if the bucket is empty.

    open/close are the earliest/latest points by time; volume is the sum of
    each point's total volume.
    """
    if not points:
        return None

    ordered = sorted(points, key=lambda p: p.window_start)
    prices = [p.vwap_price for p in ordered]
    return OHLCVCandle(
        asset_id=asset_id,
        symbol=symbol,
        interval=interval,
        bucket_start=bucket_start,
        open=prices[0],
        high=max(prices),
        low=min(prices),
        close=prices[-1],
        volume=math.fsum(p.total_volume for p in ordered),
        point_count=len(ordered),
        provenance=CandleSource.VWAP,
    )


def build_raw_candles(
    observations: list[PriceObservation],
    interval: str,
    bucket_start: datetime,
) -> list[OHLCVCandle]:
    """One candle per (asset, source) from raw observations with a positive price."""
    groups: dict[tuple[str, str], list[PriceObservation]] = defaultdict(list)
    for obs in observations:
        if obs.price > 0:
            groups[(obs.asset_id, obs.source_id)].append(obs)

    candles = []
    for (asset_id, source_id), group in sorted(groups.items()):
        ordered = sorted(group, key=lambda o: o.observed_at)
        prices = [o.price for o in ordered]
        candles.append(
            OHLCVCandle(
                asset_id=asset_id,
                symbol=ordered[0].symbol,
                interval=interval,
                bucket_start=bucket_start,
                open=prices[0],
                high=max(prices),
                low=min(prices),
                close=prices[-1],
                volume=math.fsum(o.volume for o in ordered),
                point_count=len(ordered),
                provenance=CandleSource.RAW,
                source_id=source_id,
            )
        )
    return candles


@dataclass
class CandleRunReport:
    window_end: datetime
    candles: dict[str, list[OHLCVCandle]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(c) for c in self.candles.values())


class CandleGenerator:
    """
    Builds and persists candles for every bucket of an interval closed since
    the previous run (the last closed bucket on the first run).

    Keeps the last written bucket start per (asset, source, interval,
    provenance); a bucket not strictly newer is skipped, never rewritten.
    """

    def __init__(
        self,
        time_series: ITimeSeriesStore,
        config: AggregationConfig | None = None,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.time_series = time_series
        self.config = config or AggregationConfig()
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._last_bucket: dict[tuple, datetime] = {}
        # (provenance, interval) -> end of the last bucket range processed
        self._cursor: dict[tuple[CandleSource, str], datetime] = {}
        self.logger = get_aggregation_logger("candle-generator")

    def last_bucket(
        self,
        asset_id: str,
        interval: str,
        provenance: CandleSource = CandleSource.VWAP,
        source_id: str | None = None,
    ) -> datetime | None:
        return self._last_bucket.get((asset_id, source_id, interval, provenance))

    def _is_new(self, candle: OHLCVCandle) -> bool:
        last = self.last_bucket(
            candle.asset_id, candle.interval, candle.provenance, candle.source_id
        )
        return last is None or candle.bucket_start > last

    def _pending(
        self, key: tuple[CandleSource, str], interval: str, window_end: datetime | None
    ) -> list[datetime]:
        return closed_buckets(self._cursor.get(key), window_end or self._clock(), interval)

    async def _read(
        self, table: TableName, start: datetime, end: datetime, interval: str, filters=None
    ) -> list[dict]:
        try:
            return await run_with_timeout(
                self.time_series.query_range(table, start, end, filters=filters),
                self.timeout_seconds,
            )
        except Exception as e:
            raise AggregationError(
                f"Failed to read {table.value}: {str(e) or type(e).__name__}",
                interval=interval,
            ) from e

    async def generate(
        self, interval: str, window_end: datetime | None = None
    ) -> list[OHLCVCandle]:
        """
        VWAP candles for every `interval` bucket closed since the previous
        run; on the first run, the last closed bucket before `window_end`.

        Raises:
            AggregationError: If reading VWAP records or persisting candles fails
        """
        key = (CandleSource.VWAP, interval)
        buckets = self._pending(key, interval, window_end)
        if not buckets:
            self.logger.debug("candle_bucket_not_closed", interval=interval)
            return []

        end = buckets[-1] + interval_to_timedelta(interval)
        rows = await self._read(
            TableName.VWAP_RECORDS,
            buckets[0],
            end,
            interval,
            filters={"window": self.config.allowed_windows(interval)},
        )

        points: dict[tuple[str, datetime], list[VWAPRecord]] = defaultdict(list)
        for row in rows:
            record = VWAPRecord.from_row(row)
            bucket = align_to_interval(record.window_start, interval)
            points[(record.asset_id, bucket)].append(record)

        candles = []
        for asset_id, bucket in sorted(points, key=lambda k: (k[1], k[0])):
            group = points[(asset_id, bucket)]
            candle = build_candle(asset_id, group[0].symbol, interval, bucket, group)
            if candle is None:
                continue
            if not self._is_new(candle):
                self.logger.info(
                    "candle_bucket_skipped",
                    asset_id=asset_id,
                    interval=interval,
                    bucket_start=bucket.isoformat(),
                )
                continue
            candles.append(candle)

        await self._persist(candles, interval)
        self._advance(key, end, len(buckets))
        return candles

    async def generate_raw(self, window_end: datetime | None = None) -> list[OHLCVCandle]:
        """Per-source raw candles for every raw-candle bucket closed since the last run."""
        interval = self.config.raw_candle_interval
        key = (CandleSource.RAW, interval)
        buckets = self._pending(key, interval, window_end)
        if not buckets:
            return []

        end = buckets[-1] + interval_to_timedelta(interval)
        rows = await self._read(TableName.PRICE_OBSERVATIONS, buckets[0], end, interval)

        by_bucket: dict[datetime, list[PriceObservation]] = defaultdict(list)
        for row in rows:
            obs = PriceObservation(**row)
            by_bucket[align_to_interval(obs.observed_at, interval)].append(obs)

        candles = [
            c
            for bucket in buckets
            for c in build_raw_candles(by_bucket.get(bucket, []), interval, bucket)
            if self._is_new(c)
        ]
        await self._persist(candles, interval)
        self._advance(key, end, len(buckets))
        return candles

    def _advance(self, key: tuple[CandleSource, str], end: datetime, buckets: int) -> None:
        self._cursor[key] = end
        if buckets > 1:
            self.logger.info(
                "candle_buckets_caught_up",
                provenance=key[0].value,
                interval=key[1],
                buckets=buckets,
            )
    async def generate_all(
        self,
        window_end: datetime | None = None,
        intervals: list[str] | None = None,
    ) -> CandleRunReport:
        """Run `generate` for every interval; one interval failing never blocks another."""
        window_end = window_end or self._clock()
        intervals = intervals or self.config.candle_intervals
        report = CandleRunReport(window_end=window_end)

        async def run(interval: str) -> None:
            try:
                report.candles[interval] = await self.generate(interval, window_end)
            except AggregationError as e:
                report.failures[interval] = str(e)
                self.logger.error("candle_interval_failed", interval=interval, error=str(e))

        await asyncio.gather(*(run(i) for i in intervals))
        return report

    async def _persist(self, candles: list[OHLCVCandle], interval: str) -> None:
        if not candles:
            self.logger.debug("candles_empty", interval=interval)
            return
        try:
            await run_with_timeout(
                self.time_series.bulk_insert(
                    TableName.OHLCV_CANDLES, [c.to_row() for c in candles]
                ),
                self.timeout_seconds,
            )
        except Exception as e:
            raise AggregationError(
                f"Failed to persist candles: {str(e) or type(e).__name__}", interval=interval
            ) from e

        for candle in sorted(candles, key=lambda c: c.bucket_start):
            key = (candle.asset_id, candle.source_id, candle.interval, candle.provenance)
            self._last_bucket[key] = candle.bucket_start

        self.logger.info(
            "candles_built",
            interval=interval,
            count=len(candles),
            provenance=candles[0].provenance.value,
        )
