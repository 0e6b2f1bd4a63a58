"""
Volume-weighted average price across sources.

VWAP = sum(price * volume) / sum(volume) per canonical asset, counting only
entries with positive price and volume. A group with no volume yields no
record.
"""

import math
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime

from quote_pipeline.common.utils import (
    align_to_interval,
    closed_buckets,
    interval_to_timedelta,
    run_with_timeout,
    utc_now,
)
from quote_pipeline.infrastructure.observability import get_aggregation_logger
from quote_pipeline.shared.errors import AggregationError
from quote_pipeline.shared.models.enums import TableName
from quote_pipeline.shared.models.market import PriceObservation, VWAPRecord
from quote_pipeline.storage.ports import ITimeSeriesStore


def compute_vwap(
    observations: Iterable[PriceObservation],
    window_start: datetime,
    window: str = "5s",
) -> list[VWAPRecord]:
    """
    One VWAPRecord per asset present in `observations`.

    Sums use math.fsum so the result does not depend on input order.
    """
    groups: dict[str, list[PriceObservation]] = defaultdict(list)
    for obs in observations:
        groups[obs.asset_id].append(obs)

    records = []
    for asset_id in sorted(groups):
        contributing = [o for o in groups[asset_id] if o.volume > 0 and o.price > 0]
        total_volume = math.fsum(o.volume for o in contributing)
        if total_volume <= 0:
            continue

        total_value = math.fsum(o.price * o.volume for o in contributing)
        sources = sorted({o.source_id for o in contributing})
        records.append(
            VWAPRecord(
                asset_id=asset_id,
                symbol=contributing[0].symbol,
                window_start=window_start,
                window=window,
                vwap_price=total_value / total_volume,
                total_volume=total_volume,
                total_value=total_value,
                source_count=len(sources),
                sources=sources,
            )
        )
    return records


class VWAPAggregator:
    """
    Computes and persists VWAP records.

    `aggregate_cycle` runs on each cycle's freshly loaded observations;
    `aggregate_window` rebuilds wider windows from stored observations, every
    window closed since the previous run included. Every store call is bounded
    by `timeout_seconds`.
    """

    def __init__(
        self,
        time_series: ITimeSeriesStore,
        window: str = "5s",
        windowed: str = "5m",
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.time_series = time_series
        self.window = window
        self.windowed = windowed
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        # width -> end of the last window written
        self._window_cursor: dict[str, datetime] = {}
        self.logger = get_aggregation_logger("vwap")

    async def aggregate_cycle(
        self,
        observations: list[PriceObservation],
        window_start: datetime | None = None,
    ) -> list[VWAPRecord]:
        if window_start is None:
            window_start = align_to_interval(self._clock(), self.window)

        records = compute_vwap(observations, window_start, self.window)
        await self._persist(records, self.window)
        return records

    async def aggregate_window(
        self,
        window_end: datetime | None = None,
        width: str | None = None,
    ) -> list[VWAPRecord]:
        """
        VWAP for each `width` window closed since the last run (the last
        closed window on the first run), read from stored observations.
        """
        width = width or self.windowed
        buckets = closed_buckets(
            self._window_cursor.get(width), window_end or self._clock(), width
        )
        if not buckets:
            self.logger.debug("vwap_window_not_closed", window=width)
            return []

        step = interval_to_timedelta(width)
        end = buckets[-1] + step
        try:
            rows = await run_with_timeout(
                self.time_series.query_range(
                    TableName.PRICE_OBSERVATIONS,
                    buckets[0],
                    end,
                    filters={"is_active": True},
                ),
                self.timeout_seconds,
            )
        except Exception as e:
            raise AggregationError(
                f"Failed to read observations: {str(e) or type(e).__name__}", interval=width
            ) from e

        by_bucket: dict[datetime, list[PriceObservation]] = defaultdict(list)
        for row in rows:
            obs = PriceObservation(**row)
            by_bucket[align_to_interval(obs.observed_at, width)].append(obs)

        records = []
        for start in buckets:
            records.extend(compute_vwap(by_bucket.get(start, []), start, width))

        await self._persist(records, width)
        self._window_cursor[width] = end
        if len(buckets) > 1:
            self.logger.info("vwap_windows_caught_up", window=width, windows=len(buckets))
        return records

    async def _persist(self, records: list[VWAPRecord], window: str) -> None:
        if not records:
            self.logger.info("vwap_empty", window=window)
            return
        try:
            await run_with_timeout(
                self.time_series.bulk_insert(
                    TableName.VWAP_RECORDS, [r.to_row() for r in records]
                ),
                self.timeout_seconds,
            )
        except Exception as e:
            raise AggregationError(
                f"Failed to persist VWAP records: {str(e) or type(e).__name__}", interval=window
            ) from e

        self.logger.info(
            "vwap_computed",
            window=window,
            assets=len({r.asset_id for r in records}),
            records=len(records),
            window_start=records[0].window_start.isoformat(),
        )
