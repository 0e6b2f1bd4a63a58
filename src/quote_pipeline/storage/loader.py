"""
Loader: fan-out persistence of one cycle's observations.

Three sinks are written in parallel, each under its own timeout:

- time_series (critical): system of record, single bulk insert
- cache (non-critical): per-(symbol, source) snapshot plus per-symbol hash
- metadata (non-critical): marks quoted assets as recently seen

Only a time_series failure raises (CriticalSinkError); the others are logged
and reported.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.infrastructure.observability import get_storage_logger
from quote_pipeline.shared.errors import CriticalSinkError
from quote_pipeline.shared.models.enums import SinkName, TableName
from quote_pipeline.shared.models.market import PriceObservation
from quote_pipeline.storage.ports import ICacheStore, IMetadataStore, ITimeSeriesStore

CRITICAL_SINKS = frozenset({SinkName.TIME_SERIES})


def snapshot_key(symbol: str, source_id: str) -> str:
    return f"price:{symbol}:{source_id}"


def market_key(symbol: str) -> str:
    return f"market:{symbol}"


@dataclass
class SinkResult:
    sink: SinkName
    success: bool
    rows: int = 0
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def critical(self) -> bool:
        return self.sink in CRITICAL_SINKS


@dataclass
class LoadReport:
    observation_count: int = 0
    results: dict[SinkName, SinkResult] = field(default_factory=dict)

    @property
    def critical_ok(self) -> bool:
        return all(r.success for r in self.results.values() if r.critical)

    @property
    def non_critical_failures(self) -> list[SinkResult]:
        return [r for r in self.results.values() if not r.critical and not r.success]

    @property
    def degraded(self) -> bool:
        return bool(self.non_critical_failures)


class Loader:
    def __init__(
        self,
        time_series: ITimeSeriesStore,
        cache: ICacheStore,
        metadata_store: IMetadataStore,
        timeout_seconds: float = 30.0,
        snapshot_ttl_seconds: int = 5,
        market_ttl_seconds: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.time_series = time_series
        self.cache = cache
        self.metadata_store = metadata_store
        self.timeout_seconds = timeout_seconds
        self.snapshot_ttl_seconds = snapshot_ttl_seconds
        self.market_ttl_seconds = market_ttl_seconds
        self._clock = clock
        self.logger = get_storage_logger("loader")

    async def load(self, observations: list[PriceObservation]) -> LoadReport:
        """
        Persist `observations` to all sinks.

        Raises:
            CriticalSinkError: If the time-series write failed or timed out.
                The exception carries the full LoadReport.
        """
        report = LoadReport(observation_count=len(observations))
        if not observations:
            self.logger.info("load_skipped_empty")
            return report

        results = await asyncio.gather(
            self._run_sink(SinkName.TIME_SERIES, self._write_time_series(observations)),
            self._run_sink(SinkName.CACHE, self._write_cache(observations)),
            self._run_sink(SinkName.METADATA, self._write_metadata(observations)),
        )
        report.results = {r.sink: r for r in results}

        for result in report.non_critical_failures:
            self.logger.warning(
                "sink_failed", sink=result.sink.value, critical=False, error=result.error
            )

        if not report.critical_ok:
            failed = report.results[SinkName.TIME_SERIES]
            self.logger.error(
                "critical_sink_failed", sink=failed.sink.value, error=failed.error
            )
            raise CriticalSinkError(
                f"time_series write failed: {failed.error}",
                sink=failed.sink.value,
                report=report,
            )

        self.logger.info(
            "load_completed",
            observations=report.observation_count,
            sinks={r.sink.value: r.success for r in results},
        )
        return report

    async def _run_sink(self, sink: SinkName, write: Awaitable[int]) -> SinkResult:
        started = time.perf_counter()
        try:
            rows = await run_with_timeout(write, self.timeout_seconds)
        except TimeoutError:
            return SinkResult(
                sink=sink,
                success=False,
                duration_seconds=time.perf_counter() - started,
                error=f"timeout after {self.timeout_seconds}s",
            )
        except Exception as e:
            return SinkResult(
                sink=sink,
                success=False,
                duration_seconds=time.perf_counter() - started,
                error=f"{type(e).__name__}: {e}",
            )
        return SinkResult(
            sink=sink,
            success=True,
            rows=rows,
            duration_seconds=time.perf_counter() - started,
        )

    async def _write_time_series(self, observations: list[PriceObservation]) -> int:
        return await self.time_series.bulk_insert(
            TableName.PRICE_OBSERVATIONS, [o.to_row() for o in observations]
        )

    async def _write_cache(self, observations: list[PriceObservation]) -> int:
        writes = []
        market_keys = set()
        for o in observations:
            payload = json.dumps(
                {
                    "price": o.price,
                    "volume": o.volume,
                    "change": o.change,
                    "change_percent": o.change_percent,
                    "timestamp": int(o.observed_at.timestamp() * 1000),
                    "source_id": o.source_id,
                }
            )
            writes.append(
                self.cache.set_with_ttl(
                    snapshot_key(o.symbol, o.source_id), payload, self.snapshot_ttl_seconds
                )
            )
            writes.append(self.cache.hash_set_field(market_key(o.symbol), o.source_id, payload))
            market_keys.add(market_key(o.symbol))

        await asyncio.gather(*writes)
        await asyncio.gather(
            *(self.cache.expire(key, self.market_ttl_seconds) for key in market_keys)
        )
        return len(observations)

    async def _write_metadata(self, observations: list[PriceObservation]) -> int:
        asset_ids = sorted({o.asset_id for o in observations})
        await self.metadata_store.touch_assets(asset_ids, self._clock())
        return len(asset_ids)
