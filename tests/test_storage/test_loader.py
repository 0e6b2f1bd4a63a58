"""Tests for the three-sink Loader."""

import asyncio
import json

import pytest

from quote_pipeline.shared.errors import CriticalSinkError
from quote_pipeline.shared.models.enums import SinkName, TableName
from quote_pipeline.shared.models.market import PriceObservation
from quote_pipeline.storage.loader import Loader, market_key, snapshot_key
from tests.conftest import FIXED_NOW


def _observation(source_id: str, asset_id: str, symbol: str, price: float = 100.0):
    return PriceObservation(
        source_id=source_id,
        asset_id=asset_id,
        symbol=symbol,
        raw_code=f"{symbol}-{source_id}",
        observed_at=FIXED_NOW,
        price=price,
        volume=2.0,
        quality_score=1.0,
    )


@pytest.fixture
def observations():
    return [
        _observation("binance", "btc", "BTC", 42000.0),
        _observation("upbit", "btc", "BTC", 42100.0),
        _observation("binance", "eth", "ETH", 2500.0),
    ]


@pytest.fixture
def loader(time_series, cache, metadata_store, clock):
    return Loader(time_series, cache, metadata_store, timeout_seconds=0.5, clock=clock)


class TestLoader:
    @pytest.mark.asyncio
    async def test_all_sinks_written(self, loader, observations, time_series, cache, metadata_store):
        report = await loader.load(observations)

        assert report.critical_ok
        assert not report.degraded
        assert report.results[SinkName.TIME_SERIES].rows == 3
        assert time_series.insert_calls == [(TableName.PRICE_OBSERVATIONS, 3)]
        assert metadata_store.touched == [["btc", "eth"]]

    @pytest.mark.asyncio
    async def test_cache_layout(self, loader, observations, cache):
        await loader.load(observations)

        snapshot = json.loads(cache.values[snapshot_key("BTC", "upbit")])
        assert snapshot["price"] == 42100.0
        assert snapshot["source_id"] == "upbit"
        assert snapshot["timestamp"] == int(FIXED_NOW.timestamp() * 1000)
        assert cache.ttls[snapshot_key("BTC", "upbit")] == 5

        assert set(cache.hashes[market_key("BTC")]) == {"binance", "upbit"}
        assert cache.ttls[market_key("BTC")] == 10
        assert cache.ttls[market_key("ETH")] == 10

    @pytest.mark.asyncio
    async def test_empty_batch_writes_nothing(self, loader, time_series, metadata_store):
        report = await loader.load([])

        assert report.results == {}
        assert report.critical_ok
        assert time_series.insert_calls == []
        assert metadata_store.touched == []

    @pytest.mark.asyncio
    async def test_cache_failure_is_not_critical(self, loader, observations, cache, time_series):
        cache.fail_with = ConnectionError("redis down")

        report = await loader.load(observations)

        assert report.critical_ok
        assert report.degraded
        assert [r.sink for r in report.non_critical_failures] == [SinkName.CACHE]
        assert "ConnectionError" in report.results[SinkName.CACHE].error
        assert len(time_series.tables[TableName.PRICE_OBSERVATIONS]) == 3

    @pytest.mark.asyncio
    async def test_metadata_failure_is_not_critical(self, loader, observations, metadata_store):
        metadata_store.fail_touch = RuntimeError("pool exhausted")

        report = await loader.load(observations)

        assert report.critical_ok
        assert [r.sink for r in report.non_critical_failures] == [SinkName.METADATA]

    @pytest.mark.asyncio
    async def test_time_series_failure_raises(self, loader, observations, time_series, cache):
        time_series.fail_with = ConnectionError("timescale down")

        with pytest.raises(CriticalSinkError) as exc_info:
            await loader.load(observations)

        report = exc_info.value.report
        assert exc_info.value.sink == "time_series"
        assert not report.critical_ok
        # the other sinks still ran
        assert report.results[SinkName.CACHE].success
        assert report.results[SinkName.METADATA].success
        assert cache.values

    @pytest.mark.asyncio
    async def test_time_series_timeout_raises(self, loader, observations, time_series):
        time_series.delay = 2.0

        with pytest.raises(CriticalSinkError, match="timeout"):
            await loader.load(observations)

    @pytest.mark.asyncio
    async def test_sinks_run_concurrently(self, observations, cache, metadata_store, clock):
        class BlockingStore:
            """Completes only once the cache sink has written."""

            async def bulk_insert(self, table, rows):
                while not cache.values:
                    await asyncio.sleep(0)
                return len(rows)

        loader = Loader(BlockingStore(), cache, metadata_store, timeout_seconds=0.5, clock=clock)

        report = await loader.load(observations)

        assert report.critical_ok
        assert report.results[SinkName.CACHE].success
