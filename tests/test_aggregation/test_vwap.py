"""Tests for cross-source VWAP."""

import random
from datetime import UTC, datetime, timedelta

import pytest

from quote_pipeline.aggregation.vwap import VWAPAggregator, compute_vwap
from quote_pipeline.shared.errors import AggregationError
from quote_pipeline.shared.models.enums import TableName
from quote_pipeline.shared.models.market import PriceObservation
from tests.conftest import FIXED_NOW

WINDOW_START = datetime(2024, 1, 1, 10, 0, 5, tzinfo=UTC)


def _obs(source_id, asset_id, price, volume, observed_at=FIXED_NOW, symbol=None):
    return PriceObservation(
        source_id=source_id,
        asset_id=asset_id,
        symbol=symbol or asset_id.upper(),
        raw_code=f"{asset_id}-{source_id}",
        observed_at=observed_at,
        price=price,
        volume=volume,
        quality_score=1.0,
    )


# ============================================
# compute_vwap
# ============================================


class TestComputeVwap:
    def test_weighted_average(self):
        records = compute_vwap(
            [_obs("binance", "btc", 100.0, 1.0), _obs("upbit", "btc", 150.0, 2.0)],
            WINDOW_START,
        )

        [record] = records
        assert record.vwap_price == pytest.approx(133.3333333)
        assert record.total_volume == 3.0
        assert record.total_value == 400.0
        assert record.sources == ["binance", "upbit"]
        assert record.source_count == 2
        assert record.window_start == WINDOW_START
        assert record.window == "5s"

    def test_order_invariant(self):
        observations = [
            _obs(f"s{i}", "btc", 100.0 + i * 0.1, 0.1 * (i + 1)) for i in range(50)
        ]
        expected = compute_vwap(observations, WINDOW_START)[0]

        shuffled = list(observations)
        random.Random(7).shuffle(shuffled)
        actual = compute_vwap(shuffled, WINDOW_START)[0]

        assert actual.vwap_price == expected.vwap_price
        assert actual.total_volume == expected.total_volume

    def test_zero_volume_is_excluded(self):
        records = compute_vwap(
            [_obs("binance", "btc", 100.0, 1.0), _obs("kraken", "btc", 999.0, 0.0)],
            WINDOW_START,
        )

        assert records[0].vwap_price == 100.0
        assert records[0].sources == ["binance"]

    def test_no_volume_no_record(self):
        records = compute_vwap(
            [_obs("binance", "btc", 100.0, 0.0), _obs("binance", "eth", 10.0, 1.0)],
            WINDOW_START,
        )

        assert [r.asset_id for r in records] == ["eth"]

    def test_zero_price_is_excluded(self):
        records = compute_vwap(
            [_obs("binance", "btc", 0.0, 5.0), _obs("upbit", "btc", 120.0, 1.0)],
            WINDOW_START,
        )

        assert records[0].vwap_price == 120.0
        assert records[0].total_volume == 1.0

    def test_vwap_within_price_range(self):
        observations = [
            _obs("a", "btc", 101.0, 3.0),
            _obs("b", "btc", 99.5, 7.0),
            _obs("c", "btc", 100.2, 0.5),
        ]
        [record] = compute_vwap(observations, WINDOW_START)

        assert 99.5 <= record.vwap_price <= 101.0

    def test_empty(self):
        assert compute_vwap([], WINDOW_START) == []


# ============================================
# VWAPAggregator
# ============================================


class TestVWAPAggregator:
    @pytest.mark.asyncio
    async def test_aggregate_cycle_persists(self, time_series, clock):
        aggregator = VWAPAggregator(time_series, clock=clock)

        records = await aggregator.aggregate_cycle(
            [_obs("binance", "btc", 100.0, 1.0), _obs("upbit", "btc", 150.0, 2.0)]
        )

        assert records[0].window_start == WINDOW_START
        [row] = time_series.tables[TableName.VWAP_RECORDS]
        assert row["window"] == "5s"
        assert row["vwap_price"] == pytest.approx(400.0 / 3.0)

    @pytest.mark.asyncio
    async def test_aggregate_cycle_without_volume_writes_nothing(self, time_series, clock):
        aggregator = VWAPAggregator(time_series, clock=clock)

        assert await aggregator.aggregate_cycle([_obs("binance", "btc", 100.0, 0.0)]) == []
        assert time_series.insert_calls == []

    @pytest.mark.asyncio
    async def test_aggregate_window_reads_last_closed_bucket(self, time_series, clock):
        start = datetime(2024, 1, 1, 9, 55, tzinfo=UTC)
        rows = [
            _obs("binance", "btc", 100.0, 1.0, observed_at=start + timedelta(seconds=10)),
            _obs("upbit", "btc", 110.0, 1.0, observed_at=start + timedelta(minutes=4)),
            # next bucket: excluded
            _obs("upbit", "btc", 500.0, 1.0, observed_at=start + timedelta(minutes=5)),
        ]
        await time_series.bulk_insert(TableName.PRICE_OBSERVATIONS, [o.to_row() for o in rows])

        aggregator = VWAPAggregator(time_series, windowed="5m", clock=clock)
        [record] = await aggregator.aggregate_window()

        assert record.window_start == start
        assert record.window == "5m"
        assert record.vwap_price == pytest.approx(105.0)

    @pytest.mark.asyncio
    async def test_persist_failure_raises(self, time_series, clock):
        time_series.fail_with = ConnectionError("down")
        aggregator = VWAPAggregator(time_series, clock=clock)

        with pytest.raises(AggregationError):
            await aggregator.aggregate_cycle([_obs("binance", "btc", 100.0, 1.0)])

    @pytest.mark.asyncio
    async def test_stalled_insert_raises_aggregation_error(self, time_series, clock):
        time_series.delay = 3600
        aggregator = VWAPAggregator(time_series, timeout_seconds=0.05, clock=clock)

        with pytest.raises(AggregationError, match="TimeoutError"):
            await aggregator.aggregate_cycle([_obs("binance", "btc", 100.0, 1.0)])

    @pytest.mark.asyncio
    async def test_windows_closed_between_runs_are_all_built(self, time_series):
        base = datetime(2024, 1, 1, 9, 55, tzinfo=UTC)
        rows = [
            _obs("binance", "btc", 100.0, 1.0, observed_at=base + timedelta(seconds=30)),
            _obs("binance", "btc", 110.0, 1.0, observed_at=base + timedelta(minutes=5, seconds=30)),
            _obs("binance", "btc", 120.0, 1.0, observed_at=base + timedelta(minutes=10, seconds=30)),
        ]
        await time_series.bulk_insert(TableName.PRICE_OBSERVATIONS, [o.to_row() for o in rows])
        first_run = datetime(2024, 1, 1, 10, 4, 59, 900000, tzinfo=UTC)
        aggregator = VWAPAggregator(time_series, windowed="5m", clock=lambda: first_run)

        early = await aggregator.aggregate_window()
        late = await aggregator.aggregate_window(first_run + timedelta(seconds=300.3))

        assert [r.window_start for r in early] == [base]
        assert [(r.window_start, r.vwap_price) for r in late] == [
            (base + timedelta(minutes=5), 110.0),
            (base + timedelta(minutes=10), 120.0),
        ]

    @pytest.mark.asyncio
    async def test_window_not_rebuilt_within_same_bucket(self, time_series, clock):
        start = datetime(2024, 1, 1, 9, 55, tzinfo=UTC)
        await time_series.bulk_insert(
            TableName.PRICE_OBSERVATIONS,
            [_obs("binance", "btc", 100.0, 1.0, observed_at=start).to_row()],
        )
        aggregator = VWAPAggregator(time_series, windowed="5m", clock=clock)

        assert len(await aggregator.aggregate_window()) == 1
        assert await aggregator.aggregate_window() == []
        assert len(time_series.tables[TableName.VWAP_RECORDS]) == 1
