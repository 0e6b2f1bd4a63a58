"""Tests for the Transformer."""

from datetime import datetime

import pytest

from quote_pipeline.ingestion.extractor import ExtractionReport, SourceOutcome
from quote_pipeline.ingestion.symbol_resolution import (
    IdentityResolver,
    UnmappedSymbolTracker,
    unmapped_key,
)
from quote_pipeline.transformation.transformer import Transformer
from tests.conftest import FIXED_NOW, FakeMetadataStore, make_mapping, make_quote


def _extraction(*outcomes: SourceOutcome) -> ExtractionReport:
    return ExtractionReport(outcomes=list(outcomes))


def _ok(source_id: str, *records) -> SourceOutcome:
    return SourceOutcome(source_id=source_id, success=True, records=list(records))


class CountingResolver(IdentityResolver):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches: list[tuple[str, list[str]]] = []

    async def resolve_batch(self, source_id, raw_codes):
        self.batches.append((source_id, list(raw_codes)))
        return await super().resolve_batch(source_id, raw_codes)


@pytest.fixture
def store():
    return FakeMetadataStore(
        [
            make_mapping("binance", "BTCUSDT", "btc"),
            make_mapping("binance", "ETHUSDT", "eth"),
            make_mapping("upbit", "KRW-BTC", "btc"),
        ]
    )


class TestTransformer:
    @pytest.mark.asyncio
    async def test_resolved_records_become_observations(self, store, clock):
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)
        extraction = _extraction(
            _ok(
                "binance",
                make_quote("binance", "BTCUSDT", price=42000.0, volume=2.0, bid=41990.0, ask=42010.0),
                make_quote("binance", "ETHUSDT", price=2500.0, volume=10.0),
            ),
            _ok("upbit", make_quote("upbit", "KRW-BTC", price=42100.0, volume=1.0)),
        )

        report = await transformer.transform(extraction)

        assert report.processed == 3
        assert report.resolved == 3
        assert report.resolution_rate == 1.0
        btc = [o for o in report.observations if o.asset_id == "btc"]
        assert {o.source_id for o in btc} == {"binance", "upbit"}
        binance_btc = next(o for o in btc if o.source_id == "binance")
        assert binance_btc.symbol == "BTC"
        assert binance_btc.raw_code == "BTCUSDT"
        assert binance_btc.spread == pytest.approx(20.0 / 42010.0 * 100)
        assert binance_btc.quality_score == 1.0

    @pytest.mark.asyncio
    async def test_unmapped_records_are_counted_once_per_occurrence(self, store, cache, clock):
        tracker = UnmappedSymbolTracker(cache, store, clock=clock)
        transformer = Transformer(IdentityResolver(store, clock=clock), tracker=tracker, clock=clock)
        extraction = _extraction(
            _ok(
                "binance",
                make_quote("binance", "NEWUSDT"),
                make_quote("binance", "NEWUSDT"),
                make_quote("binance", "BTCUSDT"),
            )
        )

        report = await transformer.transform(extraction)

        assert len(report.observations) == 1
        assert report.per_source["binance"].unmapped == 2
        assert cache.counters[unmapped_key("binance", "NEWUSDT")] == 2

    @pytest.mark.asyncio
    async def test_one_lookup_per_source_across_batches(self, store, clock):
        resolver = CountingResolver(store, clock=clock)
        transformer = Transformer(resolver, batch_size=2, clock=clock)
        records = [make_quote("binance", "BTCUSDT", price=float(100 + i)) for i in range(5)]

        report = await transformer.transform(_extraction(_ok("binance", *records)))

        assert len(resolver.batches) == 1
        assert len(store.fetch_calls) == 1
        assert len(report.observations) == 5
        assert sorted(o.price for o in report.observations) == [100.0, 101.0, 102.0, 103.0, 104.0]

    @pytest.mark.asyncio
    async def test_resolution_failure_isolates_source(self, store, clock):
        store.fail_fetch_for.add("upbit")
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)
        extraction = _extraction(
            _ok("binance", make_quote("binance", "BTCUSDT")),
            _ok("upbit", make_quote("upbit", "KRW-BTC")),
        )

        report = await transformer.transform(extraction)

        assert [o.source_id for o in report.observations] == ["binance"]
        assert report.failed_sources == ["upbit"]
        assert report.per_source["upbit"].failed == 1
        assert report.resolution_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_failed_extractions_are_ignored(self, store, clock):
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)
        extraction = _extraction(
            SourceOutcome(source_id="kraken", success=False, error="timeout after 15.0s"),
            _ok("binance", make_quote("binance", "BTCUSDT")),
        )

        report = await transformer.transform(extraction)

        assert list(report.per_source) == ["binance"]

    @pytest.mark.asyncio
    async def test_low_resolution_rate_flag(self, store, clock):
        transformer = Transformer(
            IdentityResolver(store, clock=clock),
            resolution_warning_threshold=0.5,
            clock=clock,
        )
        extraction = _extraction(
            _ok(
                "binance",
                make_quote("binance", "BTCUSDT"),
                make_quote("binance", "AUSDT"),
                make_quote("binance", "BUSDT"),
            )
        )

        report = await transformer.transform(extraction)

        assert report.resolution_rate == pytest.approx(1 / 3)
        assert report.low_resolution_rate

    @pytest.mark.asyncio
    async def test_missing_fields_are_normalized(self, store, clock):
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)
        record = make_quote("binance", "BTCUSDT", price=None, volume=None, observed_at=None)

        report = await transformer.transform(_extraction(_ok("binance", record)))

        [observation] = report.observations
        assert observation.price == 0.0
        assert observation.volume == 0.0
        assert observation.observed_at == FIXED_NOW
        assert observation.quality_score == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_utc(self, store, clock):
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)
        record = make_quote("binance", "BTCUSDT", observed_at=datetime(2024, 1, 1, 9, 59, 59))

        report = await transformer.transform(_extraction(_ok("binance", record)))

        assert report.observations[0].observed_at.utcoffset().total_seconds() == 0

    @pytest.mark.asyncio
    async def test_nothing_processed(self, store, clock):
        transformer = Transformer(IdentityResolver(store, clock=clock), clock=clock)

        report = await transformer.transform(_extraction())

        assert report.observations == []
        assert report.resolution_rate == 1.0
        assert not report.low_resolution_rate

    def test_invalid_batch_size(self, store):
        with pytest.raises(ValueError):
            Transformer(IdentityResolver(store), batch_size=0)
