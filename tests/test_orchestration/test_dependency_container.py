"""Tests for PipelineContainer wiring."""

import pytest

from quote_pipeline.config.state import ConfigState
from quote_pipeline.orchestration import PipelineContainer
from quote_pipeline.storage.loader import Loader
from tests.conftest import FakeSource, make_quote, make_registry


@pytest.fixture
def config():
    return ConfigState(
        extraction={"timeout_seconds": 3},
        loading={"sink_timeout_seconds": 7},
        aggregation={"candle_intervals": ["1m", "1h"]},
        schedule={"ingestion_interval_seconds": 10, "jitter_seconds": 0.5},
    )


@pytest.fixture
def container(config, time_series, cache, metadata_store):
    registry = make_registry(FakeSource("binance", records=[make_quote("binance", "BTCUSDT")]))
    return PipelineContainer.build(
        config,
        time_series,
        cache,
        metadata_store,
        http_client=object(),
        registry=registry,
    )


class TestPipelineContainer:
    def test_triggers(self, container):
        names = [t.name for t in container.triggers]

        assert names == [
            "ingestion",
            "windowed-vwap",
            "raw-candles",
            "candles-1m",
            "candles-1h",
            "mapping-quality",
        ]
        assert container.trigger("ingestion").interval_seconds == 10
        assert container.trigger("ingestion").jitter_seconds == 0.5
        assert container.trigger("candles-1h").interval_seconds == 3600

    def test_unknown_trigger(self, container):
        with pytest.raises(KeyError):
            container.trigger("nope")

    def test_config_flows_into_components(self, container):
        coordinator = container.coordinator

        assert coordinator.extractor.timeout_seconds == 3
        assert isinstance(coordinator.loader, Loader)
        assert coordinator.loader.timeout_seconds == 7
        assert coordinator.candle_generator.config.candle_intervals == ["1m", "1h"]
        assert coordinator.candle_generator.timeout_seconds == 7
        assert coordinator.vwap_aggregator.timeout_seconds == 7
        assert coordinator.transformer.tracker.timeout_seconds == 7
        assert coordinator.quality_monitor.timeout_seconds == 7
        assert coordinator.store_timeout_seconds == 7

    def test_registry_from_config(self, time_series, cache, metadata_store):
        config = ConfigState(
            sources=[
                {
                    "source_id": "kraken",
                    "kind": "kraken",
                    "base_url": "https://api.kraken.com",
                    "requested_codes": ["XXBTZUSD"],
                }
            ]
        )

        container = PipelineContainer.build(
            config, time_series, cache, metadata_store, http_client=object()
        )

        assert "kraken" in container.registry
        assert container._owned_resources == []

    @pytest.mark.asyncio
    async def test_candle_trigger_action(self, container):
        report = await container.trigger("candles-1m").action()

        assert report.failures == {}
        assert list(report.candles) == ["1m"]

    @pytest.mark.asyncio
    async def test_ingestion_trigger_runs_cycle(self, container):
        run = await container.trigger("ingestion").action()

        assert run.cycle_id == 1

    @pytest.mark.asyncio
    async def test_start_stop(self, container):
        container.start()
        assert all(t.running for t in container.triggers)

        await container.stop()
        assert not any(t.running for t in container.triggers)
