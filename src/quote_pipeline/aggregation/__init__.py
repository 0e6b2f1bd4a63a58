"""
Aggregation layer: cross-source VWAP and OHLCV candles.
"""

from quote_pipeline.aggregation.candles import (
    CandleGenerator,
    CandleRunReport,
    build_candle,
    build_raw_candles,
)
from quote_pipeline.aggregation.vwap import VWAPAggregator, compute_vwap

__all__ = [
    "CandleGenerator",
    "CandleRunReport",
    "VWAPAggregator",
    "build_candle",
    "build_raw_candles",
    "compute_vwap",
]
