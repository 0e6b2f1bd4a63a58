"""
Shared enumerations for the quote pipeline.
"""

import enum


class SourceKind(str, enum.Enum):
    """Adapter variant used to talk to a market-data source."""

    BINANCE = "binance"
    UPBIT = "upbit"
    KRAKEN = "kraken"


class SinkName(str, enum.Enum):
    """Persistence targets written by the loader."""

    TIME_SERIES = "time_series"  # system of record
    CACHE = "cache"
    METADATA = "metadata"


class CandleSource(str, enum.Enum):
    """Provenance of an OHLCV candle."""

    RAW = "raw"  # built from per-source price observations
    VWAP = "vwap"  # built from the cross-source VWAP series


class TableName(str, enum.Enum):
    """Logical tables of the time-series store."""

    PRICE_OBSERVATIONS = "price_observations"
    VWAP_RECORDS = "vwap_records"
    OHLCV_CANDLES = "ohlcv_candles"
