"""Time-series table layouts.

Table Schema (TimescaleDB hypertables, time column first):
  price_observations:
    - observed_at TIMESTAMPTZ NOT NULL
    - asset_id, symbol, source_id, raw_code TEXT
    - price, volume, bid, ask, spread, quality_score DOUBLE PRECISION
    - is_active BOOLEAN
  vwap_records:
    - window_start TIMESTAMPTZ NOT NULL
    - asset_id, symbol, "window" TEXT
    - vwap_price, total_volume, total_value DOUBLE PRECISION
    - source_count INTEGER, sources TEXT[]
  ohlcv_candles:
    - bucket_start TIMESTAMPTZ NOT NULL
    - asset_id, symbol, "interval" TEXT
    - open, high, low, close, volume DOUBLE PRECISION
    - point_count INTEGER, provenance TEXT, source_id TEXT NULL
"""

from dataclasses import dataclass

from quote_pipeline.shared.models.enums import TableName


@dataclass(frozen=True)
class TableSpec:
    name: TableName
    time_column: str
    columns: dict[str, str]  # column -> SQL type

    @property
    def column_names(self) -> list[str]:
        return list(self.columns)

    def ddl(self) -> list[str]:
        cols = ",\n    ".join(f'"{c}" {t}' for c, t in self.columns.items())
        return [
            f"CREATE TABLE IF NOT EXISTS {self.name.value} (\n    {cols}\n)",
            f"SELECT create_hypertable('{self.name.value}', '{self.time_column}', "
            "if_not_exists => TRUE)",
        ]


TABLES: dict[TableName, TableSpec] = {
    TableName.PRICE_OBSERVATIONS: TableSpec(
        name=TableName.PRICE_OBSERVATIONS,
        time_column="observed_at",
        columns={
            "observed_at": "TIMESTAMPTZ NOT NULL",
            "asset_id": "TEXT NOT NULL",
            "symbol": "TEXT NOT NULL",
            "source_id": "TEXT NOT NULL",
            "raw_code": "TEXT NOT NULL",
            "price": "DOUBLE PRECISION NOT NULL",
            "volume": "DOUBLE PRECISION NOT NULL",
            "bid": "DOUBLE PRECISION",
            "ask": "DOUBLE PRECISION",
            "spread": "DOUBLE PRECISION",
            "quality_score": "DOUBLE PRECISION NOT NULL",
            "is_active": "BOOLEAN NOT NULL DEFAULT TRUE",
        },
    ),
    TableName.VWAP_RECORDS: TableSpec(
        name=TableName.VWAP_RECORDS,
        time_column="window_start",
        columns={
            "window_start": "TIMESTAMPTZ NOT NULL",
            "asset_id": "TEXT NOT NULL",
            "symbol": "TEXT NOT NULL",
            "window": "TEXT NOT NULL",
            "vwap_price": "DOUBLE PRECISION NOT NULL",
            "total_volume": "DOUBLE PRECISION NOT NULL",
            "total_value": "DOUBLE PRECISION NOT NULL",
            "source_count": "INTEGER NOT NULL",
            "sources": "TEXT[] NOT NULL",
        },
    ),
    TableName.OHLCV_CANDLES: TableSpec(
        name=TableName.OHLCV_CANDLES,
        time_column="bucket_start",
        columns={
            "bucket_start": "TIMESTAMPTZ NOT NULL",
            "asset_id": "TEXT NOT NULL",
            "symbol": "TEXT NOT NULL",
            "interval": "TEXT NOT NULL",
            "open": "DOUBLE PRECISION NOT NULL",
            "high": "DOUBLE PRECISION NOT NULL",
            "low": "DOUBLE PRECISION NOT NULL",
            "close": "DOUBLE PRECISION NOT NULL",
            "volume": "DOUBLE PRECISION NOT NULL",
            "point_count": "INTEGER NOT NULL",
            "provenance": "TEXT NOT NULL",
            "source_id": "TEXT",
        },
    ),
}


def get_table(table: TableName | str) -> TableSpec:
    return TABLES[TableName(table)]
