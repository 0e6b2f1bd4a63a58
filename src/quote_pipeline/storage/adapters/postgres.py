"""PostgreSQL/TimescaleDB adapters for the time-series and metadata stores.

Both stores share one asyncpg pool owned by `PostgresDatabase`.
"""

import json
import logging
from datetime import datetime
from typing import Any

import asyncpg

from quote_pipeline.config.state import DatabaseConfig
from quote_pipeline.shared.models.enums import TableName
from quote_pipeline.shared.models.market import CanonicalAsset, SymbolMapping
from quote_pipeline.storage.schemas.tables import TableSpec, get_table

logger = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 500


class PostgresDatabase:
    """Connection pool wrapper with dict-returning fetch helpers."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Establish database connection pool (idempotent)."""
        if self.pool is not None:
            return
        self.pool = await asyncpg.create_pool(
            dsn=self.config.url,
            min_size=self.config.pool_min_size,
            max_size=self.config.pool_max_size,
            command_timeout=self.config.command_timeout,
        )
        logger.info(f"Database pool created (max_size={self.config.pool_max_size})")

    async def disconnect(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Database pool closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError("Database not connected")
        return self.pool

    async def execute(self, query: str, *args: Any) -> str:
        async with self._require_pool().acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        async with self._require_pool().acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        async with self._require_pool().acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def fetch_value(self, query: str, *args: Any) -> Any:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(query, *args)


def _quote(identifier: str) -> str:
    return f'"{identifier}"'


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class TimescaleTimeSeriesStore:
    """ITimeSeriesStore over TimescaleDB hypertables."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def create_tables(self) -> None:
        for table in TableName:
            for statement in get_table(table).ddl():
                await self.db.execute(statement)

    async def bulk_insert(self, table: TableName, rows: list[dict[str, Any]]) -> int:
        """
        Insert rows with multi-row INSERT statements.

        Each chunk is its own statement so concurrent readers see whole
        records, never a batch-wide transaction.
        """
        if not rows:
            return 0

        spec = get_table(table)
        written = 0
        for start in range(0, len(rows), INSERT_CHUNK_SIZE):
            chunk = rows[start : start + INSERT_CHUNK_SIZE]
            query, args = self._build_insert(spec, chunk)
            await self.db.execute(query, *args)
            written += len(chunk)

        logger.debug(f"Inserted {written} rows into {spec.name.value}")
        return written

    @staticmethod
    def _build_insert(spec: TableSpec, rows: list[dict[str, Any]]) -> tuple[str, list[Any]]:
        columns = spec.column_names
        width = len(columns)
        placeholders = []
        args: list[Any] = []
        for i, row in enumerate(rows):
            offset = i * width
            placeholders.append(
                "(" + ", ".join(f"${offset + j + 1}" for j in range(width)) + ")"
            )
            args.extend(row.get(column) for column in columns)

        query = (
            f"INSERT INTO {spec.name.value} ({', '.join(_quote(c) for c in columns)}) "
            f"VALUES {', '.join(placeholders)}"
        )
        return query, args

    async def query_range(
        self,
        table: TableName,
        start: datetime,
        end: datetime,
        filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        spec = get_table(table)
        time_col = _quote(spec.time_column)
        clauses = [f"{time_col} >= $1", f"{time_col} < $2"]
        args: list[Any] = [start, end]

        for column, value in (filters or {}).items():
            if column not in spec.columns:
                raise ValueError(f"Unknown column {column!r} for {spec.name.value}")
            args.append(list(value) if isinstance(value, (list, tuple, set)) else value)
            operator = "= ANY" if isinstance(value, (list, tuple, set)) else "="
            placeholder = f"(${len(args)})" if operator == "= ANY" else f"${len(args)}"
            clauses.append(f"{_quote(column)} {operator}{placeholder}")

        query = (
            f"SELECT {', '.join(_quote(c) for c in spec.column_names)} "
            f"FROM {spec.name.value} WHERE {' AND '.join(clauses)} ORDER BY {time_col}"
        )
        return await self.db.fetch_all(query, *args)


class PostgresMetadataStore:
    """IMetadataStore over the relational mapping tables."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def fetch_mappings(self, source_id: str, raw_codes: list[str]) -> list[SymbolMapping]:
        query = """
            SELECT
                sm.exchange_id,
                sm.exchange_symbol,
                sm.confidence_score,
                sm.last_verified,
                sm.is_active,
                c.id AS coin_id,
                c.symbol,
                c.name,
                c.coingecko_id,
                c.coinmarketcap_id
            FROM symbol_mappings sm
            JOIN coins c ON sm.coin_id = c.id
            WHERE sm.exchange_id = $1
              AND sm.exchange_symbol = ANY($2)
              AND sm.is_active
        """
        rows = await self.db.fetch_all(query, source_id, list(raw_codes))
        return [self._to_mapping(row) for row in rows]

    @staticmethod
    def _to_mapping(row: dict[str, Any]) -> SymbolMapping:
        external_ids = {
            key: str(row[column])
            for key, column in (
                ("coingecko", "coingecko_id"),
                ("coinmarketcap", "coinmarketcap_id"),
            )
            if row.get(column) is not None
        }
        return SymbolMapping(
            source_id=row["exchange_id"],
            raw_code=row["exchange_symbol"],
            asset=CanonicalAsset(
                asset_id=str(row["coin_id"]),
                symbol=row["symbol"],
                name=row.get("name"),
                external_ids=external_ids,
            ),
            confidence=float(row["confidence_score"] if row["confidence_score"] is not None else 1.0),
            last_verified=row.get("last_verified"),
            is_active=row.get("is_active", True),
        )

    async def touch_assets(self, asset_ids: list[str], seen_at: datetime) -> int:
        status = await self.db.execute(
            "UPDATE coins SET updated_at = $2 WHERE id::text = ANY($1)",
            list(asset_ids),
            seen_at,
        )
        return _affected(status)

    async def record_mapping_audit(
        self, source_id: str, raw_code: str, occurrences: int, recorded_at: datetime
    ) -> None:
        await self.db.execute(
            """
            INSERT INTO mapping_update_logs
                (update_type, source, error_details, started_at, status)
            VALUES ('manual', $1, $2, $3, 'failed')
            """,
            source_id,
            f"Unmapped symbol: {raw_code} (count: {occurrences})",
            recorded_at,
        )

    async def record_cycle_run(self, run: dict[str, Any]) -> None:
        await self.db.execute(
            """
            INSERT INTO pipeline_cycle_runs
                (cycle_id, started_at, finished_at, status, stage_counts, errors)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb)
            """,
            run["cycle_id"],
            run["started_at"],
            run["finished_at"],
            run["status"],
            json.dumps(run.get("stage_counts", {})),
            json.dumps(run.get("errors", [])),
        )

    async def count_low_confidence_mappings(self, threshold: float) -> int:
        value = await self.db.fetch_value(
            "SELECT count(*) FROM symbol_mappings WHERE is_active AND confidence_score < $1",
            threshold,
        )
        return int(value or 0)

    async def count_stale_mappings(self, verified_before: datetime) -> int:
        value = await self.db.fetch_value(
            "SELECT count(*) FROM symbol_mappings "
            "WHERE is_active AND (last_verified IS NULL OR last_verified < $1)",
            verified_before,
        )
        return int(value or 0)
