"""
Store interfaces consumed by the pipeline.

Three narrow Protocols stand in front of the persistent stores so every stage
can be exercised with in-memory fakes:

- ITimeSeriesStore: system of record for observations, VWAP records, candles
- ICacheStore: low-latency read views, never authoritative
- IMetadataStore: symbol mappings, canonical assets, audit and cycle logs
"""

from datetime import datetime
from typing import Any, Protocol

from quote_pipeline.shared.models.enums import TableName
from quote_pipeline.shared.models.market import SymbolMapping


class ITimeSeriesStore(Protocol):
    """Row-oriented time-series store."""

    async def bulk_insert(self, table: TableName, rows: list[dict[str, Any]]) -> int:
        """
        Insert `rows` into `table` in one batched call.

        Returns:
            Number of rows written
        """
        ...

    async def query_range(
        self,
        table: TableName,
        start: datetime,
        end: datetime,
        filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Rows whose time column falls in [start, end), ordered by time.

        Args:
            filters: Column equality filters; a list/tuple value means IN
        """
        ...


class ICacheStore(Protocol):
    """Key/value cache."""

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def hash_set_field(self, key: str, field: str, value: str) -> None: ...

    async def expire(self, key: str, ttl_seconds: int) -> None: ...

    async def incr(self, key: str) -> int:
        """Atomically increment a counter, creating it at 1."""
        ...

    async def count_keys(self, pattern: str) -> int:
        """Count live keys matching a glob pattern."""
        ...


class IMetadataStore(Protocol):
    """Relational metadata: mappings, assets, audit trail, cycle log."""

    async def fetch_mappings(
        self, source_id: str, raw_codes: list[str]
    ) -> list[SymbolMapping]:
        """Active mappings for `raw_codes` of one source, in a single query."""
        ...

    async def touch_assets(self, asset_ids: list[str], seen_at: datetime) -> int:
        """Mark canonical assets as recently quoted."""
        ...

    async def record_mapping_audit(
        self, source_id: str, raw_code: str, occurrences: int, recorded_at: datetime
    ) -> None: ...

    async def record_cycle_run(self, run: dict[str, Any]) -> None: ...

    async def count_low_confidence_mappings(self, threshold: float) -> int: ...

    async def count_stale_mappings(self, verified_before: datetime) -> int: ...
