"""
Shared fixtures: in-memory fakes of the three stores and a scriptable source.
"""

import asyncio
import fnmatch
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from quote_pipeline.ingestion.registry import SourceRegistry
from quote_pipeline.shared.errors import SourceFetchError
from quote_pipeline.shared.models.enums import TableName
from quote_pipeline.shared.models.market import (
    CanonicalAsset,
    QuoteRecord,
    SymbolMapping,
)
from quote_pipeline.storage.schemas.tables import get_table

FIXED_NOW = datetime(2024, 1, 1, 10, 0, 7, tzinfo=UTC)


# ============================================================================
# Store fakes
# ============================================================================


class FakeTimeSeriesStore:
    def __init__(self):
        self.tables: dict[TableName, list[dict[str, Any]]] = {t: [] for t in TableName}
        self.insert_calls: list[tuple[TableName, int]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0

    async def bulk_insert(self, table, rows):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        table = TableName(table)
        self.insert_calls.append((table, len(rows)))
        self.tables[table].extend(dict(r) for r in rows)
        return len(rows)

    async def query_range(self, table, start, end, filters=None):
        spec = get_table(table)
        rows = []
        for row in self.tables[TableName(table)]:
            ts = row[spec.time_column]
            if not start <= ts < end:
                continue
            if not self._matches(row, filters or {}):
                continue
            rows.append(dict(row))
        return sorted(rows, key=lambda r: r[spec.time_column])

    @staticmethod
    def _matches(row, filters):
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True


class FakeCache:
    def __init__(self):
        self.values: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}
        self.counters: dict[str, int] = {}
        self.fail_with: Exception | None = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def set_with_ttl(self, key, value, ttl_seconds):
        self._check()
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    async def hash_set_field(self, key, field, value):
        self._check()
        self.hashes.setdefault(key, {})[field] = value

    async def expire(self, key, ttl_seconds):
        self._check()
        self.ttls[key] = ttl_seconds

    async def incr(self, key):
        self._check()
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def count_keys(self, pattern):
        self._check()
        keys = set(self.values) | set(self.hashes) | set(self.counters)
        return sum(1 for k in keys if fnmatch.fnmatchcase(k, pattern))


class FakeMetadataStore:
    def __init__(self, mappings: list[SymbolMapping] | None = None):
        self.mappings = list(mappings or [])
        self.fetch_calls: list[tuple[str, list[str]]] = []
        self.touched: list[list[str]] = []
        self.audits: list[tuple[str, str, int]] = []
        self.cycle_runs: list[dict[str, Any]] = []
        self.fail_fetch_for: set[str] = set()
        self.fail_touch: Exception | None = None

    async def fetch_mappings(self, source_id, raw_codes):
        self.fetch_calls.append((source_id, list(raw_codes)))
        if source_id in self.fail_fetch_for:
            raise ConnectionError(f"mapping lookup failed for {source_id}")
        return [
            m
            for m in self.mappings
            if m.source_id == source_id and m.raw_code in raw_codes and m.is_active
        ]

    async def touch_assets(self, asset_ids, seen_at):
        if self.fail_touch is not None:
            raise self.fail_touch
        self.touched.append(list(asset_ids))
        return len(asset_ids)

    async def record_mapping_audit(self, source_id, raw_code, occurrences, recorded_at):
        self.audits.append((source_id, raw_code, occurrences))

    async def record_cycle_run(self, run):
        self.cycle_runs.append(run)

    async def count_low_confidence_mappings(self, threshold):
        return sum(1 for m in self.mappings if m.is_active and m.confidence < threshold)

    async def count_stale_mappings(self, verified_before):
        return sum(
            1
            for m in self.mappings
            if m.is_active and (m.last_verified is None or m.last_verified < verified_before)
        )


# ============================================================================
# Source fake
# ============================================================================


class FakeSource:
    """SourceAdapter returning scripted records, raising, or hanging."""

    def __init__(
        self,
        source_id: str,
        records: list[QuoteRecord] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        rate_limit_hint: float = 10.0,
    ):
        self._source_id = source_id
        self.records = list(records or [])
        self.error = error
        self.delay = delay
        self._rate_limit_hint = rate_limit_hint
        self.calls: list[list[str]] = []

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def rate_limit_hint(self) -> float:
        return self._rate_limit_hint

    async def fetch_quotes(self, codes):
        self.calls.append(list(codes))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)


# ============================================================================
# Builders
# ============================================================================


def make_asset(asset_id: str, symbol: str | None = None) -> CanonicalAsset:
    return CanonicalAsset(asset_id=asset_id, symbol=symbol or asset_id.upper())


def make_mapping(
    source_id: str,
    raw_code: str,
    asset_id: str,
    symbol: str | None = None,
    confidence: float = 1.0,
    last_verified: datetime | None = FIXED_NOW - timedelta(days=1),
) -> SymbolMapping:
    return SymbolMapping(
        source_id=source_id,
        raw_code=raw_code,
        asset=make_asset(asset_id, symbol),
        confidence=confidence,
        last_verified=last_verified,
    )


def make_quote(
    source_id: str,
    code: str,
    price: float | None = 100.0,
    volume: float | None = 1.0,
    observed_at: datetime | None = FIXED_NOW,
    **fields,
) -> QuoteRecord:
    return QuoteRecord(
        source_id=source_id,
        code=code,
        price=price,
        volume=volume,
        observed_at=observed_at,
        **fields,
    )


def make_registry(*sources: FakeSource) -> SourceRegistry:
    return SourceRegistry(
        {s.source_id: s for s in sources},
        requested_codes={s.source_id: [r.code for r in s.records] for s in sources},
    )


def fetch_error(source_id: str) -> SourceFetchError:
    return SourceFetchError(f"{source_id}: HTTP 503", source_id=source_id, status_code=503)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def time_series():
    return FakeTimeSeriesStore()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def metadata_store():
    return FakeMetadataStore()
