"""Concrete store adapters.

- PostgreSQL/TimescaleDB: time-series and metadata stores (via asyncpg)
- Redis: cache store (via redis.asyncio)
"""

from .postgres import PostgresDatabase, PostgresMetadataStore, TimescaleTimeSeriesStore
from .redis_cache import RedisCacheStore

__all__ = [
    "PostgresDatabase",
    "PostgresMetadataStore",
    "RedisCacheStore",
    "TimescaleTimeSeriesStore",
]
