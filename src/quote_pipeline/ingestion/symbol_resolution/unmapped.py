"""
Tracking of instrument codes that have no active mapping.

Counters live in the cache under `unmapped:{source_id}:{raw_code}` with a
bounded TTL. The first miss in a TTL window is logged as new; every Nth miss
writes a durable audit entry for manual curation.
"""

from collections.abc import Callable
from datetime import datetime

from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.infrastructure.observability import get_ingestion_logger
from quote_pipeline.storage.ports import ICacheStore, IMetadataStore

UNMAPPED_KEY_PREFIX = "unmapped"


def unmapped_key(source_id: str, raw_code: str) -> str:
    return f"{UNMAPPED_KEY_PREFIX}:{source_id}:{raw_code}"


class UnmappedSymbolTracker:
    def __init__(
        self,
        cache: ICacheStore,
        metadata_store: IMetadataStore,
        ttl_seconds: int = 3600,
        audit_every: int = 100,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.metadata_store = metadata_store
        self.ttl_seconds = ttl_seconds
        self.audit_every = audit_every
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.logger = get_ingestion_logger("unmapped-tracker")

    async def record(self, source_id: str, raw_code: str) -> int | None:
        """
        Count one miss for (source_id, raw_code).

        Returns:
            The counter value, or None if the cache could not be updated.
            Tracking failures, timeouts included, never propagate.
        """
        key = unmapped_key(source_id, raw_code)
        try:
            count = await run_with_timeout(self.cache.incr(key), self.timeout_seconds)
            if count == 1:
                await run_with_timeout(
                    self.cache.expire(key, self.ttl_seconds), self.timeout_seconds
                )
                self.logger.warning(
                    "new_unmapped_symbol", source_id=source_id, raw_code=raw_code
                )
            if count % self.audit_every == 0:
                await run_with_timeout(
                    self.metadata_store.record_mapping_audit(
                        source_id, raw_code, count, self._clock()
                    ),
                    self.timeout_seconds,
                )
                self.logger.info(
                    "unmapped_symbol_audited",
                    source_id=source_id,
                    raw_code=raw_code,
                    occurrences=count,
                )
            return count
        except Exception as e:
            self.logger.error(
                "unmapped_tracking_failed",
                source_id=source_id,
                raw_code=raw_code,
                error=str(e) or type(e).__name__,
            )
            return None
