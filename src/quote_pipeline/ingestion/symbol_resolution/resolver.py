"""
IdentityResolver maps (source_id, raw_code) pairs to canonical assets.

One batched mapping lookup per source per cycle; misses are reported, not
raised.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from quote_pipeline.common.utils import run_with_timeout, utc_now
from quote_pipeline.infrastructure.observability import get_ingestion_logger
from quote_pipeline.shared.errors import ResolutionError
from quote_pipeline.shared.models.market import CanonicalAsset, SymbolMapping
from quote_pipeline.storage.ports import IMetadataStore


@dataclass
class ResolutionResult:
    resolved: dict[str, CanonicalAsset] = field(default_factory=dict)
    unmapped: list[str] = field(default_factory=list)
    low_confidence: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)

    def get(self, raw_code: str) -> CanonicalAsset | None:
        return self.resolved.get(raw_code)


class IdentityResolver:
    """
    Batched symbol resolution against the metadata store.

    Low-confidence and stale mappings are still used; they are counted and
    logged so the mapping-maintenance job can pick them up.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        low_confidence_threshold: float = 0.8,
        stale_after: timedelta = timedelta(days=7),
        timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.metadata_store = metadata_store
        self.low_confidence_threshold = low_confidence_threshold
        self.stale_after = stale_after
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.logger = get_ingestion_logger("identity-resolver")

    async def resolve_batch(self, source_id: str, raw_codes: list[str]) -> ResolutionResult:
        """
        Resolve every code of one source with a single store query.

        Raises:
            ResolutionError: If the mapping lookup fails or times out
        """
        codes = list(dict.fromkeys(raw_codes))
        result = ResolutionResult()
        if not codes:
            return result

        try:
            mappings = await run_with_timeout(
                self.metadata_store.fetch_mappings(source_id, codes),
                self.timeout_seconds,
            )
        except TimeoutError as e:
            raise ResolutionError(
                f"Mapping lookup timed out after {self.timeout_seconds}s",
                source_id=source_id,
            ) from e
        except Exception as e:
            raise ResolutionError(
                f"Mapping lookup failed: {e}", source_id=source_id
            ) from e

        by_code = self._index_active(source_id, mappings)
        now = self._clock()

        for code in codes:
            mapping = by_code.get(code)
            if mapping is None:
                result.unmapped.append(code)
                continue

            result.resolved[code] = mapping.asset
            if mapping.confidence < self.low_confidence_threshold:
                result.low_confidence.append(code)
            if mapping.is_stale(now, self.stale_after):
                result.stale.append(code)

        if result.low_confidence or result.stale:
            self.logger.info(
                "weak_mappings_used",
                source_id=source_id,
                low_confidence=result.low_confidence,
                stale=result.stale,
            )

        self.logger.debug(
            "batch_resolved",
            source_id=source_id,
            requested=len(codes),
            resolved=len(result.resolved),
            unmapped=len(result.unmapped),
        )
        return result

    def _index_active(
        self, source_id: str, mappings: list[SymbolMapping]
    ) -> dict[str, SymbolMapping]:
        by_code: dict[str, SymbolMapping] = {}
        for mapping in mappings:
            if not mapping.is_active or mapping.source_id != source_id:
                continue
            current = by_code.get(mapping.raw_code)
            if current is not None:
                self.logger.warning(
                    "duplicate_active_mapping",
                    source_id=source_id,
                    raw_code=mapping.raw_code,
                    asset_ids=[current.asset.asset_id, mapping.asset.asset_id],
                )
                if current.confidence >= mapping.confidence:
                    continue
            by_code[mapping.raw_code] = mapping
        return by_code
