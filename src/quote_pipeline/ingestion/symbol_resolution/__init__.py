from quote_pipeline.ingestion.symbol_resolution.quality import (
    MappingQualityMonitor,
    MappingQualityReport,
)
from quote_pipeline.ingestion.symbol_resolution.resolver import (
    IdentityResolver,
    ResolutionResult,
)
from quote_pipeline.ingestion.symbol_resolution.unmapped import (
    UnmappedSymbolTracker,
    unmapped_key,
)

__all__ = [
    "IdentityResolver",
    "MappingQualityMonitor",
    "MappingQualityReport",
    "ResolutionResult",
    "UnmappedSymbolTracker",
    "unmapped_key",
]
