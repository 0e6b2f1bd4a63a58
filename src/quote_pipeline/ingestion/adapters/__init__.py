from quote_pipeline.ingestion.adapters.base import (
    RestQuoteAdapter,
    SourceAdapter,
    SourceVariant,
    source_limiter,
)
from quote_pipeline.ingestion.adapters.sources import VARIANTS, create_adapter

__all__ = [
    "VARIANTS",
    "RestQuoteAdapter",
    "SourceAdapter",
    "SourceVariant",
    "create_adapter",
    "source_limiter",
]
