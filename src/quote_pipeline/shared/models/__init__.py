"""Shared domain models."""

from quote_pipeline.shared.models.enums import (
    CandleSource,
    SinkName,
    SourceKind,
    TableName,
)
from quote_pipeline.shared.models.market import (
    CanonicalAsset,
    OHLCVCandle,
    PriceObservation,
    QuoteRecord,
    Source,
    SymbolMapping,
    VWAPRecord,
)

__all__ = [
    # Enums
    "CandleSource",
    "SinkName",
    "SourceKind",
    "TableName",
    # Models
    "CanonicalAsset",
    "OHLCVCandle",
    "PriceObservation",
    "QuoteRecord",
    "Source",
    "SymbolMapping",
    "VWAPRecord",
]
