"""
Ingestion layer: source adapters, parallel extraction and identity resolution.
"""

from quote_pipeline.ingestion.extractor import (
    ExtractionReport,
    Extractor,
    SourceOutcome,
)
from quote_pipeline.ingestion.registry import SourceHealth, SourceRegistry

__all__ = [
    "ExtractionReport",
    "Extractor",
    "SourceHealth",
    "SourceOutcome",
    "SourceRegistry",
]
