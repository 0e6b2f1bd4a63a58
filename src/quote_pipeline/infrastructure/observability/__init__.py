"""
Observability for the quote pipeline: structured, layer-tagged logging used by
every stage to report cycle outcomes, warning signals and sink failures.
"""

from .logging import (
    cycle_context,
    get_aggregation_logger,
    get_ingestion_logger,
    get_logger,
    get_pipeline_logger,
    get_processing_logger,
    get_storage_logger,
    setup_logging,
)

__all__ = [
    "cycle_context",
    "get_aggregation_logger",
    "get_ingestion_logger",
    "get_logger",
    "get_pipeline_logger",
    "get_processing_logger",
    "get_storage_logger",
    "setup_logging",
]
