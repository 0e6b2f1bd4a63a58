"""
Storage layer: store ports, table schemas and the fan-out Loader.

Concrete adapters live in `quote_pipeline.storage.adapters` so the ports and
the Loader import without a database driver configured.
"""

from quote_pipeline.storage.loader import LoadReport, Loader, SinkResult
from quote_pipeline.storage.ports import ICacheStore, IMetadataStore, ITimeSeriesStore

__all__ = [
    "ICacheStore",
    "IMetadataStore",
    "ITimeSeriesStore",
    "LoadReport",
    "Loader",
    "SinkResult",
]
