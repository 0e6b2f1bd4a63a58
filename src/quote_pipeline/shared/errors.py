"""
Quote pipeline exception hierarchy.

Provides specific exception types for each failure class of an ingestion
cycle, so every stage can decide whether an error is isolated (converted
into a report entry) or propagated to the coordinator.
"""

from typing import Any


class QuotePipelineError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ConfigurationError(QuotePipelineError):
    """Malformed configuration detected at startup. Never handled per cycle."""

    pass


class SourceFetchError(QuotePipelineError):
    """A source adapter failed to return quotes (network, protocol, payload)."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.status_code = status_code


class SourceTimeoutError(SourceFetchError):
    """A source adapter did not answer within the extraction timeout."""

    pass


class ResolutionError(QuotePipelineError):
    """Symbol mapping lookup failed for a source."""

    def __init__(self, message: str, source_id: str | None = None):
        super().__init__(message)
        self.source_id = source_id


class SinkError(QuotePipelineError):
    """Persistence to one sink failed."""

    def __init__(self, message: str, sink: str, critical: bool = False):
        super().__init__(message)
        self.sink = sink
        self.critical = critical


class CriticalSinkError(SinkError):
    """The system-of-record sink failed; the cycle must be marked failed."""

    def __init__(self, message: str, sink: str, report: Any = None):
        super().__init__(message, sink=sink, critical=True)
        self.report = report


class AggregationError(QuotePipelineError):
    """VWAP or candle computation/persistence failed."""

    def __init__(self, message: str, interval: str | None = None):
        super().__init__(message)
        self.interval = interval
