"""
Structured logging for quote-pipeline.

Every event is a flat record that can be filtered by layer, component and
cycle:

    {
        "app": "quote-pipeline",
        "layer": "ingestion",
        "component": "extractor",
        "cycle_id": 42,              # bound for the duration of a cycle
        "source_id": "binance",
        "event": "source_failed",
        "severity": "WARNING",
        ...
    }

Layers:
    - ingestion: source adapters, extraction, identity resolution
    - processing: quality scoring and normalization
    - storage: sink writes
    - aggregation: VWAP and candles
    - pipeline: coordinator and triggers
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor

APP_NAME = "quote-pipeline"

Layer = Literal["ingestion", "processing", "storage", "aggregation", "pipeline"]

_SEVERITY = {
    "debug": "DEBUG",
    "info": "INFO",
    "warning": "WARNING",
    "error": "ERROR",
    "critical": "CRITICAL",
}


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Upper-case severity next to structlog's `level`, for log shippers."""
    level = event_dict.get("level")
    if level:
        event_dict["severity"] = _SEVERITY.get(level, "INFO")
    return event_dict


def _processors(json_logs: bool, include_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_log_level,
        add_severity_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True, exception_formatter=structlog.dev.plain_traceback
            )
        )
    return processors


def setup_logging(
    level: str = "INFO",
    json_logs: bool = True,
    include_timestamp: bool = True,
) -> None:
    """
    Configure stdlib logging and structlog for the whole process.

    Args:
        level: Root level name; unknown names fall back to INFO
        json_logs: JSON lines (prod) or colored console output (dev)
        include_timestamp: Add an ISO-8601 UTC `timestamp` field
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    structlog.configure(
        processors=_processors(json_logs, include_timestamp),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def cycle_context(cycle_id: int) -> Iterator[None]:
    """
    Bind `cycle_id` to every event logged in this task and the tasks it spawns.

    Child tasks created by asyncio.gather copy the context at creation, so
    per-source and per-sink events of one cycle share its id.
    """
    with structlog.contextvars.bound_contextvars(cycle_id=cycle_id):
        yield


def get_logger(
    name: str | None = None,
    layer: Layer | None = None,
    component: str | None = None,
    **initial_context: Any,
) -> structlog.stdlib.BoundLogger:
    """Logger bound to its layer, component and any extra context."""
    context: dict[str, Any] = {}
    if layer:
        context["layer"] = layer
    if component:
        context["component"] = component
    context.update(initial_context)

    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger


# ============================================================================
# Layer loggers
# ============================================================================


def get_ingestion_logger(
    component: str,
    source_id: str | None = None,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """
    Logger for adapters, extraction and identity resolution.

    Usage:
        >>> log = get_ingestion_logger("rest-adapter", source_id="binance")
        >>> log.debug("quotes_fetched", requested=4, received=4)
    """
    if source_id:
        context["source_id"] = source_id
    return get_logger("ingestion", layer="ingestion", component=component, **context)


def get_processing_logger(component: str, **context: Any) -> structlog.stdlib.BoundLogger:
    return get_logger("processing", layer="processing", component=component, **context)


def get_storage_logger(component: str, **context: Any) -> structlog.stdlib.BoundLogger:
    return get_logger("storage", layer="storage", component=component, **context)


def get_aggregation_logger(component: str, **context: Any) -> structlog.stdlib.BoundLogger:
    return get_logger("aggregation", layer="aggregation", component=component, **context)


def get_pipeline_logger(
    component: str = "coordinator",
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """Logger for the coordinator (default component) and the triggers."""
    return get_logger("pipeline", layer="pipeline", component=component, **context)
