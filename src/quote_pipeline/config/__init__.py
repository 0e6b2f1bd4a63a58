from quote_pipeline.config.state import (
    AggregationConfig,
    ConfigLoader,
    ConfigState,
    SourceConfig,
    get_config,
)

__all__ = [
    "AggregationConfig",
    "ConfigLoader",
    "ConfigState",
    "SourceConfig",
    "get_config",
]
