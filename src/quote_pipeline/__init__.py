"""
Multi-source quote ingestion pipeline.
Extract -> resolve -> normalize -> load -> aggregate.

Modules:
- ingestion: Source adapters, extraction, identity resolution
- transformation: Quality scoring and canonical observations
- storage: Store ports, adapters and the fan-out loader
- aggregation: VWAP and OHLCV candles
- orchestration: Cycle coordinator and periodic triggers
- shared: Common models, enums, errors
- infrastructure: Logging
"""

__version__ = "0.1.0"
