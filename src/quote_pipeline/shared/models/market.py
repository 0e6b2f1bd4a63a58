# quote_pipeline/shared/models/market.py

from datetime import datetime, timedelta
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from quote_pipeline.shared.models.enums import CandleSource


class Source(BaseModel):
    """
    Identity of a market-data origin.

    Immutable after registration; owned by the SourceRegistry built at startup.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., min_length=1, description="Unique source identifier")
    display_name: str = Field(..., description="Human-readable name")
    rate_limit_per_second: float = Field(
        default=10.0, gt=0, description="Base request rate limit"
    )


class QuoteRecord(BaseModel):
    """
    Raw quote as returned by a source adapter.

    Every numeric field is optional: sources omit fields and the transformer's
    quality score accounts for what is missing.
    """

    source_id: str
    code: str = Field(..., min_length=1, description="Instrument code as known to the source")

    price: float | None = None
    volume: float | None = None
    high: float | None = None
    low: float | None = None
    open: float | None = None
    bid: float | None = None
    ask: float | None = None

    change: float | None = None
    change_percent: float | None = None
    quote_volume: float | None = None

    observed_at: datetime | None = Field(
        default=None, description="Observation time reported by the source (UTC)"
    )


class CanonicalAsset(BaseModel):
    """
    Resolved, deduplicated identity of a tradable asset.

    Maintained by an external identity job; read-only to the pipeline.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1, description="Canonical symbol (e.g., BTC)")
    name: str | None = None
    external_ids: dict[str, str] = Field(
        default_factory=dict, description="e.g. {'coingecko': 'bitcoin'}"
    )

    @field_validator("external_ids", mode="before")
    @classmethod
    def set_external_ids(cls, v):
        """Initialize external ids as empty dict if None"""
        return v or {}


class SymbolMapping(BaseModel):
    """(source_id, raw_code) -> CanonicalAsset association."""

    source_id: str
    raw_code: str
    asset: CanonicalAsset
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    last_verified: datetime | None = None
    is_active: bool = True

    def is_stale(self, now: datetime, max_age: timedelta) -> bool:
        """A mapping never verified, or verified longer ago than max_age, is stale."""
        if self.last_verified is None:
            return True
        return now - self.last_verified > max_age


class PriceObservation(BaseModel):
    """
    Canonical, resolved unit of work produced once per resolved QuoteRecord.

    Immutable; written to every sink by the loader.
    """

    model_config = ConfigDict(frozen=True)

    # ========== IDENTITY ==========
    source_id: str
    asset_id: str
    symbol: str = Field(..., description="Canonical symbol of the asset")
    raw_code: str = Field(..., description="Instrument code as known to the source")
    observed_at: datetime

    # ========== PRICES ==========
    price: float
    volume: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    spread: float = Field(default=0.0, description="(ask - bid) / ask * 100")
    change: float = 0.0
    change_percent: float = 0.0

    # ========== METADATA ==========
    quality_score: float = Field(..., ge=0.0, le=1.0)
    is_active: bool = True

    def to_row(self) -> dict[str, Any]:
        """Row shape of the price_observations table."""
        return {
            "observed_at": self.observed_at,
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "source_id": self.source_id,
            "raw_code": self.raw_code,
            "price": self.price,
            "volume": self.volume,
            "bid": self.bid,
            "ask": self.ask,
            "spread": self.spread,
            "quality_score": self.quality_score,
            "is_active": self.is_active,
        }


class VWAPRecord(BaseModel):
    """Volume-weighted average price of one asset over one window."""

    asset_id: str
    symbol: str
    window_start: datetime
    window: str = Field(..., description="Window width label (e.g., 5s, 5m)")
    vwap_price: float = Field(..., gt=0)
    total_volume: float = Field(..., gt=0)
    total_value: float = Field(..., description="Sum of price * volume")
    source_count: int = Field(..., ge=1)
    sources: list[str] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_source_count(self):
        """source_count always mirrors the distinct contributing sources"""
        if self.source_count != len(self.sources):
            raise ValueError(
                f"source_count={self.source_count} but {len(self.sources)} sources listed"
            )
        return self

    def to_row(self) -> dict[str, Any]:
        return {
            "window_start": self.window_start,
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "window": self.window,
            "vwap_price": self.vwap_price,
            "total_volume": self.total_volume,
            "total_value": self.total_value,
            "source_count": self.source_count,
            "sources": list(self.sources),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "VWAPRecord":
        return cls(
            asset_id=row["asset_id"],
            symbol=row["symbol"],
            window_start=row["window_start"],
            window=row["window"],
            vwap_price=row["vwap_price"],
            total_volume=row["total_volume"],
            total_value=row["total_value"],
            source_count=row["source_count"],
            sources=list(row["sources"]),
        )


class OHLCVCandle(BaseModel):
    """
    Open/high/low/close/volume summary for one fixed bucket.

    Append-only. `provenance` tells raw-quote candles (one per source) apart
    from the cross-source VWAP candles.
    """

    asset_id: str
    symbol: str
    interval: str
    bucket_start: datetime

    open: float
    high: float
    low: float
    close: float
    volume: float = Field(..., ge=0)
    point_count: int = Field(..., ge=1)

    provenance: CandleSource
    source_id: str | None = Field(
        default=None, description="Set for raw candles only"
    )

    @model_validator(mode="after")
    def check_price_envelope(self):
        """high/low must bound open and close"""
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) < low ({self.low})")
        for name, value in (("open", self.open), ("close", self.close)):
            if not self.low <= value <= self.high:
                raise ValueError(f"{name} ({value}) outside [{self.low}, {self.high}]")
        return self

    def to_row(self) -> dict[str, Any]:
        return {
            "bucket_start": self.bucket_start,
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "interval": self.interval,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "point_count": self.point_count,
            "provenance": self.provenance.value,
            "source_id": self.source_id,
        }
