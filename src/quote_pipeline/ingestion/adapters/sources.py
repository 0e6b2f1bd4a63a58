"""
Field mappings for the bundled REST sources.

Each source is a `SourceVariant`: endpoint, query parameters and a
`parse_tickers(payload, source_id)` function turning the decoded JSON into
QuoteRecords.
"""

import json
from datetime import UTC, datetime
from typing import Any

from quote_pipeline.common.utils.date_utils import utc_now
from quote_pipeline.config.state import SourceConfig
from quote_pipeline.ingestion.adapters.base import RestQuoteAdapter, SourceVariant
from quote_pipeline.ingestion.ports.http import IHttpClient
from quote_pipeline.shared.errors import ConfigurationError
from quote_pipeline.shared.models.enums import SourceKind
from quote_pipeline.shared.models.market import QuoteRecord


def _num(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _from_millis(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


# =============================================================================
# Binance: GET /api/v3/ticker/24hr
# =============================================================================


def binance_params(codes: list[str]) -> dict[str, Any]:
    if len(codes) == 1:
        return {"symbol": codes[0]}
    return {"symbols": json.dumps(codes, separators=(",", ":"))}


def parse_binance_tickers(payload: Any, source_id: str) -> list[QuoteRecord]:
    tickers = payload if isinstance(payload, list) else [payload]
    return [
        QuoteRecord(
            source_id=source_id,
            code=t["symbol"],
            price=_num(t.get("lastPrice")),
            volume=_num(t.get("volume")),
            quote_volume=_num(t.get("quoteVolume")),
            high=_num(t.get("highPrice")),
            low=_num(t.get("lowPrice")),
            open=_num(t.get("openPrice")),
            bid=_num(t.get("bidPrice")),
            ask=_num(t.get("askPrice")),
            change=_num(t.get("priceChange")),
            change_percent=_num(t.get("priceChangePercent")),
            observed_at=_from_millis(t.get("closeTime")),
        )
        for t in tickers
    ]


# =============================================================================
# Upbit: GET /v1/ticker?markets=KRW-BTC,KRW-ETH
# =============================================================================


def upbit_params(codes: list[str]) -> dict[str, Any]:
    return {"markets": ",".join(codes)}


def parse_upbit_tickers(payload: Any, source_id: str) -> list[QuoteRecord]:
    records = []
    for t in payload:
        rate = _num(t.get("signed_change_rate"))
        records.append(
            QuoteRecord(
                source_id=source_id,
                code=t["market"],
                price=_num(t.get("trade_price")),
                volume=_num(t.get("acc_trade_volume_24h")),
                quote_volume=_num(t.get("acc_trade_price_24h")),
                high=_num(t.get("high_price")),
                low=_num(t.get("low_price")),
                open=_num(t.get("opening_price")),
                change=_num(t.get("signed_change_price")),
                change_percent=rate * 100 if rate is not None else None,
                observed_at=_from_millis(t.get("timestamp")),
            )
        )
    return records


# =============================================================================
# Kraken: GET /0/public/Ticker?pair=XXBTZUSD,XETHZUSD
# =============================================================================


def kraken_params(codes: list[str]) -> dict[str, Any]:
    return {"pair": ",".join(codes)}


def parse_kraken_tickers(payload: Any, source_id: str) -> list[QuoteRecord]:
    if payload.get("error"):
        raise ValueError(f"Kraken error: {payload['error']}")

    # Kraken does not timestamp its ticker; use receipt time
    received_at = utc_now()
    records = []
    for pair, t in payload["result"].items():
        price = _num(t["c"][0])
        opened = _num(t.get("o"))
        change = price - opened if price is not None and opened else None
        records.append(
            QuoteRecord(
                source_id=source_id,
                code=pair,
                price=price,
                volume=_num(t["v"][1]),
                high=_num(t["h"][1]),
                low=_num(t["l"][1]),
                open=opened,
                bid=_num(t["b"][0]),
                ask=_num(t["a"][0]),
                change=change,
                change_percent=change / opened * 100 if change is not None else None,
                observed_at=received_at,
            )
        )
    return records


VARIANTS: dict[SourceKind, SourceVariant] = {
    SourceKind.BINANCE: SourceVariant(
        endpoint="/api/v3/ticker/24hr",
        build_params=binance_params,
        parse_tickers=parse_binance_tickers,
    ),
    SourceKind.UPBIT: SourceVariant(
        endpoint="/v1/ticker",
        build_params=upbit_params,
        parse_tickers=parse_upbit_tickers,
    ),
    SourceKind.KRAKEN: SourceVariant(
        endpoint="/0/public/Ticker",
        build_params=kraken_params,
        parse_tickers=parse_kraken_tickers,
    ),
}


def create_adapter(config: SourceConfig, http_client: IHttpClient) -> RestQuoteAdapter:
    """Build the adapter for a configured source."""
    variant = VARIANTS.get(config.kind)
    if variant is None:
        raise ConfigurationError(f"No adapter variant for source kind {config.kind}")
    return RestQuoteAdapter(config, http_client, variant)
