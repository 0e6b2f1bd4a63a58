"""
Source adapter capability and the shared REST request helper.

Every market-data source is a variant of one capability:
`{source_id, rate_limit_hint, fetch_quotes}`. Concrete variants differ only in
their endpoint, request parameters and field mapping, which are supplied to
`RestQuoteAdapter` as a `SourceVariant`.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp
from aiolimiter import AsyncLimiter

from quote_pipeline.config.state import SourceConfig
from quote_pipeline.infrastructure.observability import get_ingestion_logger
from quote_pipeline.ingestion.ports.http import IHttpClient
from quote_pipeline.shared.errors import SourceFetchError, SourceTimeoutError
from quote_pipeline.shared.models.market import QuoteRecord


@runtime_checkable
class SourceAdapter(Protocol):
    """Capability consumed by the Extractor."""

    @property
    def source_id(self) -> str: ...

    @property
    def rate_limit_hint(self) -> float: ...

    async def fetch_quotes(self, codes: list[str]) -> list[QuoteRecord]:
        """
        Fetch current quotes for `codes`.

        Raises:
            SourceFetchError: On network, protocol or payload errors
        """
        ...


def source_limiter(config: SourceConfig) -> AsyncLimiter:
    """
    Token bucket holding `burst` requests that refills at
    `rate_limit_per_second`.
    """
    return AsyncLimiter(
        max_rate=config.burst,
        time_period=config.burst / config.rate_limit_per_second,
    )


@dataclass(frozen=True)
class SourceVariant:
    """Per-source wire details: where to ask and how to read the answer."""

    endpoint: str
    build_params: Callable[[list[str]], dict[str, Any]]
    parse_tickers: Callable[[Any, str], list[QuoteRecord]]


class RestQuoteAdapter:
    """
    Shared request helper for REST ticker endpoints.

    Acquires a rate-limit token, issues one GET, and maps the payload through
    the variant's `parse_tickers`. Any transport or mapping problem surfaces
    as `SourceFetchError`.
    """

    def __init__(
        self,
        config: SourceConfig,
        http_client: IHttpClient,
        variant: SourceVariant,
        rate_limiter: AsyncLimiter | None = None,
    ):
        self.config = config
        self.http_client = http_client
        self.variant = variant
        self.rate_limiter = rate_limiter or source_limiter(config)
        self.logger = get_ingestion_logger("rest-adapter", source_id=config.source_id)

    @property
    def source_id(self) -> str:
        return self.config.source_id

    @property
    def rate_limit_hint(self) -> float:
        return self.config.rate_limit_per_second

    @property
    def url(self) -> str:
        return f"{self.config.base_url}{self.variant.endpoint}"

    async def fetch_quotes(self, codes: list[str]) -> list[QuoteRecord]:
        codes = list(codes or self.config.requested_codes)
        if not codes:
            return []

        await self.rate_limiter.acquire()

        try:
            response = await self.http_client.get(
                self.url,
                params=self.variant.build_params(codes),
                timeout=self.config.request_timeout_seconds,
            )
        except (aiohttp.ServerTimeoutError, TimeoutError) as e:
            raise SourceTimeoutError(
                f"{self.source_id}: request timed out", source_id=self.source_id
            ) from e
        except aiohttp.ClientError as e:
            raise SourceFetchError(
                f"{self.source_id}: request failed: {e}", source_id=self.source_id
            ) from e

        if not response.ok:
            raise SourceFetchError(
                f"{self.source_id}: HTTP {response.status_code}",
                source_id=self.source_id,
                status_code=response.status_code,
            )

        if response.body is None:
            raise SourceFetchError(
                f"{self.source_id}: non-JSON response: {(response.text or '')[:200]}",
                source_id=self.source_id,
                status_code=response.status_code,
            )

        try:
            records = self.variant.parse_tickers(response.body, self.source_id)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise SourceFetchError(
                f"{self.source_id}: malformed payload: {e}", source_id=self.source_id
            ) from e

        self.logger.debug(
            "quotes_fetched",
            requested=len(codes),
            received=len(records),
            elapsed_ms=response.elapsed_ms,
        )
        return records
