"""aiohttp implementation of IHttpClient shared by every source adapter."""

import time
from typing import Any

import aiohttp

from quote_pipeline.ingestion.config.value_objects import HttpClientConfig
from quote_pipeline.ingestion.ports.http import HttpResponse


class AiohttpClient:
    """
    One pooled session for all sources, opened on first request.

    Per-host connection limits keep one slow source from starving the others
    of sockets.
    """

    def __init__(self, config: HttpClientConfig | None = None):
        self.config = config or HttpClientConfig()
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=self.config.timeout, connect=self.config.connect_timeout
                ),
                connector=aiohttp.TCPConnector(
                    limit=self.config.max_connections,
                    limit_per_host=self.config.max_connections_per_host,
                ),
                headers={"User-Agent": self.config.user_agent, "Accept": "application/json"},
            )
        return self._session

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        started = time.perf_counter()
        request_timeout = aiohttp.ClientTimeout(total=timeout or self.config.timeout)

        async with self._get_session().get(
            url, params=params, headers=headers, timeout=request_timeout
        ) as resp:
            text = await resp.text()
            body = None
            if resp.ok:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
            return HttpResponse(
                status_code=resp.status,
                body=body,
                url=str(resp.url),
                headers=dict(resp.headers),
                text=None if body is not None else text,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AiohttpClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
