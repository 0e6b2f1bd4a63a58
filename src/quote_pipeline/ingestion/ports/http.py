"""Transport port used by the REST source adapters."""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class HttpResponse:
    """
    One ticker response.

    `body` holds the decoded JSON (a list of tickers or a keyed object,
    depending on the source) or None when the payload was not JSON; `text`
    keeps the raw payload for error reporting in that case and for non-2xx
    responses.
    """

    status_code: int
    body: Any
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    text: str | None = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class IHttpClient(Protocol):
    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        """
        Raises:
            aiohttp.ClientError: On connection or protocol errors
        """
        ...

    async def close(self) -> None: ...
