"""Static HTML fetcher using httpx."""

import logging
import random
from typing import Optional

import httpx

from dropwatch.errors import FetchError, TransientNetworkError
from dropwatch.ingest.fetchers.base import BaseFetcher, FetchResult

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]


def default_headers() -> dict[str, str]:
    """Get default browser-like headers."""
    return {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def translate_transport_error(url: str, exc: httpx.HTTPError) -> FetchError:
    """Map httpx transport errors onto the fetch error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return TransientNetworkError(f"timeout fetching {url}: {exc}", code="timeout")
    if isinstance(exc, httpx.ConnectError):
        # DNS failures surface as ConnectError
        return TransientNetworkError(f"connect error for {url}: {exc}", code="connect_error")
    if isinstance(exc, (httpx.ReadError, httpx.RemoteProtocolError, httpx.WriteError)):
        return TransientNetworkError(f"connection reset for {url}: {exc}", code="connection_reset")
    return FetchError(f"{type(exc).__name__} fetching {url}: {exc}", code=type(exc).__name__)


class StaticHTMLFetcher(BaseFetcher):
    """Plain HTTP GET with an optional shared (sticky) client."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Optional httpx transport (used for testing)
        """
        self._transport = transport
        self._session_client: Optional[httpx.AsyncClient] = None

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            headers=default_headers(),
            transport=self._transport,
        )

    def _get_session_client(self) -> httpx.AsyncClient:
        if self._session_client is None:
            self._session_client = self._new_client()
        return self._session_client

    async def get(
        self,
        url: str,
        timeout_ms: int,
        use_session: bool = True,
    ) -> FetchResult:
        timeout = httpx.Timeout(timeout_ms / 1000)
        try:
            if use_session:
                response = await self._get_session_client().get(url, timeout=timeout)
            else:
                async with self._new_client() as client:
                    response = await client.get(url, timeout=timeout)
        except httpx.HTTPError as e:
            raise translate_transport_error(url, e) from e

        return FetchResult(
            data=response.text,
            status=response.status_code,
            headers=dict(response.headers),
        )

    async def close(self):
        """Close HTTP clients."""
        if self._session_client:
            await self._session_client.aclose()
            self._session_client = None
