"""Unlocker gateway fetcher.

The gateway is an HTTP service that fetches the target page on our behalf
through residential exits, optionally rendering it. Requests carry a sticky
session id so consecutive fetches reuse the same exit.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Optional

import httpx

from dropwatch.config import settings
from dropwatch.errors import FetchError, TransientNetworkError
from dropwatch.ingest.fetchers.base import BaseFetcher, FetchResult
from dropwatch.ingest.fetchers.static import USER_AGENTS, StaticHTMLFetcher

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {403, 429}
BACKOFF_BASE_MS = 250


def _extract_content(payload: Any) -> Any:
    """Pull the page body out of the gateway's response envelope."""
    if not isinstance(payload, dict):
        return payload
    if payload.get("content") is not None:
        return payload["content"]
    solution = payload.get("solution")
    if isinstance(solution, dict) and solution.get("content") is not None:
        return solution["content"]
    response = payload.get("response")
    if isinstance(response, dict) and response.get("body") is not None:
        return response["body"]
    return payload


class UnlockerGatewayFetcher(BaseFetcher):
    """Fetch pages through the unlocker gateway, falling back to direct GETs."""

    def __init__(
        self,
        direct: Optional[StaticHTMLFetcher] = None,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        country: Optional[str] = None,
        max_retries: Optional[int] = None,
        session_ttl_ms: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.direct = direct or StaticHTMLFetcher()
        self.api_url = api_url if api_url is not None else settings.unlocker_api_url
        self.api_token = api_token if api_token is not None else settings.unlocker_api_token
        self.country = country or settings.proxy_country
        self.max_retries = settings.proxy_max_retries if max_retries is None else max_retries
        self.session_ttl_ms = session_ttl_ms or settings.proxy_session_ttl_ms
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None
        self._session_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)
        return self._client

    def _rotate_session(self) -> str:
        self._session_id = f"dw_{uuid.uuid4().hex[:12]}"
        self._session_expires_at = time.monotonic() + self.session_ttl_ms / 1000
        return self._session_id

    def _current_session(self, use_session: bool) -> Optional[str]:
        if not use_session:
            self._session_id = None
            return None
        if self._session_id is None or self._session_expires_at <= time.monotonic():
            return self._rotate_session()
        return self._session_id

    async def get(
        self,
        url: str,
        timeout_ms: int,
        use_session: bool = True,
        render: bool = False,
    ) -> FetchResult:
        """
        Fetch a URL via the gateway.

        Args:
            url: Page URL
            timeout_ms: Gateway request timeout in milliseconds
            use_session: Keep a sticky gateway session
            render: Ask the gateway to render the page

        Returns:
            FetchResult with the unwrapped page content
        """
        if not self.configured:
            return await self.direct.get(url, timeout_ms, use_session=use_session)

        self._current_session(use_session)
        attempt = 0
        while True:
            status: Optional[int] = None
            try:
                return await self._post(url, timeout_ms, render)
            except FetchError as e:
                status = e.status
                retryable = status in RETRYABLE_STATUS_CODES or isinstance(e, TransientNetworkError)
                if attempt < self.max_retries and retryable:
                    self._rotate_session()
                    backoff = BACKOFF_BASE_MS * (2 ** attempt) / 1000
                    logger.debug(
                        f"Gateway attempt {attempt + 1} failed for {url} ({e}), retrying in {backoff:.2f}s"
                    )
                    await asyncio.sleep(backoff)
                    attempt += 1
                    continue

                if status is None or status in RETRYABLE_STATUS_CODES:
                    try:
                        return await self.direct.get(url, timeout_ms, use_session=use_session)
                    except FetchError as direct_error:
                        logger.debug(f"Direct fallback failed for {url}: {direct_error}")
                raise

    async def _post(self, url: str, timeout_ms: int, render: bool) -> FetchResult:
        payload = {
            "url": url,
            "method": "GET",
            "render": render,
            "country": self.country,
            "session": self._session_id,
            "headers": {
                "User-Agent": USER_AGENTS[0],
                "Accept-Language": "en-US,en;q=0.8",
            },
        }
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._get_client().post(
                self.api_url,
                json=payload,
                headers=headers,
                timeout=timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"gateway timeout for {url}: {e}", code="timeout") from e
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"gateway connect error for {url}: {e}", code="connect_error") from e

        if response.status_code >= 400:
            raise FetchError(
                f"gateway returned {response.status_code} for {url}",
                status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = response.text

        return FetchResult(
            data=_extract_content(body),
            status=response.status_code,
            headers=dict(response.headers),
        )

    async def close(self):
        """Close the gateway client."""
        if self._client:
            await self._client.aclose()
            self._client = None
