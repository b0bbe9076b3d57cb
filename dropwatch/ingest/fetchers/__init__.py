"""Candidate page fetchers."""

import logging
import time
from typing import Optional

from dropwatch.config import settings
from dropwatch.ingest.fetchers.base import BaseFetcher, FetchResult
from dropwatch.ingest.fetchers.headless import HeadlessBrowserFetcher
from dropwatch.ingest.fetchers.static import StaticHTMLFetcher
from dropwatch.ingest.fetchers.unlocker import UnlockerGatewayFetcher
from dropwatch.metrics import record_fetch_duration

logger = logging.getLogger(__name__)

PROVIDERS = {"direct", "proxy"}


class HttpFetcher:
    """
    Fetcher facade used by the candidate checker.

    `direct` issues plain GETs and renders locally with Playwright;
    `proxy` sends both through the unlocker gateway.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        static: Optional[StaticHTMLFetcher] = None,
        headless: Optional[HeadlessBrowserFetcher] = None,
        unlocker: Optional[UnlockerGatewayFetcher] = None,
    ):
        provider = (provider or settings.http_fetch_provider or "direct").lower()
        if provider not in PROVIDERS:
            logger.warning(f"Unknown fetch provider '{provider}', using direct")
            provider = "direct"
        self.provider = provider
        self.static = static or StaticHTMLFetcher()
        self.headless = headless or HeadlessBrowserFetcher()
        self.unlocker = unlocker or UnlockerGatewayFetcher(direct=self.static)

    async def get(
        self,
        url: str,
        timeout_ms: int,
        render: bool = False,
        use_session: bool = True,
    ) -> FetchResult:
        """
        Fetch a URL with the configured provider.

        Args:
            url: Page URL
            timeout_ms: Timeout in milliseconds
            render: Render JavaScript before returning the DOM
            use_session: Reuse a sticky session

        Returns:
            FetchResult; HTTP error statuses are returned, transport errors raise
        """
        started = time.monotonic()
        try:
            if self.provider == "proxy":
                return await self.unlocker.get(url, timeout_ms, use_session=use_session, render=render)
            if render:
                return await self.headless.get(url, timeout_ms, use_session=use_session)
            return await self.static.get(url, timeout_ms, use_session=use_session)
        finally:
            record_fetch_duration(render, time.monotonic() - started)

    async def close(self):
        """Close all underlying fetchers."""
        for fetcher in (self.unlocker, self.headless, self.static):
            try:
                await fetcher.close()
            except Exception as e:
                logger.error(f"Error closing {type(fetcher).__name__}: {e}")


__all__ = [
    "BaseFetcher",
    "FetchResult",
    "HeadlessBrowserFetcher",
    "HttpFetcher",
    "StaticHTMLFetcher",
    "UnlockerGatewayFetcher",
]
