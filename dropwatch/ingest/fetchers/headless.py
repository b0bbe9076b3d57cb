"""Headless browser fetcher for JavaScript-rendered candidate pages."""

import asyncio
import logging
import random
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from dropwatch.errors import FetchError, TransientNetworkError
from dropwatch.ingest.fetchers.base import BaseFetcher, FetchResult
from dropwatch.ingest.fetchers.static import USER_AGENTS

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-extensions",
]


class HeadlessBrowserFetcher(BaseFetcher):
    """Renders pages in Chromium and returns the post-render DOM."""

    def __init__(self):
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._session_context: Optional[BrowserContext] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        """Ensure Playwright and the browser are started."""
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=BROWSER_ARGS,
                )
            return self._browser

    async def _new_context(self) -> BrowserContext:
        browser = await self._ensure_browser()
        return await browser.new_context(
            user_agent=random.choice(USER_AGENTS),
            viewport={"width": 1366, "height": 768},
            locale="en-US",
        )

    async def _get_session_context(self) -> BrowserContext:
        if self._session_context is None:
            self._session_context = await self._new_context()
        return self._session_context

    async def get(
        self,
        url: str,
        timeout_ms: int,
        use_session: bool = True,
    ) -> FetchResult:
        context = None
        page = None
        try:
            context = await self._get_session_context() if use_session else await self._new_context()
            page = await context.new_page()
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            html = await page.content()
            status = response.status if response else 200
            headers = await response.all_headers() if response else {}
            return FetchResult(data=html, status=status, headers=headers)
        except PlaywrightTimeoutError as e:
            raise TransientNetworkError(f"render timeout for {url}: {e}", code="timeout") from e
        except PlaywrightError as e:
            raise FetchError(f"render failed for {url}: {e}", code="render_error") from e
        finally:
            if page is not None:
                await page.close()
            if context is not None and not use_session:
                await context.close()

    async def close(self):
        """Close browser and cleanup."""
        if self._session_context:
            try:
                await self._session_context.close()
            except Exception as e:
                logger.error(f"Error closing browser context: {e}")
            self._session_context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
