"""
Browser Pool
============

Bounded pool of headless Chromium instances driven by Playwright.

Instances are launched lazily up to ``pool_size`` and loaned out exclusively.
A saturated pool fails fast with PoolExhausted instead of queueing; callers
that want to wait bound their own concurrency upstream.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, List, Optional

from playwright.async_api import Browser, Playwright, async_playwright

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.core.rendering.errors import BrowserLaunchError, PoolExhausted

logger = get_logger(__name__)


@dataclass
class PooledBrowser:
    """Loan record for one pooled browser."""

    browser: Browser
    in_use: bool = False


class BrowserPool:
    """Browser instance pool for efficient resource management."""

    def __init__(self, pool_size: Optional[int] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.pool_size = pool_size or self.settings.browser_pool_size
        self.browsers: List[PooledBrowser] = []
        self.generation = 0
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()
        self.logger: Any = logger.bind(component="browser_pool")

    @property
    def size(self) -> int:
        return len(self.browsers)

    @property
    def in_use_count(self) -> int:
        return sum(1 for pooled in self.browsers if pooled.in_use)

    async def acquire(self) -> Browser:
        """
        Loan out an idle connected browser, launching one if the pool has room.

        Returns:
            Browser marked in use until passed back to ``release``

        Raises:
            PoolExhausted: If every instance is in use and the pool is at its cap
            BrowserLaunchError: If a new instance could not be launched
        """
        async with self._lock:
            for pooled in self.browsers:
                if not pooled.in_use and pooled.browser.is_connected():
                    pooled.in_use = True
                    self.logger.debug("Reusing pooled browser", pool_size=self.size)
                    return pooled.browser

            if len(self.browsers) >= self.pool_size:
                self.logger.warning(
                    "Browser pool exhausted", pool_size=self.pool_size, in_use=self.in_use_count
                )
                raise PoolExhausted(self.pool_size)

            browser = await self._launch()
            self.browsers.append(PooledBrowser(browser=browser, in_use=True))
            browser.on("disconnected", self._on_disconnected)

            self.logger.info("Launched pooled browser", pool_size=self.size, cap=self.pool_size)
            return browser

    async def release(self, browser: Browser) -> None:
        """Return a loaned browser and close any stray pages it still holds."""
        pooled = self._find(browser)
        if pooled is None:
            return

        pooled.in_use = False

        try:
            pages = [page for context in browser.contexts for page in context.pages]
        except Exception as e:
            self.logger.debug("Could not list pages on release", error=str(e))
            return

        for page in pages[1:]:
            try:
                await page.close()
            except Exception as e:
                self.logger.debug("Failed to close stray page", error=str(e))

    async def destroy_all(self) -> None:
        """Close every browser, empty the pool and stop the Playwright driver."""
        async with self._lock:
            pooled_browsers, self.browsers = self.browsers, []

            results = await asyncio.gather(
                *(pooled.browser.close() for pooled in pooled_browsers), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    self.logger.warning("Failed to close browser", error=str(result))

            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    self.logger.warning("Failed to stop Playwright", error=str(e))
                self._playwright = None

            self.generation += 1
            self.logger.info("Browser pool closed", closed=len(pooled_browsers))

    @asynccontextmanager
    async def get_browser(self) -> AsyncGenerator[Browser, None]:
        """Get a browser instance from the pool for the duration of the block."""
        browser = await self.acquire()
        try:
            yield browser
        finally:
            await self.release(browser)

    async def _launch(self) -> Browser:
        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            return await self._playwright.chromium.launch(
                headless=self.settings.playwright_headless,
                args=self.settings.browser_args,
                timeout=self.settings.browser_launch_timeout,
            )
        except Exception as e:
            self.logger.error("Failed to launch browser", error=str(e))
            raise BrowserLaunchError(f"Browser launch failed: {e}") from e

    def _find(self, browser: Browser) -> Optional[PooledBrowser]:
        for pooled in self.browsers:
            if pooled.browser is browser:
                return pooled
        return None

    def _on_disconnected(self, browser: Browser) -> None:
        pooled = self._find(browser)
        if pooled is not None:
            self.browsers.remove(pooled)
            self.logger.warning("Pooled browser disconnected", pool_size=self.size)

    def get_stats(self) -> dict[str, int]:
        return {
            "pool_size": self.size,
            "max_pool_size": self.pool_size,
            "in_use": self.in_use_count,
            "generation": self.generation,
        }
