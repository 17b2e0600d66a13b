from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BrowserStrategy, RenderSettings, load_settings
from .errors import ConfigurationError, RenderTimeoutError

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
)


class BrowserPool:
    """One shared headless Chromium process for the lifetime of the service.

    The browser is launched on first use and reused afterwards. Every caller
    gets its own browser context through :meth:`page`, so sessions share the
    process but no navigation state. Call :meth:`shutdown` when the service
    stops.
    """

    def __init__(self, settings: RenderSettings | None = None) -> None:
        self.settings = settings or load_settings()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> Browser:
        """Return the shared browser, launching (or relaunching) it if needed."""

        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                logger.warning("Headless browser disconnected; launching a new one.")
                self._browser = None

            strategy = self.settings.browser_strategy
            logger.info("Launching headless browser (strategy: %s)", strategy.value)
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._launch(self._playwright)
            except PlaywrightTimeoutError as exc:
                raise RenderTimeoutError(f"Headless browser did not start in time: {exc}") from exc
            except PlaywrightError as exc:
                raise ConfigurationError(f"Headless browser could not be started: {exc}") from exc

            logger.info("Headless browser ready")
            return self._browser

    async def _launch(self, playwright: Playwright) -> Browser:
        chromium = playwright.chromium
        strategy = self.settings.browser_strategy

        if strategy is BrowserStrategy.CDP:
            endpoint = self.settings.browser_cdp_endpoint
            if not endpoint:
                raise ConfigurationError(
                    "BROWSER_STRATEGY=cdp requires BROWSER_CDP_ENDPOINT to be set."
                )
            return await chromium.connect_over_cdp(endpoint)

        if strategy is BrowserStrategy.EXECUTABLE:
            executable_path = self.settings.browser_executable_path
            if not executable_path:
                raise ConfigurationError(
                    "BROWSER_STRATEGY=executable requires BROWSER_EXECUTABLE_PATH to be set."
                )
            return await chromium.launch(
                executable_path=executable_path, headless=True, args=list(CHROMIUM_ARGS)
            )

        return await chromium.launch(headless=True, args=list(CHROMIUM_ARGS))

    @asynccontextmanager
    async def page(self, width: int, height: int) -> AsyncIterator[Page]:
        """Open an isolated page sized ``width`` x ``height``; always closed on exit."""

        browser = await self.start()
        context = await browser.new_context(
            viewport={"width": width, "height": height},
            device_scale_factor=1,
        )
        try:
            page = await context.new_page()
            try:
                yield page
            finally:
                await page.close()
        finally:
            await context.close()

    async def shutdown(self) -> None:
        async with self._lock:
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None

            if browser is not None:
                try:
                    await browser.close()
                except PlaywrightError as exc:
                    logger.warning("Error while closing headless browser: %s", exc)
            if playwright is not None:
                await playwright.stop()
            if browser is not None:
                logger.info("Headless browser closed")
