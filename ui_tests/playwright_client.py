"""
In-process Playwright for the field-service browser tests.

One browser and one page per test, configured from ``UiTestConfig``.

Usage:
    async with PlaywrightClient(settings) as client:
        await client.page.goto(settings.url("/customers"))
"""

from typing import Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from ui_tests.config import UiTestConfig


class PlaywrightClient:
    """Launches the configured browser and opens a single page in a fresh context."""

    def __init__(self, config: UiTestConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    async def __aenter__(self):
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.config.browser_type)
        self._browser = await launcher.launch(headless=self.config.headless)
        # The page's context goes away with the browser
        context = await self._browser.new_context(viewport=self.config.viewport)
        context.set_default_timeout(self.config.timeout_ms)
        self._page = await context.new_page()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._browser:
            await self._browser.close()
            self._browser = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @property
    def page(self) -> Page:
        if not self._page:
            raise RuntimeError("PlaywrightClient not started; use 'async with'")
        return self._page
