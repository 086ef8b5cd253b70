"""
Playwright rendering backend.

One shared Chromium instance per factory; each session is a fresh browser
context (the identity's isolated scope) holding a single page.
"""

import logging
from typing import Any, Hashable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .scope import ScopeProvider
from ai_usage_scout.core.session import RenderSession, SessionFactory

lib_logger = logging.getLogger("ai_usage_scout")

NAVIGATION_TIMEOUT_MS = 30_000


class PlaywrightSession(RenderSession):
    """A page inside its own browser context."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page
        self._closed = False

    @property
    def location(self) -> Optional[str]:
        url = self.page.url
        return None if not url or url == "about:blank" else url

    async def navigate(self, url: str, wait_for_load: bool = True) -> None:
        wait_until = "load" if wait_for_load else "commit"
        await self.page.goto(url, wait_until=wait_until, timeout=NAVIGATION_TIMEOUT_MS)

    async def evaluate(self, script: str) -> Any:
        return await self.page.evaluate(script)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.context.close()


class PlaywrightSessionFactory(SessionFactory):
    """Builds Playwright sessions, launching Chromium on first use."""

    def __init__(
        self,
        scopes: ScopeProvider,
        headless: bool = True,
        viewport_width: int = 1200,
        viewport_height: int = 1600
    ):
        self.scopes = scopes
        self.headless = headless
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def create(self, identity_key: Hashable) -> RenderSession:
        browser = await self._ensure_browser()
        context = await browser.new_context(
            viewport=self.viewport,
            **self.scopes.isolated_scope(identity_key)
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightSession(context, page)

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _ensure_browser(self) -> Browser:
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        lib_logger.debug(f"Launching Chromium (headless={self.headless})")
        # Background tabs get throttled timers, which stalls client hydration
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--disable-background-timer-throttling",
                "--disable-renderer-backgrounding",
                "--disable-backgrounding-occluded-windows",
            ],
        )
        return self._browser
