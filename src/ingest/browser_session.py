"""Playwright-backed browser session used by every crawl component.

Attaches over the Chrome DevTools Protocol to an already logged-in Chrome
(``chrome --remote-debugging-port=9222``) or launches a persistent profile.
Tabs are addressed by opaque string handles.
"""

import asyncio
import logging
from itertools import count
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from src.config import settings

logger = logging.getLogger(__name__)


STEALTH_SCRIPTS = [
    # Hide webdriver property
    """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => false
    });
    """,
    # Mock plugins
    """
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });
    """,
    # Mock languages
    """
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
    """,
    # Chrome runtime
    """
    window.chrome = window.chrome || { runtime: {} };
    """,
]

# Collects href and visible text for every element matching a selector.
# Container elements without an href report their first nested link.
_ELEMENTS_SCRIPT = """
els => els.map(e => {
    let href = e.href || null;
    if (!href) {
        const a = e.querySelector('a[href]');
        href = a ? a.href : null;
    }
    return {href: href, text: (e.innerText || '').trim()};
})
"""


class BrowserSession:
    """
    Single browser session shared by the crawl for one batch.

    Only one coroutine drives the session at a time; the orchestrator owns
    it and passes it explicitly to discovery, navigation and extraction.
    """

    def __init__(
        self,
        cdp_url: Optional[str] = None,
        use_existing_browser: Optional[bool] = None,
        headless: Optional[bool] = None,
    ):
        self._cdp_url = cdp_url or settings.chrome_debugger_url
        self._use_existing = (
            settings.use_existing_browser if use_existing_browser is None else use_existing_browser
        )
        self._headless = settings.headless_browser if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._pages: Dict[str, Page] = {}
        self._owned: set[str] = set()
        self._active: Optional[str] = None
        self._handle_ids = count(1)
        self._lock = asyncio.Lock()

    async def start(self) -> "BrowserSession":
        """Connect to (or launch) the browser and register its open tabs."""
        async with self._lock:
            if self._context is not None:
                return self

            self._playwright = await async_playwright().start()
            if self._use_existing:
                logger.info(f"Attaching to existing Chrome at {self._cdp_url}")
                self._browser = await self._playwright.chromium.connect_over_cdp(self._cdp_url)
                if self._browser.contexts:
                    self._context = self._browser.contexts[0]
                else:
                    self._context = await self._browser.new_context()
            else:
                logger.info(f"Launching Chromium with profile {settings.browser_profile_path}")
                self._context = await self._playwright.chromium.launch_persistent_context(
                    settings.browser_profile_path,
                    headless=self._headless,
                    viewport={
                        "width": settings.viewport_width,
                        "height": settings.viewport_height,
                    },
                    locale="en-US",
                )

            for script in STEALTH_SCRIPTS:
                try:
                    await self._context.add_init_script(script)
                except Exception as e:
                    logger.debug(f"Error injecting stealth script: {e}")

            for page in self._context.pages:
                self._register(page, owned=False)
            if not self._pages:
                self._register(await self._context.new_page(), owned=True)
            self._active = next(iter(self._pages))
            return self

    async def close(self) -> None:
        """Close tabs opened by this session and release Playwright."""
        async with self._lock:
            for handle in list(self._owned):
                page = self._pages.pop(handle, None)
                if page is not None and not page.is_closed():
                    try:
                        await page.close()
                    except Exception as e:
                        logger.debug(f"Error closing tab {handle}: {e}")
            self._owned.clear()
            self._pages.clear()
            self._active = None

            if self._use_existing:
                # Disconnects without closing the user's browser
                if self._browser:
                    await self._browser.close()
            elif self._context:
                await self._context.close()
            self._browser = None
            self._context = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _register(self, page: Page, owned: bool) -> str:
        handle = f"tab-{next(self._handle_ids)}"
        self._pages[handle] = page
        if owned:
            self._owned.add(handle)
        return handle

    @property
    def page(self) -> Page:
        if self._active is None:
            raise RuntimeError("Browser session is not started")
        return self._pages[self._active]

    # ------------------------------------------------------------------
    # Navigation and page state
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout: Optional[float] = None) -> bool:
        """
        Load a URL in the active tab.

        Returns:
            True if the load finished within the timeout
        """
        timeout = timeout or settings.page_load_timeout_seconds
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            logger.debug(f"Navigation to {url} timed out after {timeout}s")
            return False

    async def current_url(self) -> str:
        return self.page.url

    async def page_content(self) -> str:
        return await self.page.content()

    async def title(self) -> str:
        return await self.page.title()

    async def screenshot(self, full_page: bool = True) -> bytes:
        return await self.page.screenshot(full_page=full_page, type="png")

    async def scroll(self, pixels: int) -> None:
        await self.page.evaluate("px => window.scrollBy(0, px)", pixels)

    async def scroll_to_top(self) -> None:
        await self.page.evaluate("() => window.scrollTo(0, 0)")

    async def execute_script(self, script: str, arg: Any = None) -> Any:
        """Evaluate a JavaScript function or expression in the active tab."""
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    # ------------------------------------------------------------------
    # Element queries and explicit waits
    # ------------------------------------------------------------------

    async def find_elements(self, selector: str) -> List[Dict[str, Optional[str]]]:
        """
        Find elements matching a CSS selector.

        Returns:
            One {"href", "text"} dict per match
        """
        try:
            return await self.page.eval_on_selector_all(selector, _ELEMENTS_SCRIPT)
        except Exception as e:
            logger.debug(f"Selector {selector} failed: {e}")
            return []

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> bool:
        timeout = timeout or settings.element_wait_seconds
        try:
            await self.page.wait_for_selector(selector, timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_for_element_count(
        self,
        selector: str,
        greater_than: int,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Wait until more than ``greater_than`` elements match ``selector``.

        Returns:
            Element count when the wait ended (success or timeout)
        """
        timeout = timeout or settings.scroll_wait_seconds
        try:
            await self.page.wait_for_function(
                "([sel, n]) => document.querySelectorAll(sel).length > n",
                arg=[selector, greater_than],
                timeout=timeout * 1000,
            )
        except PlaywrightTimeoutError:
            pass
        return await self.page.evaluate(
            "sel => document.querySelectorAll(sel).length", selector
        )

    async def wait_for_url(self, pattern: str, timeout: float) -> bool:
        """
        Poll the active tab's URL until it contains ``pattern``.

        Polling covers both full loads and history-API navigations.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if pattern in self.page.url:
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.1)

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def list_tabs(self) -> List[str]:
        for handle, page in list(self._pages.items()):
            if page.is_closed():
                self._pages.pop(handle)
                self._owned.discard(handle)
        return list(self._pages)

    async def active_tab(self) -> str:
        return self._active

    async def open_tab(self) -> str:
        """Open a blank tab owned by this session and return its handle."""
        page = await self._context.new_page()
        return self._register(page, owned=True)

    async def close_tab(self, handle: str) -> None:
        page = self._pages.pop(handle, None)
        self._owned.discard(handle)
        if page is not None and not page.is_closed():
            await page.close()
        if self._active == handle:
            self._active = next(iter(self._pages), None)

    async def switch_tab(self, handle: str) -> None:
        if handle not in self._pages:
            raise KeyError(f"Unknown tab handle: {handle}")
        self._active = handle
        await self._pages[handle].bring_to_front()
