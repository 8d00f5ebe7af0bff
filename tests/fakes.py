"""Fakes for the browser session and helpers shared by tests."""

from typing import Any, Callable, Dict, List, Optional


async def no_sleep(_seconds: float) -> None:
    return None


class FakeBrowserSession:
    """In-memory stand-in for BrowserSession.

    Navigation just sets the current URL unless ``redirects`` maps it
    elsewhere. Scripts are answered by ``script_handler`` when set.
    """

    def __init__(
        self,
        url: str = "about:blank",
        html: str = "<html><body><div>Listing details</div></body></html>",
        title: str = "Marketplace",
    ):
        self.url = url
        self.html = html
        self.title_text = title
        self.redirects: Dict[str, str] = {}
        self.elements: Dict[str, List[Dict[str, Optional[str]]]] = {}
        self.script_handler: Optional[Callable[[str, Any], Any]] = None
        self.navigations: List[str] = []
        self.scripts: List[tuple] = []
        self.scroll_calls = 0
        self.tabs: List[str] = ["tab-1"]
        self.active = "tab-1"
        self.switches: List[str] = []
        self.fail_open_tab = False
        self.started = False
        self.closed = False
        self._next_tab = 2

    async def start(self):
        self.started = True
        return self

    async def close(self):
        self.closed = True

    async def navigate(self, url, timeout=None):
        self.navigations.append(url)
        self.url = self.redirects.get(url, url)
        return True

    async def current_url(self):
        return self.url

    async def page_content(self):
        return self.html

    async def title(self):
        return self.title_text

    async def screenshot(self, full_page=True):
        return b"\x89PNG fake"

    async def scroll(self, pixels):
        self.scroll_calls += 1

    async def scroll_to_top(self):
        return None

    async def execute_script(self, script, arg=None):
        self.scripts.append((script, arg))
        if self.script_handler is not None:
            return self.script_handler(script, arg)
        return None

    async def find_elements(self, selector):
        return list(self.elements.get(selector, []))

    async def wait_for_selector(self, selector, timeout=None):
        return True

    async def wait_for_element_count(self, selector, greater_than, timeout=None):
        return len(await self.find_elements(selector))

    async def wait_for_url(self, pattern, timeout):
        return pattern in self.url

    async def list_tabs(self):
        return list(self.tabs)

    async def active_tab(self):
        return self.active

    async def open_tab(self):
        if self.fail_open_tab:
            raise RuntimeError("popup blocked")
        handle = f"tab-{self._next_tab}"
        self._next_tab += 1
        self.tabs.append(handle)
        return handle

    async def close_tab(self, handle):
        self.tabs.remove(handle)
        if self.active == handle:
            self.active = self.tabs[0] if self.tabs else None

    async def switch_tab(self, handle):
        if handle not in self.tabs:
            raise KeyError(handle)
        self.active = handle
        self.switches.append(handle)


def item_url(listing_id: int) -> str:
    return f"https://www.facebook.com/marketplace/item/{listing_id}/"


