"""Login-wall and block-page detection."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


class PageState(Enum):
    OK = "ok"
    LOGIN_REQUIRED = "login_required"
    BLOCKED = "blocked"


@dataclass
class PageCheck:
    """Result of inspecting the current page."""
    state: PageState
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state != PageState.OK


LOGIN_URL_MARKERS = ["/login", "/checkpoint"]

LOGIN_TEXT_PATTERNS = [
    r'log in to facebook',
    r'create new account',
    r'you must log in to continue',
]

# Block indicators - patterns that suggest a bot challenge or throttling
BLOCK_PATTERNS = [
    (r'captcha', 'captcha'),
    (r'verify you are a human', 'captcha'),
    (r'unusual traffic', 'captcha'),
    (r'rate limit', 'rate_limit'),
    (r'please try again later', 'rate_limit'),
    (r'you\'?re temporarily blocked', 'blocked'),
    (r'you\'?ve been blocked', 'blocked'),
    (r'temporarily blocked', 'blocked'),
]

# Matched against the whole document title
ERROR_TITLE_RE = re.compile(r"(error|page not found|something went wrong)(\s*\|\s*facebook)?")


def _visible_text(html: str) -> str:
    """Body text without script and style content, lowercased."""
    if not html:
        return ""
    tree = HTMLParser(html)
    for node in tree.css("script, style, noscript"):
        node.decompose()
    body = tree.body
    if body is None:
        return ""
    return body.text(separator=" ").lower()


def classify_page(url: str, html: str, title: str = "") -> PageCheck:
    """
    Classify a page as normal, login wall, or block page.

    Login signatures are checked first: a logged-out session often also
    shows throttling text, and re-authenticating is the actionable fix.

    Args:
        url: Current page URL
        html: Page HTML
        title: Document title

    Returns:
        PageCheck with state and matched reason
    """
    lowered_url = (url or "").lower()
    for marker in LOGIN_URL_MARKERS:
        if marker in lowered_url:
            return PageCheck(PageState.LOGIN_REQUIRED, f"url contains {marker}")

    text = _visible_text(html)
    for pattern in LOGIN_TEXT_PATTERNS:
        if re.search(pattern, text):
            return PageCheck(PageState.LOGIN_REQUIRED, pattern)

    for pattern, block_type in BLOCK_PATTERNS:
        if re.search(pattern, text):
            return PageCheck(PageState.BLOCKED, block_type)

    if title and ERROR_TITLE_RE.fullmatch(title.strip().lower()):
        return PageCheck(PageState.BLOCKED, "error title")

    return PageCheck(PageState.OK)


async def check_page(session) -> PageCheck:
    """Inspect the session's active tab."""
    try:
        url = await session.current_url()
        html = await session.page_content()
        title = await session.title()
    except Exception as e:
        # A page mid-navigation can refuse content(); treat as normal and let
        # the navigation predicate decide
        logger.debug(f"Page state check failed: {e}")
        return PageCheck(PageState.OK)

    result = classify_page(url, html, title)
    if result.is_terminal:
        logger.warning(f"Page at {url} detected as {result.state.value}: {result.reason}")
    return result
