# data_ingest/browser.py
"""
Headless-browser capability used by the DOM-driven scrapers.

    open(url, wait_policy)       navigate; raises TransientSourceError / PermanentSourceError
    query_selector_all(selector) -> [Element]
    scroll_to_bottom()
    content()                    current page HTML
    close()                      idempotent

PlaywrightBrowser launches chromium lazily on the first open(). One instance belongs
to one scraper invocation; use it as a context manager so it closes on every path.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from common.errors import PermanentSourceError, TransientSourceError

_LOG = logging.getLogger(__name__)

WAIT_POLICIES = ("load", "domcontentloaded", "networkidle", "commit")

# navigation failures that will not fix themselves on retry
_PERMANENT_NET_ERRORS = ("ERR_NAME_NOT_RESOLVED", "ERR_INVALID_URL", "ERR_UNKNOWN_URL_SCHEME", "ERR_BLOCKED_BY_CLIENT")


class Element(Protocol):
    def attr(self, name: str) -> Optional[str]: ...

    def text(self) -> str: ...

    def query(self, selector: str) -> Optional["Element"]: ...


class Browser(Protocol):
    def open(self, url: str, wait_policy: str = "networkidle") -> None: ...

    def query_selector_all(self, selector: str) -> List[Element]: ...

    def scroll_to_bottom(self) -> None: ...

    def content(self) -> str: ...

    def close(self) -> None: ...


class PlaywrightElement:
    def __init__(self, handle: Any):
        self._h = handle

    def attr(self, name: str) -> Optional[str]:
        return self._h.get_attribute(name)

    def text(self) -> str:
        return self._h.inner_text() or ""

    def query(self, selector: str) -> Optional["PlaywrightElement"]:
        h = self._h.query_selector(selector)
        return PlaywrightElement(h) if h else None


class PlaywrightBrowser:
    def __init__(self, headless: bool = True, nav_timeout_ms: int = 60000, user_agent: Optional[str] = None):
        self.headless = headless
        self.nav_timeout_ms = nav_timeout_ms
        self.user_agent = user_agent
        self._pw = None
        self._browser = None
        self._context = None
        self._page = None

    @classmethod
    def from_settings(cls, settings: Any) -> "PlaywrightBrowser":
        return cls(headless=settings.headless, nav_timeout_ms=settings.nav_timeout_ms, user_agent=settings.user_agent)

    def __enter__(self) -> "PlaywrightBrowser":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _ensure_page(self) -> Any:
        if self._page is None:
            self._pw = sync_playwright().start()
            self._browser = self._pw.chromium.launch(headless=self.headless)
            self._context = self._browser.new_context(user_agent=self.user_agent) if self.user_agent else self._browser.new_context()
            self._page = self._context.new_page()
            self._page.set_default_timeout(self.nav_timeout_ms)
            _LOG.debug("chromium launched (headless=%s)", self.headless)
        return self._page

    def open(self, url: str, wait_policy: str = "networkidle") -> None:
        if wait_policy not in WAIT_POLICIES:
            raise ValueError(f"unknown wait policy {wait_policy!r}")
        page = self._ensure_page()
        try:
            resp = page.goto(url, wait_until=wait_policy, timeout=self.nav_timeout_ms)
            page.wait_for_selector("body", timeout=self.nav_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TransientSourceError(f"navigation timeout: {e}", target=url) from e
        except PlaywrightError as e:
            msg = str(e)
            if any(code in msg for code in _PERMANENT_NET_ERRORS):
                raise PermanentSourceError(msg, target=url) from e
            raise TransientSourceError(msg, target=url) from e
        status = resp.status if resp is not None else None
        if status in (404, 410):
            raise PermanentSourceError(f"HTTP {status}", target=url)
        if status is not None and (status == 429 or status >= 500):
            raise TransientSourceError(f"HTTP {status}", target=url)

    def query_selector_all(self, selector: str) -> List[PlaywrightElement]:
        page = self._ensure_page()
        try:
            return [PlaywrightElement(h) for h in page.query_selector_all(selector)]
        except PlaywrightError as e:
            raise TransientSourceError(f"selector {selector!r} failed: {e}") from e

    def scroll_to_bottom(self) -> None:
        page = self._ensure_page()
        try:
            page.evaluate("window.scrollTo(0, document.documentElement.scrollHeight)")
        except PlaywrightError as e:
            raise TransientSourceError(f"scroll failed: {e}") from e

    def content(self) -> str:
        return self._ensure_page().content()

    def close(self) -> None:
        for name in ("_page", "_context", "_browser"):
            obj = getattr(self, name)
            if obj is not None:
                try:
                    obj.close()
                except PlaywrightError as e:
                    _LOG.debug("closing %s: %s", name, e)
                setattr(self, name, None)
        if self._pw is not None:
            self._pw.stop()
            self._pw = None
