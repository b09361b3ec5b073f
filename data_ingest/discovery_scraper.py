# data_ingest/discovery_scraper.py
"""
Channel discovery from a link-aggregator page.

Two independent strategies read the same page:
  dom     browser: open, scroll, read every a[href*="t.me/"]
  static  requests + BeautifulSoup: anchors plus a regex over the visible text
Their candidates are unioned by handle. One strategy breaking is logged and tolerated;
both breaking is a TransientSourceError for the page (retried, then a TargetFailure).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from common.errors import PermanentSourceError, TransientSourceError
from common.schemas import ChannelTarget, SourceKind, utcnow
from data_ingest.base import BaseScraper, Page
from data_ingest.browser import Browser
from normalize_enrich.normalizer import discovery_record
from shared.dedupe import canon_handle

_LOG = logging.getLogger(__name__)

LINK_SELECTOR = 'a[href*="t.me/"]'
_TEXT_LINK_RE = re.compile(r"(?:https?://)?(?:www\.)?(?:t\.me|telegram\.me|telegram\.dog)/(?:s/)?[A-Za-z][A-Za-z0-9_]{3,31}", re.IGNORECASE)

# (href, anchor text)
RawLink = Tuple[str, str]


@dataclass
class Candidate:
    handle: str
    context: List[str] = field(default_factory=list)
    strategies: List[str] = field(default_factory=list)


def collect(links: List[RawLink], strategy: str, into: Dict[str, Candidate]) -> int:
    """Fold raw links into candidates keyed by handle. Returns how many handles were new."""
    new = 0
    for href, text in links:
        handle = canon_handle(href)
        if not handle:
            continue
        cand = into.get(handle)
        if cand is None:
            cand = into[handle] = Candidate(handle=handle)
            new += 1
        if strategy not in cand.strategies:
            cand.strategies.append(strategy)
        t = (text or "").strip()
        if t and t not in cand.context:
            cand.context.append(t)
    return new


def static_links(html: str) -> List[RawLink]:
    soup = BeautifulSoup(html or "", "html.parser")
    links: List[RawLink] = []
    for a in soup.select("a[href]"):
        href = a.get("href") or ""
        if "t.me/" in href or "telegram.me/" in href:
            links.append((href, a.get_text(" ", strip=True)))
    for s in soup(["script", "style"]):
        s.decompose()
    for m in _TEXT_LINK_RE.finditer(soup.get_text(" ")):
        links.append((m.group(0), ""))
    return links


class DiscoveryScraper(BaseScraper):
    name = "discovery"
    source_kind = SourceKind.DISCOVERY

    def __init__(
        self,
        browser: Optional[Browser] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        scrolls: int = 3,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.browser = browser
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent
        self.timeout = timeout
        self.scrolls = scrolls
        self.candidates: Dict[str, Candidate] = {}
        self.strategy_errors: Dict[str, str] = {}

    # ---- strategies -----------------------------------------------------

    def dom_links(self, url: str) -> List[RawLink]:
        if self.browser is None:
            return []
        self.browser.open(url, wait_policy="networkidle")
        for _ in range(self.scrolls):
            self.browser.scroll_to_bottom()
            self.sleep(1.0)
        return [(el.attr("href") or "", el.text()) for el in self.browser.query_selector_all(LINK_SELECTOR)]

    def static_page_links(self, url: str) -> List[RawLink]:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientSourceError(str(e), target=url) from e
        if resp.status_code in (404, 410):
            raise PermanentSourceError(f"HTTP {resp.status_code}", target=url)
        if resp.status_code != 200:
            raise TransientSourceError(f"HTTP {resp.status_code}", target=url)
        return static_links(resp.text)

    # ---- page -----------------------------------------------------------

    def fetch_page(self, target: str, page_no: int, cursor: Any) -> Page:
        strategies: List[Tuple[str, Callable[[str], List[RawLink]]]] = [("static", self.static_page_links)]
        if self.browser is not None:
            strategies.insert(0, ("dom", self.dom_links))

        found: Dict[str, Candidate] = {}
        ok = 0
        for name, fn in strategies:
            try:
                n = collect(fn(target), name, found)
                ok += 1
                _LOG.info("discovery[%s] %s: %d handle(s)", name, target, n)
            except Exception as e:
                self.strategy_errors[name] = f"{type(e).__name__}: {e}"
                _LOG.warning("discovery[%s] failed on %s: %s", name, target, e)
        if not ok:
            raise TransientSourceError("all discovery strategies failed", target=target)

        now = utcnow()
        records = []
        for handle in sorted(found):
            cand = found[handle]
            prev = self.candidates.get(handle)
            if prev is None:
                self.candidates[handle] = cand
            else:
                prev.strategies.extend(s for s in cand.strategies if s not in prev.strategies)
                prev.context.extend(c for c in cand.context if c not in prev.context)
            records.append(discovery_record(handle, page_url=target, context=cand.context, scraped_at=now))
        return Page(records=records, has_more=False)

    def channel_targets(self, source: str = "discovery") -> List[ChannelTarget]:
        return [
            ChannelTarget(handle=h, url=f"https://t.me/{h}", source=source)
            for h in sorted(self.candidates)
        ]

    def scrape(self, targets, limits=None):
        self.candidates = {}
        self.strategy_errors = {}
        return super().scrape(targets, limits)

    def close(self) -> None:
        try:
            if self.browser is not None:
                self.browser.close()
        finally:
            self.session.close()
