# data_ingest/video_scraper.py
"""
Short-video platform scraper (search pages and hashtag pages).

Each target is a search term or a hashtag. Page 0 navigates; every later page scrolls the
same infinite feed and re-reads the item containers, so the base loop's dedupe and
idle-page cut-off decide when a feed is exhausted. Comments come from the JSON comment
endpoint and are best-effort: any failure there leaves the caption as the only text.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from common.errors import TransientSourceError
from common.schemas import SourceKind, SourceRecord
from data_ingest.base import BaseScraper, Page
from data_ingest.browser import Browser, Element
from normalize_enrich.normalizer import video_id_from_url, video_record

_LOG = logging.getLogger(__name__)

BASE_URL = "https://www.tiktok.com"
SEARCH_URL = BASE_URL + "/search?q={term}"
TAG_URL = BASE_URL + "/tag/{term}"
COMMENT_URL = BASE_URL + "/api/comment/list/"

SEARCH_ITEM_SELECTOR = 'div[class*="DivItemContainerForSearch"]'
TAG_ITEM_SELECTOR = 'div[class*="DivItemContainerV2"]'

_LINK_SELECTOR = 'a[href*="/video/"]'
_CAPTION_SELECTOR = '[data-e2e="search-card-video-caption"], [data-e2e="challenge-item-desc"], [data-e2e="search-card-desc"]'
_VIEWS_SELECTOR = '[data-e2e="video-views"], [data-e2e="search-card-like-container"] strong'
_AUTHOR_SELECTOR = '[data-e2e="search-card-user-unique-id"]'


@dataclass(frozen=True)
class VideoTarget:
    kind: str  # "search" | "tag"
    term: str

    @property
    def url(self) -> str:
        tmpl = SEARCH_URL if self.kind == "search" else TAG_URL
        return tmpl.format(term=quote(self.term.lstrip("#")))

    @property
    def selector(self) -> str:
        return SEARCH_ITEM_SELECTOR if self.kind == "search" else TAG_ITEM_SELECTOR

    def __str__(self) -> str:
        return f"{self.kind}:{self.term}"


def video_targets(search_terms: Iterable[str], hashtags: Iterable[str]) -> List[VideoTarget]:
    """Search pages first, then hashtag pages; order is preserved."""
    out = [VideoTarget("search", t) for t in search_terms if t.strip()]
    out += [VideoTarget("tag", t) for t in hashtags if t.strip()]
    return out


def _abs(href: str) -> str:
    return href if href.startswith("http") else BASE_URL + href


def _text(el: Element, selector: str) -> Optional[str]:
    sub = el.query(selector)
    return sub.text().strip() if sub else None


def read_video_element(el: Element) -> Optional[Dict[str, Any]]:
    """One item container -> raw dict for video_record(); None if it holds no video link."""
    link = el.query(_LINK_SELECTOR)
    href = link.attr("href") if link else None
    if not href or not video_id_from_url(href):
        return None
    img = el.query("img")
    return {
        "url": _abs(href),
        "caption": _text(el, _CAPTION_SELECTOR) or (img.attr("alt") if img else None) or "",
        "views": _text(el, _VIEWS_SELECTOR),
        "author": _text(el, _AUTHOR_SELECTOR),
        "thumbnail": img.attr("src") if img else None,
    }


class CommentFetcher:
    """Top comments for a video id through the public JSON endpoint; [] on any failure."""

    def __init__(self, session: Optional[requests.Session] = None, max_comments: int = 20, timeout: float = 10.0, user_agent: Optional[str] = None):
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent
        self.max_comments = max_comments
        self.timeout = timeout

    def __call__(self, video_id: str) -> List[str]:
        params = {"aweme_id": video_id, "count": self.max_comments, "cursor": 0}
        try:
            resp = self.session.get(COMMENT_URL, params=params, timeout=self.timeout)
            if resp.status_code != 200:
                _LOG.debug("comments for %s: HTTP %s", video_id, resp.status_code)
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            _LOG.debug("comments for %s unavailable: %s", video_id, e)
            return []
        if not isinstance(data, dict):
            return []
        comments = data.get("comments") or []
        return [str(c.get("text")) for c in comments if isinstance(c, dict) and c.get("text")]

    def close(self) -> None:
        self.session.close()


class VideoScraper(BaseScraper):
    name = "video"
    source_kind = SourceKind.VIDEO

    def __init__(self, browser: Browser, comment_fetcher: Optional[CommentFetcher] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.browser = browser
        self.comment_fetcher = comment_fetcher
        self._comments: Dict[str, List[str]] = {}

    def fetch_page(self, target: VideoTarget, page_no: int, cursor: Any) -> Page:
        if page_no == 0:
            self.browser.open(target.url, wait_policy="networkidle")
        else:
            self.browser.scroll_to_bottom()
        elements = self.browser.query_selector_all(target.selector)
        if page_no == 0 and not elements:
            raise TransientSourceError("no video items rendered", target=target.url)

        records: List[SourceRecord] = []
        for el in elements:
            raw = read_video_element(el)
            if raw is None:
                continue
            vid = video_id_from_url(raw["url"])
            if self.comment_fetcher:
                if vid not in self._comments:
                    self._comments[vid] = self.comment_fetcher(vid)
                raw["comments"] = self._comments[vid]
            rec = video_record(raw)
            if rec is not None:
                records.append(rec)
        return Page(records=records, cursor=page_no + 1, has_more=True)

    def close(self) -> None:
        try:
            self.browser.close()
        finally:
            # plain callables are accepted as fetchers too
            close = getattr(self.comment_fetcher, "close", None)
            if close is not None:
                close()
