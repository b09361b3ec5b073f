# data_ingest/channel_scraper.py
"""
Public chat-channel scraper (web preview pages, https://t.me/s/<handle>).

Pages are plain HTML: requests + BeautifulSoup, newest messages first, older ones via
?before=<oldest message id seen>. When a preview cannot be read and
CHANNEL_FEED_URL_TEMPLATE is set, the channel's RSS mirror is parsed with feedparser
instead (conditional GET through shared.http_cache).

Target management lives here too: prepare_targets() loads stored targets, runs discovery
to append newly found handles, validates reachability, and marks unreachable ones stale.
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import feedparser
import requests
from bs4 import BeautifulSoup

from common.errors import PermanentSourceError, SourceError, TransientSourceError
from common.schemas import ChannelTarget, SourceKind, SourceRecord, utcnow
from data_ingest.base import BaseScraper, Page, ScrapeLimits
from normalize_enrich.normalizer import channel_record, message_id
from shared.dedupe import canon_handle
from shared.http_cache import FeedCache

_LOG = logging.getLogger(__name__)

PREVIEW_URL = "https://t.me/s/{handle}"
_LINK_ID_RE = re.compile(r"/(\d+)/?$")


def preview_url(handle: str, before: Optional[int] = None) -> str:
    url = PREVIEW_URL.format(handle=handle)
    return f"{url}?before={before}" if before else url


def parse_preview(html: str) -> Tuple[List[Dict[str, Any]], bool]:
    """
    Returns (messages, is_channel). messages are raw dicts for channel_record();
    is_channel is False when the page is not a public channel preview.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    out: List[Dict[str, Any]] = []
    for m in soup.select("div.tgme_widget_message[data-post]"):
        text_el = m.select_one(".tgme_widget_message_text")
        time_el = m.select_one("time[datetime]")
        views_el = m.select_one(".tgme_widget_message_views")
        date_el = m.select_one("a.tgme_widget_message_date[href]")
        out.append({
            "post": m.get("data-post"),
            "text": text_el.get_text(" ", strip=True) if text_el else "",
            "datetime": time_el.get("datetime") if time_el else None,
            "views": views_el.get_text(strip=True) if views_el else None,
            "url": date_el.get("href") if date_el else None,
        })
    is_channel = bool(out) or soup.select_one(".tgme_channel_info") is not None
    return out, is_channel


def _entry_text(entry: Any) -> str:
    html = entry.get("summary") or entry.get("description") or entry.get("title") or ""
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


class ChannelScraper(BaseScraper):
    name = "channel"
    source_kind = SourceKind.CHANNEL_MESSAGE

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 20.0,
        user_agent: Optional[str] = None,
        feed_url_template: Optional[str] = None,
        feed_cache: Optional[FeedCache] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.session = session or requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent
        self.timeout = timeout
        self.feed_url_template = feed_url_template
        self.feed_cache = feed_cache or FeedCache()
        self._prefetched: Dict[str, str] = {}

    def target_label(self, target: ChannelTarget) -> str:
        return target.handle

    def close(self) -> None:
        self.session.close()

    # ---- http -----------------------------------------------------------

    def _get(self, url: str) -> str:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientSourceError(f"timeout: {e}", target=url) from e
        except requests.RequestException as e:
            raise TransientSourceError(str(e), target=url) from e
        if resp.status_code in (404, 410):
            raise PermanentSourceError(f"HTTP {resp.status_code}", target=url)
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientSourceError(f"HTTP {resp.status_code}", target=url)
        if resp.status_code != 200:
            raise PermanentSourceError(f"HTTP {resp.status_code}", target=url)
        return resp.text

    # ---- pages ----------------------------------------------------------

    def fetch_page(self, target: ChannelTarget, page_no: int, cursor: Any) -> Page:
        handle = target.handle
        if page_no == 0 and handle in self._prefetched:
            html = self._prefetched.pop(handle)
        else:
            try:
                html = self._get(preview_url(handle, before=cursor))
            except SourceError:
                if page_no == 0 and self.feed_url_template:
                    _LOG.info("channel %s: preview unavailable, using feed", handle)
                    return self._feed_page(handle)
                raise

        raws, is_channel = parse_preview(html)
        if page_no == 0 and not is_channel:
            if self.feed_url_template:
                return self._feed_page(handle)
            raise PermanentSourceError("not a public channel preview", target=preview_url(handle))

        now = utcnow()
        records = [r for r in (channel_record(handle, raw, scraped_at=now) for raw in raws) if r is not None]
        ids = [i for i in (message_id(r.external_id) for r in records) if i is not None]
        oldest = min(ids) if ids else None
        return Page(records=records, cursor=oldest, has_more=bool(oldest and oldest > 1))

    def _feed_page(self, handle: str) -> Page:
        url = self.feed_url_template.format(handle=handle)  # type: ignore[union-attr]
        parsed = feedparser.parse(url, request_headers=self.feed_cache.conditional_headers(url), agent=self.session.headers.get("User-Agent"))
        if self.feed_cache.not_modified(parsed):
            return Page(records=[], has_more=False)
        if getattr(parsed, "bozo", 0) and not parsed.entries:
            raise TransientSourceError(f"feed parse error: {getattr(parsed, 'bozo_exception', '')}", target=url)
        self.feed_cache.update(url, parsed, now_ts=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))

        now = utcnow()
        records: List[SourceRecord] = []
        for e in parsed.entries:
            link = e.get("link") or ""
            m = _LINK_ID_RE.search(link)
            if not m:
                continue
            rec = channel_record(handle, {
                "post": f"{handle}/{m.group(1)}",
                "text": _entry_text(e),
                "datetime": e.get("published") or e.get("updated"),
                "url": link,
            }, scraped_at=now)
            if rec is not None:
                records.append(rec)
        return Page(records=records, has_more=False)

    # ---- target management ----------------------------------------------

    def validate(self, handle: str) -> Optional[bool]:
        """True reachable, False unreachable (mark stale), None unknown (transient error)."""
        try:
            html = self._get(preview_url(handle))
        except PermanentSourceError as e:
            _LOG.info("channel %s unreachable: %s", handle, e)
            return False
        except TransientSourceError as e:
            _LOG.warning("channel %s not validated this cycle: %s", handle, e)
            return None
        _, is_channel = parse_preview(html)
        if is_channel:
            self._prefetched[handle] = html
        return is_channel

    def prepare_targets(
        self,
        store: Any,
        discovered: Iterable[ChannelTarget] = (),
        seeds: Iterable[str] = (),
        discover: Optional[Callable[[], Iterable[ChannelTarget]]] = None,
        limits: Optional[ScrapeLimits] = None,
    ) -> List[ChannelTarget]:
        """
        (a) stored targets, (b) + seeds, discovered handles and whatever discover()
        finds, when given, (c) validate: unreachable -> stale. Stale handles that
        discovery found again are re-validated.

        Validation honours limits: target_delay between requests, at most max_targets
        ready targets, and the max_seconds budget. Returns the targets to scrape,
        sorted by handle.
        """
        limits = limits or ScrapeLimits()
        incoming: List[ChannelTarget] = []
        for h in seeds:
            handle = canon_handle(h)
            if handle:
                incoming.append(ChannelTarget(handle=handle, url=f"https://t.me/{handle}", source="seed"))
        incoming.extend(discovered)
        if discover is not None:
            try:
                incoming.extend(discover())
            except SourceError as e:
                _LOG.warning("channel discovery failed, using stored targets: %s", e)

        store.add_channel_targets(incoming)
        rediscovered = {t.handle for t in incoming}
        candidates = [t for t in store.channel_targets(include_stale=True) if not t.stale or t.handle in rediscovered]

        deadline = self.clock() + limits.max_seconds
        ready: List[ChannelTarget] = []
        for i, t in enumerate(candidates):
            if limits.max_targets is not None and len(ready) >= limits.max_targets:
                break
            if i > 0 and limits.target_delay:
                self.sleep(limits.target_delay)
            if self.clock() >= deadline:
                _LOG.warning("channel validation: %.0fs budget spent, %d candidate(s) left", limits.max_seconds, len(candidates) - i)
                break
            ok = self.validate(t.handle)
            if ok is False:
                store.mark_channel_target(t.handle, validated=False, stale=True)
                continue
            if ok:
                store.mark_channel_target(t.handle, validated=True, stale=False)
                t = t.model_copy(update={"validated": True, "stale": False})
            elif t.stale:
                continue
            ready.append(t)
        _LOG.info("channel targets: %d ready of %d candidate(s)", len(ready), len(candidates))
        return ready
