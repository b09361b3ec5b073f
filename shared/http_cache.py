# shared/http_cache.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

_LOG = logging.getLogger(__name__)

# Conditional-request cache for channel RSS fallbacks.
# Stores per-URL: etag, last_modified, fetched


def is_http(url: str) -> bool:
    try:
        return urlparse(url).scheme.lower() in ("http", "https")
    except ValueError:
        return False


def _attr(parsed: Any, name: str) -> Any:
    # feedparser results expose both attribute and mapping access
    val = getattr(parsed, name, None)
    if val is None and isinstance(parsed, dict):
        val = parsed.get(name)
    return val


class FeedCache:
    """ETag/Last-Modified memory for feed URLs, optionally persisted as JSON."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self.entries: Dict[str, Dict[str, str]] = {}
        if self.path and self.path.exists():
            try:
                self.entries = json.loads(self.path.read_text(encoding="utf-8")) or {}
            except (OSError, ValueError) as e:
                _LOG.warning("feed cache %s unreadable, starting empty: %s", self.path, e)

    def conditional_headers(self, url: str) -> Dict[str, str]:
        if not is_http(url):
            return {}
        rec = self.entries.get(url) or {}
        h: Dict[str, str] = {}
        if rec.get("etag"):
            h["If-None-Match"] = rec["etag"]
        if rec.get("last_modified"):
            h["If-Modified-Since"] = rec["last_modified"]
        return h

    def update(self, url: str, parsed: Any, now_ts: str) -> None:
        if not is_http(url):
            return
        etag = _attr(parsed, "etag")
        lm = _attr(parsed, "modified")
        if not (etag or lm):
            return
        rec = self.entries.get(url, {})
        if etag:
            rec["etag"] = etag
        if lm:
            rec["last_modified"] = lm
        rec["fetched"] = now_ts
        self.entries[url] = rec

    def not_modified(self, parsed: Any) -> bool:
        return str(_attr(parsed, "status") or "") == "304"

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.entries, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
