# shared/dedupe.py
# Identity helpers for scraped items.
# - canonical URLs (tracking params and fragments dropped) so the same post reached via
#   a search page and a hashtag page hashes to one key
# - canonical channel handles ("@Foo", "t.me/s/foo", "https://telegram.me/foo" -> "foo")
# - SeenIds: the per-invocation "already emitted" set every scraper keeps

from __future__ import annotations

import re
from typing import Iterable, Optional, Set
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode, unquote

# ---- Canonicalization helpers ------------------------------------------------

_TRACKING_PARAMS = {
    "gclid", "fbclid", "igshid", "ref", "ref_src", "is_from_webapp", "sender_device",
    "_r", "_t", "lang",
}

_HANDLE_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?(?:t\.me|telegram\.me|telegram\.dog)/(?:s/)?([A-Za-z][A-Za-z0-9_]{3,31})(?:[/?#].*)?$",
    re.IGNORECASE,
)
_BARE_HANDLE_RE = re.compile(r"^@?([A-Za-z][A-Za-z0-9_]{3,31})$")

# t.me paths that are not public channels
_RESERVED_HANDLES = {"joinchat", "share", "addstickers", "addemoji", "proxy", "socks", "iv", "login", "setlanguage", "addtheme", "contact"}


def normalize_url(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        url = unquote(url.strip())
        parts = urlsplit(url)
        scheme = (parts.scheme or "https").lower()
        netloc = (parts.netloc or "").lower()
        if netloc.startswith("www."):
            netloc = netloc[4:]

        query_pairs = []
        for k, v in parse_qsl(parts.query, keep_blank_values=True):
            k_low = k.casefold()
            if k_low.startswith("utm_") or k_low in _TRACKING_PARAMS:
                continue
            query_pairs.append((k, v))
        query = urlencode(query_pairs, doseq=True)

        path = parts.path or ""
        if path.endswith("/") and path != "/":
            path = path[:-1]
        if path == "/":
            path = ""

        return urlunsplit((scheme, netloc, path, query, ""))
    except ValueError:
        # malformed netloc/port: still hash deterministically
        return url.strip()


def canon_handle(value: Optional[str]) -> Optional[str]:
    """Channel handle from a link or '@name'; None for invite links and non-channel paths."""
    if not value:
        return None
    v = value.strip()
    m = _HANDLE_RE.match(v) or _BARE_HANDLE_RE.match(v)
    if not m:
        return None
    handle = m.group(1).lower()
    if handle in _RESERVED_HANDLES:
        return None
    return handle


class SeenIds:
    """In-memory 'already emitted' set for one scraper invocation."""

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._seen: Set[str] = set(initial)

    def add_if_new(self, external_id: str) -> bool:
        if external_id in self._seen:
            return False
        self._seen.add(external_id)
        return True

    def __contains__(self, external_id: str) -> bool:
        return external_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
