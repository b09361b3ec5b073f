# normalize_enrich/normalizer.py
"""
Raw scraped dicts -> SourceRecord.

Scrapers collect loosely-typed dicts straight from the DOM/markup; everything that turns
those into the frozen SourceRecord model lives here so the parsing rules (count suffixes,
id extraction, NUL stripping, timestamps) are shared and testable without a browser.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from common.schemas import SourceKind, SourceRecord, utcnow
from shared.datetime_utils import parse_to_utc
from shared.dedupe import canon_handle, normalize_url

VIDEO_ID_RE = re.compile(r"/video/(\d+)")
AUTHOR_RE = re.compile(r"/@([^/?#]+)")
# previews render large counts as "12.3K"
_COUNT_RE = re.compile(r"^\s*([0-9][0-9,]*(?:\.[0-9]+)?)\s*([kmb])?\s*$", re.IGNORECASE)
_MULTIPLIER = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}

_CTRL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(s: Optional[str]) -> str:
    """Drop NUL and other control characters that stores reject; keep newlines/tabs."""
    if not s:
        return ""
    return _CTRL_RE.sub("", str(s)).strip()


def parse_count(value: Any) -> int:
    """'1.2K' -> 1200, '3M' -> 3000000, '1,234' -> 1234; unparseable -> 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    m = _COUNT_RE.match(str(value))
    if not m:
        return 0
    num = float(m.group(1).replace(",", ""))
    unit = (m.group(2) or "").lower()
    return int(round(num * _MULTIPLIER.get(unit, 1)))


def video_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = VIDEO_ID_RE.search(url)
    return m.group(1) if m else None


def author_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = AUTHOR_RE.search(url)
    return m.group(1) if m else None


def timestamp_from_video_id(video_id: Optional[str]) -> Optional[datetime]:
    """Short-video ids carry the upload time (unix seconds) in their upper 32 bits."""
    if not video_id or not str(video_id).isdigit():
        return None
    try:
        return parse_to_utc(int(video_id) >> 32)
    except ValueError:
        return None


def _metrics(**counts: Any) -> Dict[str, int]:
    return {k: parse_count(v) for k, v in counts.items() if v is not None}


def video_record(raw: Dict[str, Any], *, scraped_at: Optional[datetime] = None) -> Optional[SourceRecord]:
    """
    raw keys: url, caption, author, views, likes, shares, comments (list of str), thumbnail.
    Returns None when the url carries no video id.
    """
    url = sanitize_text(raw.get("url"))
    vid = video_id_from_url(url)
    if not vid:
        return None
    comments: List[str] = [sanitize_text(c) for c in (raw.get("comments") or []) if c]
    caption = sanitize_text(raw.get("caption"))
    text = "\n".join([caption] + comments).strip()
    metrics = _metrics(views=raw.get("views"), likes=raw.get("likes"), shares=raw.get("shares"))
    metrics["comments"] = len(comments)
    return SourceRecord(
        external_id=vid,
        source_kind=SourceKind.VIDEO,
        url=normalize_url(url),
        author=sanitize_text(raw.get("author")) or author_from_url(url),
        timestamp=timestamp_from_video_id(vid),
        engagement_metrics=metrics,
        raw_text=text,
        media_url=sanitize_text(raw.get("thumbnail")) or None,
        scraped_at=scraped_at or utcnow(),
    )


def channel_record(handle: str, raw: Dict[str, Any], *, scraped_at: Optional[datetime] = None) -> Optional[SourceRecord]:
    """
    raw keys: post ("handle/123"), text, datetime, views, url.
    external_id is the "handle/<message id>" pair the preview page exposes.
    """
    post = sanitize_text(raw.get("post"))
    if not post or "/" not in post:
        return None
    chan, _, msg_id = post.rpartition("/")
    if not msg_id.isdigit():
        return None
    chan = canon_handle(chan) or handle
    ts: Optional[datetime] = None
    if raw.get("datetime"):
        try:
            ts = parse_to_utc(raw["datetime"])
        except ValueError:
            ts = None
    return SourceRecord(
        external_id=f"{chan}/{msg_id}",
        source_kind=SourceKind.CHANNEL_MESSAGE,
        url=normalize_url(raw.get("url") or f"https://t.me/{chan}/{msg_id}"),
        author=chan,
        timestamp=ts,
        engagement_metrics=_metrics(views=raw.get("views")),
        raw_text=sanitize_text(raw.get("text")),
        scraped_at=scraped_at or utcnow(),
    )


def discovery_record(
    handle: str,
    *,
    page_url: str,
    context: Iterable[str] = (),
    scraped_at: Optional[datetime] = None,
) -> SourceRecord:
    """One discovered channel; raw_text is the link text around it (may carry cashtags)."""
    text = " ".join(sanitize_text(c) for c in context if c).strip()
    return SourceRecord(
        external_id=f"discovery:{handle}",
        source_kind=SourceKind.DISCOVERY,
        url=f"https://t.me/{handle}",
        author=normalize_url(page_url),
        timestamp=None,
        raw_text=text,
        scraped_at=scraped_at or utcnow(),
    )


def message_id(external_id: str) -> Optional[int]:
    """'bonkchat/120' -> 120."""
    _, _, tail = external_id.rpartition("/")
    return int(tail) if tail.isdigit() else None
