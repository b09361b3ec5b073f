# tests/normalize_enrich/test_normalizer.py
from datetime import datetime, timezone

from common.schemas import SourceKind
from normalize_enrich.normalizer import (
    channel_record,
    discovery_record,
    message_id,
    parse_count,
    sanitize_text,
    timestamp_from_video_id,
    video_id_from_url,
    video_record,
)

VIDEO_URL = "https://www.tiktok.com/@degenalice/video/7300000000000000000?is_from_webapp=1"


def test_parse_count_suffixes():
    assert parse_count("1.2K") == 1200
    assert parse_count("2.3m") == 2_300_000
    assert parse_count("1B") == 1_000_000_000
    assert parse_count("1,234") == 1234
    assert parse_count(" 17 ") == 17
    assert parse_count(42) == 42
    assert parse_count("n/a") == 0
    assert parse_count(None) == 0


def test_sanitize_text_strips_nul():
    assert sanitize_text("ab\x00c\n") == "abc"
    assert sanitize_text("line1\nline2") == "line1\nline2"
    assert sanitize_text(None) == ""


def test_video_id_and_timestamp():
    assert video_id_from_url(VIDEO_URL) == "7300000000000000000"
    assert video_id_from_url("https://www.tiktok.com/@degenalice") is None
    ts = timestamp_from_video_id("7300000000000000000")
    assert ts == datetime.fromtimestamp(7300000000000000000 >> 32, tz=timezone.utc)
    assert timestamp_from_video_id("12") is None
    assert timestamp_from_video_id("abc") is None


def test_video_record():
    rec = video_record({
        "url": VIDEO_URL,
        "caption": "$BONK \x00 szn",
        "views": "1.2K",
        "comments": ["buy $wif", "", None],
    })
    assert rec is not None
    assert rec.external_id == "7300000000000000000"
    assert rec.source_kind == SourceKind.VIDEO
    assert rec.author == "degenalice"
    assert rec.url == "https://tiktok.com/@degenalice/video/7300000000000000000"
    assert rec.engagement_metrics == {"views": 1200, "comments": 1}
    assert "$BONK" in rec.raw_text and "buy $wif" in rec.raw_text
    assert rec.timestamp is not None

    assert video_record({"url": "https://www.tiktok.com/explore"}) is None


def test_channel_record():
    rec = channel_record("bonkchat", {
        "post": "BonkChat/120",
        "text": "$BONK listing soon",
        "datetime": "2025-10-05T06:20:00+00:00",
        "views": "3.4K",
    })
    assert rec.external_id == "bonkchat/120"
    assert rec.source_kind == SourceKind.CHANNEL_MESSAGE
    assert rec.url == "https://t.me/bonkchat/120"
    assert rec.timestamp == datetime(2025, 10, 5, 6, 20, tzinfo=timezone.utc)
    assert rec.engagement_metrics == {"views": 3400}
    assert message_id(rec.external_id) == 120

    assert channel_record("bonkchat", {"post": "bonkchat/abc"}) is None
    assert channel_record("bonkchat", {}) is None


def test_channel_record_bad_datetime_is_none():
    rec = channel_record("bonkchat", {"post": "bonkchat/7", "datetime": "yesterday"})
    assert rec.timestamp is None


def test_discovery_record():
    rec = discovery_record("bonkchat", page_url="https://outlight.fun/", context=["$BONK room", None])
    assert rec.external_id == "discovery:bonkchat"
    assert rec.source_kind == SourceKind.DISCOVERY
    assert rec.url == "https://t.me/bonkchat"
    assert rec.raw_text == "$BONK room"
