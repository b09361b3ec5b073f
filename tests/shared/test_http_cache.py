# tests/shared/test_http_cache.py
from __future__ import annotations

import json
from pathlib import Path

from shared.http_cache import FeedCache, is_http


class _DummyParsed:
    def __init__(self, etag=None, modified=None, status=200):
        self.bozo = 0
        self.entries = []
        self.etag = etag
        self.modified = modified
        self.status = status


def test_is_http():
    assert is_http("https://rsshub.app/telegram/channel/bonk")
    assert not is_http("file:///tmp/feed.xml")


def test_conditional_headers_roundtrip_through_disk(tmp_path: Path):
    url = "http://example.com/telegram/channel/bonkchat"
    path = tmp_path / "feed_cache.json"
    path.write_text(json.dumps({url: {"etag": 'W/"old"', "last_modified": "Sat, 01 Jan 2022 00:00:00 GMT"}}), encoding="utf-8")

    cache = FeedCache(str(path))
    h = cache.conditional_headers(url)
    assert h == {"If-None-Match": 'W/"old"', "If-Modified-Since": "Sat, 01 Jan 2022 00:00:00 GMT"}

    cache.update(url, _DummyParsed(etag='W/"new"', modified="Sun, 02 Jan 2022 00:00:00 GMT"), now_ts="2022-01-02T00:00:00Z")
    cache.save()

    reloaded = json.loads(path.read_text(encoding="utf-8"))
    assert reloaded[url]["etag"] == 'W/"new"'
    assert reloaded[url]["last_modified"] == "Sun, 02 Jan 2022 00:00:00 GMT"


def test_file_urls_never_get_conditionals(tmp_path: Path):
    cache = FeedCache()
    url = "file://" + str(tmp_path / "feed.xml")
    cache.update(url, _DummyParsed(etag="e"), now_ts="x")
    assert cache.conditional_headers(url) == {}
    assert cache.entries == {}


def test_not_modified_and_unreadable_file(tmp_path: Path):
    p = tmp_path / "broken.json"
    p.write_text("{not json", encoding="utf-8")
    cache = FeedCache(str(p))
    assert cache.entries == {}
    assert cache.not_modified(_DummyParsed(status=304))
    assert not cache.not_modified(_DummyParsed(status=200))
