# tests/data_ingest/test_scraper_base.py
from common.errors import PermanentSourceError, TransientSourceError
from common.retry import RetryPolicy
from common.schemas import SourceKind, SourceRecord
from data_ingest.base import BaseScraper, Page, ScrapeLimits


def rec(i: str) -> SourceRecord:
    return SourceRecord(external_id=i, source_kind=SourceKind.VIDEO, raw_text=f"${i}")


class ScriptedScraper(BaseScraper):
    """script: target -> list of pages; a page is a list of ids or an exception to raise."""

    name = "scripted"

    def __init__(self, script, cost=0.0, **kw):
        super().__init__(**kw)
        self.script = script
        self.cost = cost
        self.calls = []

    def fetch_page(self, target, page_no, cursor):
        self.calls.append((target, page_no))
        if self.cost:
            self.clock.t += self.cost
        pages = self.script[target]
        item = pages[min(page_no, len(pages) - 1)]
        if isinstance(item, Exception):
            raise item
        return Page(records=[rec(i) for i in item], cursor=page_no + 1, has_more=page_no + 1 < len(pages))


def fast(**kw):
    return ScrapeLimits(page_delay=0.1, target_delay=0.2, **kw)


def test_dedupes_within_one_invocation(clock):
    s = ScriptedScraper({"a": [["X1", "X2"], ["X2", "X3"]], "b": [["X1", "X4"]]}, clock=clock, sleep=clock.sleep)
    ids = [r.external_id for r in s.scrape(["a", "b"], fast())]
    assert ids == ["X1", "X2", "X3", "X4"]
    assert s.stats.duplicates == 2

    # a fresh call re-scrapes from the beginning
    assert [r.external_id for r in s.scrape(["a"], fast())] == ["X1", "X2", "X3"]


def test_transient_failure_is_retried_then_skipped(clock):
    boom = TransientSourceError("selector timeout", target="a")
    s = ScriptedScraper(
        {"a": [boom], "b": [["B1"]]},
        retry=RetryPolicy(max_attempts=3, base_delay=0.5),
        clock=clock, sleep=clock.sleep,
    )
    ids = [r.external_id for r in s.scrape(["a", "b"], fast())]
    assert ids == ["B1"]
    assert s.calls.count(("a", 0)) == 3
    assert [f.target for f in s.failures] == ["a"]
    assert s.failures[0].attempts == 3 and not s.failures[0].permanent
    assert 0.5 in clock.sleeps and 1.0 in clock.sleeps


def test_permanent_failure_is_not_retried(clock):
    s = ScriptedScraper({"a": [PermanentSourceError("HTTP 404")], "b": [["B1"]]}, clock=clock, sleep=clock.sleep)
    assert [r.external_id for r in s.scrape(["a", "b"], fast())] == ["B1"]
    assert s.calls.count(("a", 0)) == 1
    assert s.failures[0].permanent and s.failures[0].attempts == 1


def test_unexpected_error_only_skips_that_target(clock):
    s = ScriptedScraper({"a": [KeyError("data-post")], "b": [["B1"]]}, clock=clock, sleep=clock.sleep)
    assert [r.external_id for r in s.scrape(["a", "b"], fast())] == ["B1"]
    assert "KeyError" in s.failures[0].error


def test_wall_clock_budget_stops_the_scrape(clock):
    script = {t: [[f"{t}{p}"] for p in range(10)] for t in ("a", "b", "c")}
    s = ScriptedScraper(script, cost=60.0, clock=clock, sleep=clock.sleep)
    out = list(s.scrape(["a", "b", "c"], fast(max_seconds=200.0)))
    assert 1 <= len(out) <= 4
    assert s.stats.budget_exhausted is True
    assert ("c", 0) not in s.calls


def test_item_and_page_limits(clock):
    script = {"a": [[f"A{p}x", f"A{p}y"] for p in range(5)], "b": [["B1"]]}
    s = ScriptedScraper(script, clock=clock, sleep=clock.sleep)
    assert len(list(s.scrape(["a", "b"], fast(max_items=3)))) == 3
    assert len(list(s.scrape(["a", "b"], fast(max_pages=2)))) == 5
    assert len(list(s.scrape(["a", "b"], fast(max_items_per_target=1)))) == 2
    assert len(list(s.scrape(["a", "b"], fast(max_targets=1)))) == 10


def test_idle_pages_end_an_infinite_feed(clock):
    # feed keeps re-rendering the same items
    s = ScriptedScraper({"a": [["A1"]] * 50}, clock=clock, sleep=clock.sleep)
    assert [r.external_id for r in s.scrape(["a"], fast(max_pages=50, max_idle_pages=2))] == ["A1"]
    assert len(s.calls) == 3


def test_delays_between_pages_and_targets(clock):
    s = ScriptedScraper({"a": [["A1"], ["A2"]], "b": [["B1"]]}, clock=clock, sleep=clock.sleep)
    list(s.scrape(["a", "b"], fast()))
    assert clock.sleeps == [0.1, 0.2]
