# tests/pipeline/test_stages.py
# End-to-end runs over the real stage functions with fake browser, HTTP, market data and stream.
from __future__ import annotations

from datetime import timedelta

import pytest

from common.config import Settings
from common.errors import PermanentSourceError
from common.retry import RetryPolicy
from common.schemas import MarketSample, RunMode, RunStatus, SourceKind, SourceRecord, StageStatus
from data_ingest.channel_scraper import preview_url
from data_ingest.discovery_scraper import LINK_SELECTOR
from data_ingest.market_data import MarketDataService
from data_ingest.video_scraper import VideoTarget
from fakes import FakeBrowser, FakeElement, FakeMarketProvider, FakeResponse, FakeSession, PublishRecorder, video_item
from pipeline.orchestrator import PipelineOrchestrator
from pipeline.stages import DASHBOARD_STREAM, FULL_ORDER, PERIODIC_ORDER, PipelineContext, Toolkit, ingest
from signal_detect.correlation_engine import AnalysisWindow, CorrelationEngine

DISCOVERY_URL = "https://outlight.test/"


def channel_page(handle, *messages):
    body = "".join(
        f'<div class="tgme_widget_message" data-post="{handle}/{mid}">'
        f'<div class="tgme_widget_message_text">{text}</div>'
        f'<a class="tgme_widget_message_date" href="https://t.me/{handle}/{mid}"><time datetime="{when}">x</time></a>'
        f"</div>"
        for mid, text, when in messages
    )
    return f'<html><body><div class="tgme_channel_info">{handle}</div>{body}</body></html>'


@pytest.fixture
def run_now(now):
    # mid-hour, so records stamped at the top of the hour fall inside the window
    return now + timedelta(minutes=20)


@pytest.fixture
def world(store, clock, run_now):
    video_id = str((int(run_now.timestamp()) - 1800) << 32)
    search = VideoTarget("search", "bonk")
    browser_pages = {
        search.url: [[video_item(video_id, caption="$BONK to the moon $BONK $WIF")]],
        DISCOVERY_URL: [[FakeElement(text="BONK calls", attrs={"href": "https://t.me/newcalls"})]],
    }
    when = (run_now - timedelta(minutes=50)).isoformat()
    session = FakeSession({
        preview_url("bonkchat"): FakeResponse(200, channel_page("bonkchat", (5, "$BONK $BONK $POPCAT", when))),
        preview_url("bonkchat", before=5): FakeResponse(200, channel_page("bonkchat")),
        preview_url("newcalls"): FakeResponse(200, channel_page("newcalls", (7, "$WIF early", when))),
        preview_url("newcalls", before=7): FakeResponse(200, channel_page("newcalls")),
        DISCOVERY_URL: FakeResponse(200, '<p>join <a href="https://t.me/othergroup">Other</a></p>'),
    })
    browsers = []

    def browser_factory(settings):
        b = FakeBrowser(pages=browser_pages, errors=world_errors)
        browsers.append(b)
        return b

    world_errors = {}
    published = PublishRecorder()
    store.append_market_samples([
        MarketSample(token_symbol="BONK", volume_24h=1000.0, sampled_at=run_now - timedelta(minutes=90), provider="seed"),
    ])
    tools = Toolkit(
        browser_factory=browser_factory,
        session_factory=lambda: session,
        market_factory=lambda: MarketDataService([FakeMarketProvider({"BONK": 5000.0, "WIF": 800.0}, at=run_now - timedelta(minutes=1))]),
        publish=published,
        now=lambda: run_now,
        clock=clock,
        sleep=clock.sleep,
    )
    return {"tools": tools, "session": session, "browsers": browsers, "published": published, "errors": world_errors, "search": search}


def settings(**kw):
    base = dict(
        video_search_terms=["bonk"],
        video_hashtags=[],
        discovery_url=DISCOVERY_URL,
        channel_seed_handles=["bonkchat"],
        redis_url="redis://dashboard.test:6379/0",
    )
    base.update(kw)
    return Settings(**base)


def run(store, world, mode, **kw):
    orch = PipelineOrchestrator(
        store,
        settings_loader=lambda: settings(**kw),
        tools=world["tools"],
        stage_retry=RetryPolicy.none(),
    )
    return orch.start(mode)


def test_test_mode_run_end_to_end(store, world, run_now):
    result = run(store, world, RunMode.TEST, sinks_live=True, slack_webhook_url="https://hooks.slack.test/x")

    assert result.status == RunStatus.COMPLETED, result.stage_results
    assert list(result.stage_results) == list(FULL_ORDER)
    assert all(r.status == StageStatus.SUCCEEDED for r in result.stage_results.values())

    stages = result.stage_results
    assert stages["market_data"].summary["samples"] == 2
    assert stages["market_data"].summary["misses"] == ["POPCAT"]
    assert stages["video_scraping"].summary["tickers"] == {"BONK": 2, "WIF": 1}
    # the channel stage runs its own discovery pass before discovery_scraping
    assert stages["channel_scraping"].summary["tickers"] == {"BONK": 2, "POPCAT": 1, "WIF": 1}
    assert stages["discovery_scraping"].summary["channels_found"] == 2
    assert stages["discovery_scraping"].summary["channels_new"] == []

    # browsers are closed before the next stage
    assert all(b.closed == 1 for b in world["browsers"])

    top = stages["correlation_analysis"].summary["top"]
    assert top[0]["ticker"] == "BONK"

    # test mode never posts live, even with SINKS_LIVE and a webhook
    alerting = stages["alerting"].summary
    assert alerting["alerts"] == ["BONK"]
    assert alerting["live"] is False
    assert not [c for c in world["session"].calls if c["method"] == "POST"]
    # test runs leave the cooldown table alone
    assert store.last_alert_at("BONK") is None

    msg = world["published"].messages[0]
    assert msg["stream"] == DASHBOARD_STREAM
    assert msg["payload"]["run_id"] == result.run_id
    assert msg["payload"]["trending"][0]["token_symbol"] == "BONK"

    targets = {t.handle: t for t in store.channel_targets()}
    assert targets["bonkchat"].validated and targets["bonkchat"].last_scraped_at == run_now
    assert targets["newcalls"].validated and targets["newcalls"].last_scraped_at == run_now
    assert "othergroup" in targets

    # every scraper session is released
    assert world["session"].closed >= 4

    saved = store.latest_correlation_results()
    assert saved and saved[0].token_symbol == "BONK"


def test_rerun_does_not_duplicate_mentions(store, world):
    run(store, world, RunMode.TEST)
    first = len(store.mentions())
    run(store, world, RunMode.TEST)
    assert len(store.mentions()) == first


def test_periodic_run_skips_sync_without_redis(store, world):
    result = run(store, world, RunMode.PERIODIC, redis_url=None)
    assert list(result.stage_results) == list(PERIODIC_ORDER)
    assert result.stage_results["downstream_sync"].status == StageStatus.SKIPPED
    assert result.status == RunStatus.COMPLETED
    assert world["published"].messages == []


def test_failing_source_degrades_the_run(store, world):
    world["errors"][world["search"].url] = PermanentSourceError("blocked", target=world["search"].url)
    result = run(store, world, RunMode.TEST)

    assert result.status == RunStatus.DEGRADED
    assert result.failed_stages() == ["video_scraping"]
    assert "all 1 target(s) failed" in result.stage_results["video_scraping"].error
    assert result.stage_results["alerting"].status == StageStatus.SUCCEEDED


def test_ingest_stamps_undated_records_at_the_hour(store, world, run_now):
    ctx = PipelineContext(settings=settings(), store=store, mode=RunMode.TEST, run_id="t", tools=world["tools"])
    rec = SourceRecord(external_id="discovery:x", source_kind=SourceKind.DISCOVERY, raw_text="$WIF and $NOPE")
    got = ingest(ctx, [rec])
    assert got.records == 1 and got.mentions == 1
    (m,) = store.mentions()
    assert m.ticker == "WIF"
    assert m.observed_at == run_now.replace(minute=0)


def test_old_video_mentions_count_at_observation_time(store, world, run_now):
    ctx = PipelineContext(settings=settings(), store=store, mode=RunMode.TEST, run_id="t", tools=world["tools"])
    posted = run_now - timedelta(days=3)
    rec = SourceRecord(
        external_id=str(int(posted.timestamp()) << 32),
        source_kind=SourceKind.VIDEO,
        timestamp=posted,
        raw_text="$BONK $BONK $BONK\n$BONK still early\n$BONK",
    )
    ingest(ctx, [rec])

    (m,) = store.mentions()
    assert m.observed_at == run_now.replace(minute=0)
    assert store.get_record(SourceKind.VIDEO, rec.external_id).timestamp == posted

    results = CorrelationEngine(store, min_mentions=1).analyze(AnalysisWindow.trailing(2, run_now))
    assert [(r.token_symbol, r.mention_count) for r in results] == [("BONK", 5)]


def test_channel_stage_discovers_targets_on_an_empty_store(store, world, run_now):
    assert store.channel_targets(include_stale=True) == []
    result = run(store, world, RunMode.TEST, channel_seed_handles=[])

    channel = result.stage_results["channel_scraping"]
    assert channel.status == StageStatus.SUCCEEDED
    assert channel.summary["targets"] == 1
    assert channel.summary["tickers"] == {"WIF": 1}

    every = {t.handle: t for t in store.channel_targets(include_stale=True)}
    assert every["newcalls"].last_scraped_at == run_now
    assert every["othergroup"].stale is True


def test_failing_channel_stage_degrades_but_later_stages_report(store, world):
    world["session"].routes[preview_url("bonkchat")] = FakeResponse(500)
    world["session"].routes[preview_url("newcalls")] = FakeResponse(500)
    result = run(store, world, RunMode.TEST, min_mentions=1)

    assert result.status == RunStatus.DEGRADED
    assert result.failed_stages() == ["channel_scraping"]
    assert "all 2 target(s) failed" in result.stage_results["channel_scraping"].error

    stages = result.stage_results
    assert stages["discovery_scraping"].status == StageStatus.SUCCEEDED
    assert stages["discovery_scraping"].summary["channels_found"] == 2
    assert stages["correlation_analysis"].summary["results"] > 0
    assert stages["alerting"].summary["evaluated"] > 0
